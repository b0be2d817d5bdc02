"""Advisory request quota kept on the client.

This limiter only spares the user a request the server would refuse. It is
trivially bypassed (delete the state file, call the API directly), so the
server's own limiter remains the only enforcement.
"""
from __future__ import annotations

import json
import logging

from code_explainer.client.storage import KeyValueStore
from code_explainer.services.clock import Clock, SystemClock
from code_explainer.services.rate_limit import (
    RateConfig,
    WindowState,
    remaining,
    try_consume,
)

logger = logging.getLogger(__name__)


class ClientRateLimiter:
    def __init__(
        self,
        config: RateConfig,
        store: KeyValueStore,
        *,
        storage_key: str,
        clock: Clock | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._storage_key = storage_key
        # Persisted across restarts, so wall-clock time rather than monotonic
        self._clock = clock or SystemClock()

    @property
    def config(self) -> RateConfig:
        return self._config

    def check_limit(self) -> bool:
        now = self._clock.now()
        allowed, state = try_consume(self._load(), now, self._config)
        if allowed:
            self._save(state)
        return allowed

    def get_remaining_requests(self) -> int:
        return remaining(self._load(), self._clock.now(), self._config)

    def _load(self) -> WindowState | None:
        raw = self._store.get(self._storage_key)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
            window_start = data["windowStart"]
            used = data["used"]
        except (ValueError, TypeError, KeyError):
            logger.warning(
                "Discarding unreadable client rate limit state",
                extra={"storage_key": self._storage_key},
            )
            return None
        if isinstance(used, bool) or not isinstance(used, int):
            return None
        if isinstance(window_start, bool) or not isinstance(window_start, (int, float)):
            return None
        return WindowState(window_start=float(window_start), used=used)

    def _save(self, state: WindowState) -> None:
        self._store.set(
            self._storage_key,
            json.dumps({"windowStart": state.window_start, "used": state.used}),
        )
