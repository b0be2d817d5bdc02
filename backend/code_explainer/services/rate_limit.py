"""Fixed-window request quotas.

The window algorithm lives in two pure functions, :func:`try_consume` and
:func:`remaining`, shared by the authoritative in-memory limiter below and
the advisory limiter used by the bundled client.

Fixed windows reset all at once, so a caller that spends its quota at the
end of one window and again at the start of the next can issue up to
``2 * max_requests`` calls across the boundary. That burst is accepted.
"""
from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass

from code_explainer.services.clock import Clock, MonotonicClock

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_KEY = "unknown"


@dataclass(frozen=True, slots=True)
class RateConfig:
    max_requests: int
    window_seconds: float

    def __post_init__(self) -> None:
        if self.max_requests <= 0:
            raise ValueError("max_requests must be positive")
        if not self.window_seconds > 0:
            raise ValueError("window_seconds must be positive")


@dataclass(frozen=True, slots=True)
class WindowState:
    window_start: float
    used: int = 0


def _is_consistent(state: WindowState, now: float, config: RateConfig) -> bool:
    return (
        isinstance(state.used, int)
        and 0 <= state.used <= config.max_requests
        and math.isfinite(state.window_start)
        and state.window_start <= now
    )


def current_window(
    state: WindowState | None, now: float, config: RateConfig
) -> WindowState:
    """Return ``state`` if its window is still open, else a fresh window.

    A state that cannot be trusted (negative or over-quota usage, a start time
    in the future) is replaced the same way an expired one is.
    """

    if state is None or not _is_consistent(state, now, config):
        return WindowState(window_start=now)
    if now >= state.window_start + config.window_seconds:
        return WindowState(window_start=now)
    return state


def try_consume(
    state: WindowState | None, now: float, config: RateConfig
) -> tuple[bool, WindowState]:
    window = current_window(state, now, config)
    if window.used < config.max_requests:
        return True, WindowState(window_start=window.window_start, used=window.used + 1)
    return False, window


def remaining(state: WindowState | None, now: float, config: RateConfig) -> int:
    window = current_window(state, now, config)
    return min(config.max_requests, max(0, config.max_requests - window.used))


class ServerRateLimiter:
    """Authoritative per-key limiter held in process memory.

    One instance is created per application and owned by it; nothing is
    shared across processes. Every read-modify-write on the key map runs
    under a single lock with no I/O inside it.
    """

    def __init__(
        self,
        config: RateConfig,
        *,
        clock: Clock | None = None,
        fallback_key: str = DEFAULT_FALLBACK_KEY,
    ) -> None:
        self._config = config
        self._clock = clock or MonotonicClock()
        self._fallback_key = fallback_key
        self._lock = threading.Lock()
        self._states: dict[str, WindowState] = {}

    @property
    def config(self) -> RateConfig:
        return self._config

    @property
    def fallback_key(self) -> str:
        return self._fallback_key

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)

    def check_limit(self, key: str | None) -> bool:
        """Consume one unit of ``key``'s quota; return False when exhausted."""

        bucket = key or self._fallback_key
        with self._lock:
            now = self._clock.now()
            allowed, state = try_consume(self._states.get(bucket), now, self._config)
            self._states[bucket] = state
        if not allowed:
            logger.info(
                "Rate limit reached",
                extra={"rate_limit_key": bucket, "window_start": state.window_start},
            )
        return allowed

    def get_remaining(self, key: str | None) -> int:
        """Return the unused quota for ``key`` without consuming or storing."""

        bucket = key or self._fallback_key
        with self._lock:
            state = self._states.get(bucket)
            now = self._clock.now()
        return remaining(state, now, self._config)

    def evict_stale(self) -> int:
        """Drop keys whose window has closed; return how many were removed."""

        with self._lock:
            now = self._clock.now()
            stale = [
                key
                for key, state in self._states.items()
                if current_window(state, now, self._config) is not state
            ]
            for key in stale:
                del self._states[key]
        if stale:
            logger.debug("Evicted expired rate limit windows", extra={"evicted": len(stale)})
        return len(stale)

    def reset(self) -> None:
        with self._lock:
            self._states.clear()


__all__ = [
    "DEFAULT_FALLBACK_KEY",
    "RateConfig",
    "ServerRateLimiter",
    "WindowState",
    "current_window",
    "remaining",
    "try_consume",
]
