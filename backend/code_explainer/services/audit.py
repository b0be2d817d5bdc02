"""Request audit trail stored as JSON lines.

One line per HTTP request: request id, path, status, client address, the
rate limit bucket it was charged to and how long it took. Fields that were
not known for a request are left out of its line.
"""
from __future__ import annotations

import asyncio
import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path


@dataclass(slots=True)
class AuditRecord:
    request_id: str
    method: str
    path: str
    status_code: int
    duration_ms: float
    ip: str | None = None
    user_agent: str | None = None
    rate_limit_key: str | None = None
    created_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429

    def to_json(self) -> str:
        data = {key: value for key, value in asdict(self).items() if value is not None}
        data["duration_ms"] = round(self.duration_ms, 3)
        data["rate_limited"] = self.rate_limited
        return json.dumps(data, ensure_ascii=False)


class AuditLogger:
    """Append audit lines to one file; writes from concurrent requests are serialised."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._write_lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def log(self, record: AuditRecord) -> None:
        line = record.to_json() + "\n"
        async with self._write_lock:
            await asyncio.to_thread(self._write, line)

    def _write(self, line: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("a", encoding="utf-8") as fh:
            fh.write(line)
