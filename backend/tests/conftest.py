import os
import tempfile

import pytest

# Keep audit lines out of the working tree; must be set before settings load
os.environ.setdefault(
    "AUDIT_LOG_STORE_PATH", os.path.join(tempfile.gettempdir(), "code-explainer-audit.jsonl")
)
os.environ.setdefault("RATE_LIMIT_SWEEP_INTERVAL_SECONDS", "0")


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def now(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture
def anyio_backend() -> str:
    """Force anyio-based tests to run with asyncio backend only."""

    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
