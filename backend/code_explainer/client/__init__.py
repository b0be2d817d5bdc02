"""Client-side helpers for calling the explanation API."""

from .api import (  # noqa: F401
    ClientRateLimitExceeded,
    ExplainClient,
    ExplainRequestError,
    ServerRateLimitExceeded,
)
from .limiter import ClientRateLimiter  # noqa: F401
from .storage import JsonFileStore, KeyValueStore, MemoryStore  # noqa: F401

__all__ = [
    "ClientRateLimitExceeded",
    "ClientRateLimiter",
    "ExplainClient",
    "ExplainRequestError",
    "JsonFileStore",
    "KeyValueStore",
    "MemoryStore",
    "ServerRateLimitExceeded",
]
