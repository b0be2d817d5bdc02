"""Derive the rate limit key for an inbound request."""
from __future__ import annotations

from typing import Mapping

from code_explainer.services.rate_limit import DEFAULT_FALLBACK_KEY

FORWARDED_FOR_HEADER = "x-forwarded-for"
REAL_IP_HEADER = "x-real-ip"


def resolve_rate_limit_key(
    headers: Mapping[str, str], *, fallback: str = DEFAULT_FALLBACK_KEY
) -> str:
    """Return the client address reported by the fronting proxy.

    ``X-Forwarded-For`` wins over ``X-Real-IP``; only the first (client-most)
    hop of the forwarded chain is used. Requests carrying neither header all
    share the ``fallback`` bucket.
    """

    forwarded = _header(headers, FORWARDED_FOR_HEADER)
    if forwarded:
        first_hop = forwarded.split(",", 1)[0].strip()
        if first_hop:
            return first_hop

    real_ip = _header(headers, REAL_IP_HEADER)
    if real_ip:
        return real_ip

    return fallback


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is None:
        value = headers.get(name.title())
    if value is None:
        return None
    return value.strip() or None
