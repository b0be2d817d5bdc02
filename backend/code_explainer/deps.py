"""FastAPI dependency helpers."""
from __future__ import annotations

from functools import lru_cache

from fastapi import Depends, Request

from code_explainer.core.config import Settings
from code_explainer.services.audit import AuditLogger
from code_explainer.services.explainer import CodeExplainerService
from code_explainer.services.gate import Explainer, RequestGate
from code_explainer.services.rate_limit import ServerRateLimiter


@lru_cache
def _create_audit_logger(path: str) -> AuditLogger:
    return AuditLogger(path)


def get_audit_logger(settings: Settings) -> AuditLogger:
    """Return the shared audit logger for the configured path."""

    return _create_audit_logger(settings.audit_log_store_path)


def get_app_settings(request: Request) -> Settings:
    """Return the settings the running application was built with."""

    return request.app.state.settings


def get_rate_limiter(request: Request) -> ServerRateLimiter:
    """Return the limiter owned by the running application."""

    return request.app.state.rate_limiter


def get_explainer_service(
    settings: Settings = Depends(get_app_settings),
) -> Explainer:
    """Provide a code explainer instance per request."""

    return CodeExplainerService(settings)


def get_request_gate(
    limiter: ServerRateLimiter = Depends(get_rate_limiter),
    explainer: Explainer = Depends(get_explainer_service),
) -> RequestGate:
    return RequestGate(limiter, explainer)
