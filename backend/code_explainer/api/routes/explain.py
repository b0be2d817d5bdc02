"""Code explanation endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from code_explainer.deps import get_rate_limiter, get_request_gate
from code_explainer.schemas.explain import ErrorResponse, ExplainResponse, QuotaResponse
from code_explainer.services.gate import RequestGate
from code_explainer.services.key_resolver import resolve_rate_limit_key
from code_explainer.services.rate_limit import ServerRateLimiter

router = APIRouter(prefix="/explain", tags=["explain"])


@router.post(
    "",
    response_model=ExplainResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_429_TOO_MANY_REQUESTS: {"model": ErrorResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
    },
    summary="Explain a piece of source code",
)
async def explain_code(
    request: Request,
    gate: RequestGate = Depends(get_request_gate),
) -> JSONResponse:
    """Return a structured explanation plus the caller's remaining quota.

    Body: ``{"code": "...", "language": "..."}``.

    Answers 429 before the body is read when the caller's quota is spent,
    500 when the explanation service fails or is not configured, and 400
    when an admitted request carries a body that is not valid JSON, lacks
    ``code``/``language`` or holds empty or oversized code. Every admitted
    request, including a 400, uses up one unit of quota.
    """

    outcome = await gate.handle(request.headers, request.json)
    request.state.rate_limit_key = outcome.rate_limit_key
    return outcome.to_response()


@router.get(
    "/quota",
    response_model=QuotaResponse,
    response_model_by_alias=True,
    summary="Remaining explanation requests for the caller",
)
async def get_quota(
    request: Request,
    limiter: ServerRateLimiter = Depends(get_rate_limiter),
) -> QuotaResponse:
    key = resolve_rate_limit_key(request.headers, fallback=limiter.fallback_key)
    request.state.rate_limit_key = key
    return QuotaResponse(
        remaining_requests=limiter.get_remaining(key),
        limit=limiter.config.max_requests,
        window_seconds=limiter.config.window_seconds,
    )
