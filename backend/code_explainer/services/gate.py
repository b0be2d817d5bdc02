"""Request gate in front of the paid explanation call.

Each request walks ``RECEIVED -> KEY_RESOLVED`` and is then either
``REJECTED`` by the server limiter, or ``ALLOWED -> DOWNSTREAM_INVOKED`` and
ends ``SUCCEEDED`` or ``DOWNSTREAM_FAILED``. Quota is spent per attempt:
a failed explanation does not give the unit back.
"""
from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Protocol

from fastapi import status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from code_explainer.schemas.explain import CodeFeedback, ExplainRequest, ExplainResponse
from code_explainer.services.explainer import (
    ExplainerConfigurationError,
    ExplainerInputError,
    ExplainerServiceError,
)
from code_explainer.services.key_resolver import resolve_rate_limit_key
from code_explainer.services.rate_limit import ServerRateLimiter

logger = logging.getLogger(__name__)

RATE_LIMIT_EXCEEDED_MESSAGE = "Rate limit exceeded. Please try again later."
SERVICE_UNAVAILABLE_MESSAGE = "Explanation service temporarily unavailable"
GENERIC_FAILURE_MESSAGE = "Explanation failed"
INVALID_PAYLOAD_MESSAGE = "Request body must be JSON with non-empty 'code' and 'language'"


class Explainer(Protocol):
    async def explain(self, *, code: str, language: str) -> CodeFeedback:
        ...


class GateStage(str, enum.Enum):
    RECEIVED = "received"
    KEY_RESOLVED = "key_resolved"
    REJECTED = "rejected"
    ALLOWED = "allowed"
    INVALID_PAYLOAD = "invalid_payload"
    DOWNSTREAM_INVOKED = "downstream_invoked"
    SUCCEEDED = "succeeded"
    DOWNSTREAM_FAILED = "downstream_failed"


@dataclass(slots=True)
class GateOutcome:
    rate_limit_key: str | None = None
    status_code: int = status.HTTP_200_OK
    body: dict[str, Any] = field(default_factory=dict)
    stages: list[GateStage] = field(default_factory=lambda: [GateStage.RECEIVED])

    @property
    def stage(self) -> GateStage:
        return self.stages[-1]

    def advance(self, stage: GateStage) -> None:
        self.stages.append(stage)

    def fail(self, stage: GateStage, status_code: int, message: str) -> "GateOutcome":
        self.advance(stage)
        self.status_code = status_code
        self.body = {"error": message}
        return self

    def to_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=self.body)


class RequestGate:
    """Resolve the caller, spend quota, and only then call the explainer."""

    def __init__(
        self,
        limiter: ServerRateLimiter,
        explainer: Explainer,
    ) -> None:
        self._limiter = limiter
        self._explainer = explainer

    async def handle(
        self,
        headers: Mapping[str, str],
        read_payload: Callable[[], Awaitable[Any]],
    ) -> GateOutcome:
        """Run one request through the gate.

        ``read_payload`` is only awaited once the request has been admitted,
        so rejected callers never get their body parsed.
        """

        outcome = GateOutcome()
        key = resolve_rate_limit_key(headers, fallback=self._limiter.fallback_key)
        outcome.rate_limit_key = key
        outcome.advance(GateStage.KEY_RESOLVED)

        if not self._limiter.check_limit(key):
            logger.info("Rejected explanation request", extra={"rate_limit_key": key})
            return outcome.fail(
                GateStage.REJECTED,
                status.HTTP_429_TOO_MANY_REQUESTS,
                RATE_LIMIT_EXCEEDED_MESSAGE,
            )
        outcome.advance(GateStage.ALLOWED)

        try:
            payload = ExplainRequest.model_validate(await read_payload())
        except (ValidationError, json.JSONDecodeError, UnicodeDecodeError):
            return outcome.fail(
                GateStage.INVALID_PAYLOAD,
                status.HTTP_400_BAD_REQUEST,
                INVALID_PAYLOAD_MESSAGE,
            )

        outcome.advance(GateStage.DOWNSTREAM_INVOKED)
        try:
            feedback = await self._explainer.explain(
                code=payload.code, language=payload.language
            )
        except ExplainerConfigurationError:
            logger.error("Explanation service is not configured")
            return outcome.fail(
                GateStage.DOWNSTREAM_FAILED,
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                SERVICE_UNAVAILABLE_MESSAGE,
            )
        except ExplainerInputError as exc:
            return outcome.fail(
                GateStage.DOWNSTREAM_FAILED, status.HTTP_400_BAD_REQUEST, str(exc)
            )
        except ExplainerServiceError as exc:
            return outcome.fail(
                GateStage.DOWNSTREAM_FAILED,
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                str(exc) or GENERIC_FAILURE_MESSAGE,
            )
        except Exception:
            logger.exception("Unexpected explainer failure", extra={"rate_limit_key": key})
            return outcome.fail(
                GateStage.DOWNSTREAM_FAILED,
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                GENERIC_FAILURE_MESSAGE,
            )

        outcome.advance(GateStage.SUCCEEDED)
        outcome.body = ExplainResponse(
            response=feedback,
            original_language=payload.language,
            original_code=payload.code,
            remaining_requests=self._limiter.get_remaining(key),
        ).model_dump(by_alias=True, mode="json")
        return outcome
