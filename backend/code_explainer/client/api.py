"""HTTP client for the explanation API with an advisory quota check."""
from __future__ import annotations

import logging
from types import TracebackType

import httpx

from code_explainer.client.limiter import ClientRateLimiter
from code_explainer.client.storage import JsonFileStore
from code_explainer.core.config import Settings
from code_explainer.schemas.explain import ExplainRequest, ExplainResponse
from code_explainer.services.rate_limit import RateConfig

logger = logging.getLogger(__name__)

EXPLAIN_PATH = "/api/explain"
RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again later."


class ExplainRequestError(RuntimeError):
    """Raised when the API cannot be reached or answers with an error."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ClientRateLimitExceeded(ExplainRequestError):
    """The local advisory quota is spent; no request was sent."""

    def __init__(self, remaining: int = 0) -> None:
        super().__init__(RATE_LIMIT_MESSAGE)
        self.remaining = remaining


class ServerRateLimitExceeded(ExplainRequestError):
    """The API refused the request with HTTP 429."""


class ExplainClient:
    """Send code to the explanation API.

    The advisory limiter is consulted first so an obviously doomed request
    never leaves the machine; the server still has the final say.
    """

    def __init__(
        self,
        base_url: str,
        limiter: ClientRateLimiter,
        *,
        timeout: float = 150.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._limiter = limiter
        self._http = httpx.AsyncClient(
            base_url=base_url, timeout=timeout, transport=transport
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "ExplainClient":
        limiter = ClientRateLimiter(
            RateConfig(
                max_requests=settings.client_rate_limit_max_requests,
                window_seconds=settings.client_rate_limit_window_seconds,
            ),
            JsonFileStore(settings.client_state_path),
            storage_key=settings.client_rate_limit_key,
        )
        return cls(
            settings.explain_api_base_url,
            limiter,
            timeout=settings.ark_request_timeout + 30.0,
            transport=transport,
        )

    @property
    def remaining_requests(self) -> int:
        return self._limiter.get_remaining_requests()

    async def explain(self, code: str, language: str) -> ExplainResponse:
        if not code.strip():
            raise ValueError("Please enter or upload some code to analyze")
        if not self._limiter.check_limit():
            raise ClientRateLimitExceeded(self._limiter.get_remaining_requests())

        body = ExplainRequest(code=code, language=language).model_dump(by_alias=True)
        try:
            response = await self._http.post(EXPLAIN_PATH, json=body)
        except httpx.HTTPError as exc:
            logger.warning("Could not reach the explanation API", exc_info=exc)
            raise ExplainRequestError(f"Could not reach the explanation API: {exc}") from exc
        if response.status_code == httpx.codes.TOO_MANY_REQUESTS:
            raise ServerRateLimitExceeded(
                _error_message(response, RATE_LIMIT_MESSAGE),
                status_code=response.status_code,
            )
        if response.is_error:
            logger.warning(
                "Explanation request failed",
                extra={"status_code": response.status_code},
            )
            raise ExplainRequestError(
                _error_message(response, "API call failed"),
                status_code=response.status_code,
            )
        return ExplainResponse.model_validate(response.json())

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "ExplainClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()


def _error_message(response: httpx.Response, default: str) -> str:
    try:
        data = response.json()
    except ValueError:
        return default
    if isinstance(data, dict) and isinstance(data.get("error"), str):
        return data["error"]
    return default
