"""Explain submitted source code through the Ark chat completion API."""
from __future__ import annotations

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, TypeVar
from uuid import uuid4

from pydantic import ValidationError
from volcenginesdkarkruntime import AsyncArk

from code_explainer.core.config import Settings
from code_explainer.schemas.explain import CodeFeedback

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ExplainerConfigurationError(RuntimeError):
    """Raised when Ark credentials are not configured."""


class ExplainerServiceError(RuntimeError):
    """Raised when the explanation could not be produced."""


class ExplainerInputError(ValueError):
    """Raised when the submitted code cannot be explained as given."""


@asynccontextmanager
async def open_ark_client(settings: Settings) -> AsyncIterator[AsyncArk]:
    """Yield an `AsyncArk` client for one explanation and close it afterwards."""

    client = AsyncArk(
        api_key=settings.ark_api_key,
        ak=settings.ark_ak,
        sk=settings.ark_sk,
        base_url=settings.ark_base_url,
        timeout=settings.ark_request_timeout,
    )
    try:
        yield client
    finally:
        await client.close()


class CodeExplainerService:
    """Ask the model for a structured, line-by-line explanation of code."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    async def explain(self, *, code: str, language: str) -> CodeFeedback:
        request_id = uuid4().hex
        self._ensure_credentials()
        self._validate_inputs(code=code)

        logger.info(
            "Starting code explanation",
            extra={
                "request_id": request_id,
                "language": language,
                "code_chars": len(code),
            },
        )
        started_at = time.perf_counter()
        try:
            async with open_ark_client(self._settings) as client:
                feedback = await self._request_feedback(
                    client=client, code=code, language=language, request_id=request_id
                )
        except Exception:
            logger.exception(
                "Code explanation failed",
                extra={"request_id": request_id, "language": language},
            )
            raise

        logger.info(
            "Code explanation completed",
            extra={
                "request_id": request_id,
                "analyzed_language": feedback.analyzed_language,
                "line_notes": len(feedback.line_by_line),
                "duration_ms": (time.perf_counter() - started_at) * 1000,
            },
        )
        return feedback

    def _ensure_credentials(self) -> None:
        if not (
            self._settings.ark_api_key
            or (self._settings.ark_ak and self._settings.ark_sk)
        ):
            raise ExplainerConfigurationError(
                "Missing Ark credentials. Configure ARK_API_KEY or ARK_AK/ARK_SK."
            )

    def _validate_inputs(self, *, code: str) -> None:
        if not code.strip():
            raise ExplainerInputError("Please enter or upload some code to analyze")
        if len(code) > self._settings.explain_code_max_chars:
            raise ExplainerInputError(
                f"Code must be at most {self._settings.explain_code_max_chars} characters"
            )

    def _build_user_message(self, *, code: str, language: str) -> str:
        return (
            "I've provided some code between the '###' characters below:\n"
            "###\n"
            f"{code}\n"
            "###\n"
            f"I believe it is written in {language}, so please explain the code with "
            "that context, but if I'm incorrect, please explain the code based on what "
            "context you think it's written within.\n\n"
            f"Output format:\n{self._settings.ark_explain_format_instructions}"
        )

    async def _request_feedback(
        self, *, client: AsyncArk, code: str, language: str, request_id: str
    ) -> CodeFeedback:
        logger.debug(
            "Submitting explanation request to Ark",
            extra={"model": self._settings.ark_explain_model, "request_id": request_id},
        )
        response = await self._execute_with_retries(
            lambda: client.chat.completions.create(
                model=self._settings.ark_explain_model,
                messages=[
                    {"role": "system", "content": self._settings.ark_explain_instructions},
                    {
                        "role": "user",
                        "content": self._build_user_message(code=code, language=language),
                    },
                ],
                temperature=self._settings.ark_explain_temperature,
                max_tokens=self._settings.ark_explain_max_tokens,
                response_format={"type": "json_object"},
            ),
            request_id=request_id,
        )

        if not response.choices:
            raise ExplainerServiceError("Ark returned no completion choices")

        content = response.choices[0].message.content
        if not content:
            raise ExplainerServiceError("Ark returned an empty explanation")

        try:
            return CodeFeedback.model_validate_json(content)
        except (ValidationError, json.JSONDecodeError) as exc:
            logger.warning(
                "Failed to parse Ark explanation payload",
                extra={"request_id": request_id, "content_chars": len(content)},
            )
            raise ExplainerServiceError("Could not parse the explanation returned by Ark") from exc

    async def _execute_with_retries(
        self, task: Callable[[], Awaitable[T]], *, request_id: str
    ) -> T:
        attempts = self._settings.ark_retry_attempts
        backoff = self._settings.ark_retry_backoff_seconds
        last_error: Exception | None = None

        for attempt in range(attempts + 1):
            try:
                return await asyncio.wait_for(
                    task(), timeout=self._settings.ark_request_timeout
                )
            except Exception as exc:
                last_error = exc
                if attempt == attempts:
                    break

                wait_seconds = backoff * (attempt + 1)
                logger.warning(
                    "Ark explanation attempt %s failed, retrying",
                    attempt + 1,
                    extra={"request_id": request_id, "retry_after_s": wait_seconds},
                    exc_info=exc,
                )
                if wait_seconds > 0:
                    await asyncio.sleep(wait_seconds)

        raise ExplainerServiceError(
            f"Ark explanation call failed (request_id={request_id})"
        ) from last_error
