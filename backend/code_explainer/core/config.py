"""Application-wide settings and Ark client configuration helpers."""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_EXPLAIN_INSTRUCTIONS = (
    "You are an expert in all programming languages. You will be given some code "
    "by the user and your role is to provide a summary of what the purpose of the "
    "code is, as well as what each line of code does. If it's possible to provide "
    "context around where this code is most often used, or industry standard ways "
    "of making the code better, please also do that. Provide feedback within the "
    "format supplied."
)

DEFAULT_EXPLAIN_FORMAT_INSTRUCTIONS = (
    "Return a JSON object with these fields:\n"
    "- analyzedLanguage: the language you explained the code as\n"
    "- summary: what the code is for, in plain English\n"
    "- context: where this kind of code is usually found and how it could be improved\n"
    "- lineByLine: array of {lineStart, lineEnd, lineText, lineExplanation}\n"
    "- furtherReading: array of {title, url, description}"
)


class Settings(BaseSettings):
    """Global application configuration."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ark_api_key: Optional[str] = Field(default=None)
    ark_ak: Optional[str] = Field(default=None)
    ark_sk: Optional[str] = Field(default=None)
    ark_base_url: str = Field(default="https://ark.cn-beijing.volces.com/api/v3")
    ark_explain_model: str = Field(default="ep-20240620000000-code-explain")
    ark_explain_instructions: str = Field(default=DEFAULT_EXPLAIN_INSTRUCTIONS)
    ark_explain_format_instructions: str = Field(
        default=DEFAULT_EXPLAIN_FORMAT_INSTRUCTIONS
    )
    ark_explain_temperature: float = Field(default=0.2)
    ark_explain_max_tokens: int = Field(default=2000)
    ark_request_timeout: float = Field(default=120.0)
    ark_retry_attempts: int = Field(default=2)
    ark_retry_backoff_seconds: float = Field(default=1.5)
    explain_code_max_chars: int = Field(default=20_000)

    # Authoritative per-client quota enforced by the API
    rate_limit_max_requests: int = Field(default=10, gt=0)
    rate_limit_window_seconds: float = Field(default=3600.0, gt=0)
    rate_limit_fallback_key: str = Field(default="unknown")
    # Background eviction of expired windows; 0 disables the sweep
    rate_limit_sweep_interval_seconds: float = Field(default=300.0, ge=0)

    # Advisory quota checked by the bundled client before calling the API
    client_rate_limit_max_requests: int = Field(default=10, gt=0)
    client_rate_limit_window_seconds: float = Field(default=3600.0, gt=0)
    client_rate_limit_key: str = Field(default="code-explainer:rate-limit")
    client_state_path: str = Field(default="~/.code-explainer/state.json")
    explain_api_base_url: str = Field(default="http://localhost:8000")

    audit_log_store_path: str = Field(default="storage/audit_logs.jsonl")
    cors_allow_origins: tuple[str, ...] = Field(default=("*",))


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


__all__ = ["Settings", "get_settings"]
