"""Schemas for the code explanation workflow."""
from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExplainRequest(_CamelModel):
    code: str = Field(..., description="Source code to explain")
    language: str = Field(..., min_length=1, description="Language the user believes the code is in")


class LineSummary(_CamelModel):
    line_start: int
    line_end: int
    line_text: str
    line_explanation: str


class FurtherReadingArticle(_CamelModel):
    title: str
    url: str
    description: str


class CodeFeedback(_CamelModel):
    analyzed_language: str
    summary: str
    context: str
    line_by_line: List[LineSummary] = Field(default_factory=list)
    further_reading: List[FurtherReadingArticle] = Field(default_factory=list)


class ExplainResponse(_CamelModel):
    response: CodeFeedback
    original_language: str
    original_code: str
    remaining_requests: int = Field(..., ge=0)


class QuotaResponse(_CamelModel):
    remaining_requests: int = Field(..., ge=0)
    limit: int
    window_seconds: float


class ErrorResponse(BaseModel):
    error: str
