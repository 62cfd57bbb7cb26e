from __future__ import annotations

from pydantic import BaseModel, Field


class AnalysisRequestIn(BaseModel):
    content: str = Field(..., min_length=1, description="Prompt text to analyze")
    source: str | None = Field(default=None, description="AI tool the prompt was written for")


class AnalysisResult(BaseModel):
    title: str
    tags: list[str] = Field(default_factory=list)
    category: str | None = None
    category_id: int | None = None
    effectiveness_score: int | None = None
    effectiveness_reason: str | None = None
    ai_powered: bool = False
    message: str | None = None
