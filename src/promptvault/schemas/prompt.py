from __future__ import annotations

import datetime

from pydantic import BaseModel, ConfigDict, Field

from promptvault.models import Source


class TagOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    color: str
    is_auto_generated: bool = False


class TagCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    color: str | None = None


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str | None = None
    icon: str | None = None
    color: str
    parent_id: int | None = None


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = None
    icon: str | None = None
    color: str | None = None
    parent_id: int | None = None


class PromptCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    content: str = Field(..., min_length=1, description="Prompt text")
    source: Source
    category_id: int | None = None
    collection_id: int | None = None
    effectiveness_score: int | None = Field(default=None, ge=1, le=10)
    tags: list[str] = Field(default_factory=list)
    is_favorite: bool = False
    change_notes: str | None = Field(default=None, description="Note for the first version")


class PromptUpdate(BaseModel):
    """Partial update. Only fields present in the request body are applied."""

    title: str | None = Field(default=None, max_length=255)
    content: str | None = None
    source: Source | None = None
    category_id: int | None = None
    collection_id: int | None = None
    effectiveness_score: int | None = Field(default=None, ge=1, le=10)
    is_favorite: bool | None = None
    tags: list[str] | None = None
    change_notes: str | None = None


class PromptOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    content: str
    source: str
    category_id: int | None
    collection_id: int | None
    effectiveness_score: int | None
    use_count: int
    is_favorite: bool
    current_version: int
    created_at: datetime.datetime
    updated_at: datetime.datetime
    category: CategoryOut | None = None
    tags: list[TagOut] = Field(default_factory=list)


class PromptVersionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    prompt_id: int
    version_number: int
    content: str
    change_notes: str | None
    effectiveness_score: int | None
    created_at: datetime.datetime


class PromptStats(BaseModel):
    total: int
    favorites: int
    this_week: int
