from __future__ import annotations

import datetime

from pydantic import BaseModel, ConfigDict, Field

from promptvault.schemas.prompt import CategoryOut, TagOut


class CollectionCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    icon: str | None = None
    color: str | None = None


class CollectionUpdate(BaseModel):
    name: str | None = Field(default=None, max_length=255)
    description: str | None = None
    icon: str | None = None
    color: str | None = None


class CollectionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str | None
    icon: str
    color: str
    is_public: bool
    share_token: str | None
    created_at: datetime.datetime
    updated_at: datetime.datetime
    prompt_count: int = 0


class ShareOut(BaseModel):
    collection: CollectionOut
    share_token: str
    share_url: str


class SharedPromptOut(BaseModel):
    """A prompt as seen by anyone holding the share link."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    content: str
    source: str
    effectiveness_score: int | None
    created_at: datetime.datetime
    category: CategoryOut | None = None
    tags: list[TagOut] = Field(default_factory=list)


class SharedCollectionInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str | None
    icon: str
    color: str
    created_at: datetime.datetime
    prompt_count: int = 0


class SharedCollectionOut(BaseModel):
    collection: SharedCollectionInfo
    prompts: list[SharedPromptOut]
