"""
Prompt endpoints.

GET    /api/prompts                          - Search and list prompts
POST   /api/prompts                          - Create a prompt (version 1)
GET    /api/prompts/{id}                     - Fetch one prompt
PATCH  /api/prompts/{id}                     - Update; new content adds a version
DELETE /api/prompts/{id}                     - Delete with all versions
POST   /api/prompts/{id}/use                 - Count a use
GET    /api/prompts/{id}/versions            - Version history
POST   /api/prompts/{id}/restore/{version}   - Restore old content as a new version
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from promptvault.api.deps import get_db, get_prompt_service
from promptvault.models import Source
from promptvault.schemas.prompt import (
    PromptCreate,
    PromptOut,
    PromptStats,
    PromptUpdate,
    PromptVersionOut,
)
from promptvault.services.prompt_service import INITIAL_VERSION_NOTE, PromptService

router = APIRouter(prefix="/api/prompts", tags=["prompts"])


@router.get("", response_model=list[PromptOut])
def list_prompts(
    q: str | None = Query(default=None, description="Case-insensitive search on title and content"),
    source: Source | None = None,
    category_id: int | None = None,
    collection_id: int | None = None,
    favorite: bool | None = None,
    tag: list[str] | None = Query(default=None, description="Match prompts with any of these tags"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    service: PromptService = Depends(get_prompt_service),
) -> list[PromptOut]:
    prompts = service.list_prompts(
        query=q,
        source=source.value if source else None,
        category_id=category_id,
        collection_id=collection_id,
        is_favorite=favorite,
        tags=tag,
        limit=limit,
        offset=offset,
    )
    return [PromptOut.model_validate(p) for p in prompts]


@router.get("/stats", response_model=PromptStats)
def prompt_stats(service: PromptService = Depends(get_prompt_service)) -> PromptStats:
    return PromptStats(**service.stats())


@router.post("", response_model=PromptOut, status_code=status.HTTP_201_CREATED)
def create_prompt(
    body: PromptCreate,
    service: PromptService = Depends(get_prompt_service),
    db: Session = Depends(get_db),
) -> PromptOut:
    prompt = service.create_prompt(
        body.title,
        body.content,
        body.source,
        category_id=body.category_id,
        collection_id=body.collection_id,
        effectiveness_score=body.effectiveness_score,
        tags=body.tags,
        is_favorite=body.is_favorite,
        change_notes=body.change_notes or INITIAL_VERSION_NOTE,
    )
    db.commit()
    return PromptOut.model_validate(service.get_prompt(prompt.id))


@router.get("/{prompt_id}", response_model=PromptOut)
def get_prompt(prompt_id: int, service: PromptService = Depends(get_prompt_service)) -> PromptOut:
    return PromptOut.model_validate(service.get_prompt(prompt_id))


@router.patch("/{prompt_id}", response_model=PromptOut)
def update_prompt(
    prompt_id: int,
    body: PromptUpdate,
    service: PromptService = Depends(get_prompt_service),
    db: Session = Depends(get_db),
) -> PromptOut:
    changes = body.model_dump(exclude_unset=True)
    tags = changes.pop("tags", None)
    change_notes = changes.pop("change_notes", None)
    if changes.get("is_favorite", False) is None:
        changes.pop("is_favorite")
    prompt = service.update_prompt(prompt_id, changes, change_notes=change_notes, tags=tags)
    db.commit()
    return PromptOut.model_validate(service.get_prompt(prompt.id))


@router.delete("/{prompt_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_prompt(
    prompt_id: int,
    service: PromptService = Depends(get_prompt_service),
    db: Session = Depends(get_db),
) -> None:
    service.delete_prompt(prompt_id)
    db.commit()


@router.post("/{prompt_id}/use")
def record_use(
    prompt_id: int,
    service: PromptService = Depends(get_prompt_service),
    db: Session = Depends(get_db),
) -> dict:
    service.record_use(prompt_id)
    db.commit()
    return {"id": prompt_id, "use_count": service.get_prompt(prompt_id).use_count}


@router.get("/{prompt_id}/versions", response_model=list[PromptVersionOut])
def list_versions(
    prompt_id: int,
    service: PromptService = Depends(get_prompt_service),
) -> list[PromptVersionOut]:
    return [PromptVersionOut.model_validate(v) for v in service.list_versions(prompt_id)]


@router.post("/{prompt_id}/restore/{version_number}", response_model=PromptOut)
def restore_version(
    prompt_id: int,
    version_number: int,
    service: PromptService = Depends(get_prompt_service),
    db: Session = Depends(get_db),
) -> PromptOut:
    prompt = service.restore_version(prompt_id, version_number)
    db.commit()
    return PromptOut.model_validate(service.get_prompt(prompt.id))
