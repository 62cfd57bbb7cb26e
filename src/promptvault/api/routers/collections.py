"""
Collection endpoints and the public share view.

GET    /api/collections               - List collections with prompt counts
POST   /api/collections               - Create a collection
GET    /api/collections/{id}          - Fetch one collection
PATCH  /api/collections/{id}          - Update name, description, icon or color
DELETE /api/collections/{id}          - Delete; its prompts are detached
POST   /api/collections/{id}/share    - Make public and return the share link
DELETE /api/collections/{id}/share    - Stop sharing
GET    /api/share/{token}             - Public read of a shared collection
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from promptvault.api.deps import get_collection_service, get_db, get_settings
from promptvault.config import Settings
from promptvault.models import Collection
from promptvault.schemas.collection import (
    CollectionCreate,
    CollectionOut,
    CollectionUpdate,
    SharedCollectionInfo,
    SharedCollectionOut,
    SharedPromptOut,
    ShareOut,
)
from promptvault.services.collection_service import CollectionService, share_url

router = APIRouter(prefix="/api/collections", tags=["collections"])
share_router = APIRouter(prefix="/api/share", tags=["share"])


def _out(collection: Collection, prompt_count: int | None = None) -> CollectionOut:
    out = CollectionOut.model_validate(collection)
    out.prompt_count = len(collection.prompts) if prompt_count is None else prompt_count
    return out


@router.get("", response_model=list[CollectionOut])
def list_collections(service: CollectionService = Depends(get_collection_service)) -> list[CollectionOut]:
    return [_out(c, count) for c, count in service.list_collections()]


@router.post("", response_model=CollectionOut, status_code=status.HTTP_201_CREATED)
def create_collection(
    body: CollectionCreate,
    service: CollectionService = Depends(get_collection_service),
    db: Session = Depends(get_db),
) -> CollectionOut:
    collection = service.create_collection(
        body.name, description=body.description, icon=body.icon, color=body.color
    )
    db.commit()
    return _out(collection, 0)


@router.get("/{collection_id}", response_model=CollectionOut)
def get_collection(
    collection_id: int,
    service: CollectionService = Depends(get_collection_service),
) -> CollectionOut:
    return _out(service.get_collection(collection_id))


@router.patch("/{collection_id}", response_model=CollectionOut)
def update_collection(
    collection_id: int,
    body: CollectionUpdate,
    service: CollectionService = Depends(get_collection_service),
    db: Session = Depends(get_db),
) -> CollectionOut:
    collection = service.update_collection(collection_id, body.model_dump(exclude_unset=True))
    db.commit()
    return _out(collection)


@router.delete("/{collection_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_collection(
    collection_id: int,
    service: CollectionService = Depends(get_collection_service),
    db: Session = Depends(get_db),
) -> None:
    service.delete_collection(collection_id)
    db.commit()


@router.post("/{collection_id}/share", response_model=ShareOut)
def share_collection(
    collection_id: int,
    service: CollectionService = Depends(get_collection_service),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> ShareOut:
    token = service.enable_sharing(collection_id)
    db.commit()
    return ShareOut(
        collection=_out(service.get_collection(collection_id)),
        share_token=token,
        share_url=share_url(settings.APP_URL, token),
    )


@router.delete("/{collection_id}/share", response_model=CollectionOut)
def unshare_collection(
    collection_id: int,
    service: CollectionService = Depends(get_collection_service),
    db: Session = Depends(get_db),
) -> CollectionOut:
    collection = service.disable_sharing(collection_id)
    db.commit()
    return _out(collection)


@share_router.get("/{token}", response_model=SharedCollectionOut)
def get_shared_collection(token: str, db: Session = Depends(get_db)) -> SharedCollectionOut:
    collection = CollectionService.get_shared(db, token)
    prompts = [SharedPromptOut.model_validate(p) for p in collection.prompts]
    info = SharedCollectionInfo.model_validate(collection)
    info.prompt_count = len(prompts)
    return SharedCollectionOut(collection=info, prompts=prompts)
