"""
Tag and category catalog.

GET  /api/tags         - List tags
POST /api/tags         - Create a tag
GET  /api/categories   - List categories
POST /api/categories   - Create a category
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from promptvault.api.deps import get_current_account, get_db
from promptvault.schemas.prompt import CategoryCreate, CategoryOut, TagCreate, TagOut
from promptvault.services.tag_service import TagService

router = APIRouter(prefix="/api", tags=["catalog"], dependencies=[Depends(get_current_account)])


@router.get("/tags", response_model=list[TagOut])
def list_tags(db: Session = Depends(get_db)) -> list[TagOut]:
    return [TagOut.model_validate(t) for t in TagService(db).list_tags()]


@router.post("/tags", response_model=TagOut, status_code=status.HTTP_201_CREATED)
def create_tag(body: TagCreate, db: Session = Depends(get_db)) -> TagOut:
    tag = TagService(db).create_tag(body.name, body.color)
    db.commit()
    return TagOut.model_validate(tag)


@router.get("/categories", response_model=list[CategoryOut])
def list_categories(db: Session = Depends(get_db)) -> list[CategoryOut]:
    return [CategoryOut.model_validate(c) for c in TagService(db).list_categories()]


@router.post("/categories", response_model=CategoryOut, status_code=status.HTTP_201_CREATED)
def create_category(body: CategoryCreate, db: Session = Depends(get_db)) -> CategoryOut:
    category = TagService(db).create_category(
        body.name,
        description=body.description,
        icon=body.icon,
        color=body.color,
        parent_id=body.parent_id,
    )
    db.commit()
    return CategoryOut.model_validate(category)
