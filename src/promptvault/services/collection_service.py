"""Collections and their public share links."""

from __future__ import annotations

import logging
import secrets
from collections.abc import Mapping
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, selectinload

from promptvault.errors import NotFoundError, StorageError, ValidationError
from promptvault.models import Collection, Prompt
from promptvault.models.prompt import DEFAULT_COLOR

logger = logging.getLogger(__name__)

DEFAULT_ICON = "📁"

_UPDATABLE_FIELDS = frozenset({"name", "description", "icon", "color"})


def new_share_token() -> str:
    return secrets.token_hex(16)


def share_url(app_url: str, token: str) -> str:
    return f"{app_url.rstrip('/')}/share/{token}"


class CollectionService:
    """Account-scoped collection CRUD plus sharing."""

    def __init__(self, session: Session, account_id: int) -> None:
        self._session = session
        self._account_id = account_id

    def _load(self, collection_id: int, *, fresh: bool = False) -> Collection:
        stmt = select(Collection).where(
            Collection.id == collection_id, Collection.account_id == self._account_id
        )
        if fresh:
            stmt = stmt.execution_options(populate_existing=True)
        collection = self._session.execute(stmt).scalar_one_or_none()
        if collection is None:
            raise NotFoundError(f"Collection {collection_id} not found.")
        return collection

    def create_collection(
        self,
        name: str,
        description: str | None = None,
        icon: str | None = None,
        color: str | None = None,
    ) -> Collection:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Collection name is required.")
        collection = Collection(
            account_id=self._account_id,
            name=name,
            description=description,
            icon=icon or DEFAULT_ICON,
            color=color or DEFAULT_COLOR,
            is_public=False,
        )
        self._session.add(collection)
        self._session.flush()
        return collection

    def list_collections(self) -> list[tuple[Collection, int]]:
        """Return ``(collection, prompt_count)`` pairs, newest first."""
        counts = (
            select(Prompt.collection_id, func.count(Prompt.id).label("prompt_count"))
            .where(Prompt.account_id == self._account_id)
            .group_by(Prompt.collection_id)
            .subquery()
        )
        stmt = (
            select(Collection, func.coalesce(counts.c.prompt_count, 0))
            .outerjoin(counts, counts.c.collection_id == Collection.id)
            .where(Collection.account_id == self._account_id)
            .order_by(Collection.created_at.desc(), Collection.id.desc())
        )
        return [(row[0], int(row[1])) for row in self._session.execute(stmt).all()]

    def get_collection(self, collection_id: int) -> Collection:
        return self._load(collection_id)

    def update_collection(self, collection_id: int, changes: Mapping[str, Any]) -> Collection:
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update field(s): {', '.join(sorted(unknown))}.")
        collection = self._load(collection_id)
        if "name" in changes:
            name = (changes["name"] or "").strip()
            if not name:
                raise ValidationError("Collection name cannot be empty.")
            collection.name = name
        for field in ("description", "icon", "color"):
            if field in changes:
                setattr(collection, field, changes[field])
        self._session.flush()
        return collection

    def delete_collection(self, collection_id: int) -> None:
        """Delete a collection. Its prompts are kept and detached."""
        collection = self._load(collection_id)
        self._session.execute(
            update(Prompt)
            .where(Prompt.collection_id == collection.id)
            .values(collection_id=None, updated_at=Prompt.updated_at)
            .execution_options(synchronize_session=False)
        )
        self._session.delete(collection)
        self._session.flush()

    # ------------------------------------------------------------------
    # Sharing
    # ------------------------------------------------------------------

    def enable_sharing(self, collection_id: int) -> str:
        """Make a collection public and return its share token.

        An existing token is reused.  Otherwise a new one is set only if the
        column is still empty, so two concurrent callers end up with one token.
        """
        collection = self._load(collection_id)
        if collection.share_token is None:
            self._session.execute(
                update(Collection)
                .where(Collection.id == collection.id, Collection.share_token.is_(None))
                .values(share_token=new_share_token())
                .execution_options(synchronize_session=False)
            )
        self._session.execute(
            update(Collection)
            .where(Collection.id == collection.id)
            .values(is_public=True)
            .execution_options(synchronize_session=False)
        )
        collection = self._load(collection_id, fresh=True)
        if collection.share_token is None:
            raise StorageError(f"Could not assign a share token to collection {collection_id}.")
        logger.info(
            "Sharing enabled for collection %s",
            collection_id,
            extra={"event": "collection_shared", "collection_id": collection_id},
        )
        return collection.share_token

    def disable_sharing(self, collection_id: int) -> Collection:
        """Clear the public flag and the token in a single statement."""
        collection = self._load(collection_id)
        self._session.execute(
            update(Collection)
            .where(Collection.id == collection.id)
            .values(is_public=False, share_token=None)
            .execution_options(synchronize_session=False)
        )
        return self._load(collection_id, fresh=True)

    @staticmethod
    def get_shared(session: Session, token: str) -> Collection:
        """Public read of a shared collection and its prompts."""
        if not token:
            raise NotFoundError("Shared collection not found.")
        collection = session.execute(
            select(Collection)
            .options(selectinload(Collection.prompts).selectinload(Prompt.tags))
            .where(Collection.share_token == token, Collection.is_public.is_(True))
        ).scalar_one_or_none()
        if collection is None:
            raise NotFoundError("Shared collection not found.")
        return collection
