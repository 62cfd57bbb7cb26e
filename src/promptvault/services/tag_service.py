"""Tag reconciliation and the tag/category catalog."""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from promptvault.errors import ConflictError, ValidationError
from promptvault.models import Category, Tag, prompt_tags
from promptvault.models.prompt import DEFAULT_COLOR
from promptvault.services.persistence import find_one, get_or_create, insert_ignore


def normalize_tag_name(name: str) -> str:
    """Canonical form of a tag name: trimmed and lowercased."""
    return name.strip().lower()


class TagService:
    """Resolves free-text tag names to tag rows and links them to prompts."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def resolve_tags(self, names: Iterable[str], *, auto_generated: bool = False) -> list[int]:
        """Return tag ids for ``names``, creating tags that don't exist yet.

        Names are normalized first; blanks are dropped and equivalent names
        collapse to one id.  Order of first appearance is preserved.
        """
        ids: list[int] = []
        seen: set[str] = set()
        for raw in names:
            name = normalize_tag_name(raw)
            if not name or name in seen:
                continue
            seen.add(name)
            tag, _ = get_or_create(
                self._session,
                Tag,
                {"name": name},
                {"color": DEFAULT_COLOR, "is_auto_generated": auto_generated},
            )
            ids.append(tag.id)
        return ids

    def link_tags(self, prompt_id: int, tag_ids: Iterable[int]) -> int:
        """Link tags to a prompt. Existing links are left alone.

        Returns the number of new links.
        """
        created = 0
        for tag_id in tag_ids:
            if insert_ignore(self._session, prompt_tags, {"prompt_id": prompt_id, "tag_id": tag_id}):
                created += 1
        return created

    def tag_prompt(self, prompt_id: int, names: Iterable[str], *, auto_generated: bool = False) -> list[int]:
        """Resolve ``names`` and link the result to ``prompt_id``."""
        tag_ids = self.resolve_tags(names, auto_generated=auto_generated)
        self.link_tags(prompt_id, tag_ids)
        return tag_ids

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def list_tags(self) -> list[Tag]:
        return list(self._session.execute(select(Tag).order_by(Tag.name)).scalars().all())

    def sample_tag_names(self, limit: int = 20) -> list[str]:
        stmt = select(Tag.name).order_by(Tag.id).limit(limit)
        return list(self._session.execute(stmt).scalars().all())

    def create_tag(self, name: str, color: str | None = None) -> Tag:
        """Create a tag explicitly. Raises ConflictError if the name is taken."""
        normalized = normalize_tag_name(name or "")
        if not normalized:
            raise ValidationError("Tag name is required.")
        tag, created = get_or_create(
            self._session, Tag, {"name": normalized}, {"color": color or DEFAULT_COLOR}
        )
        if not created:
            raise ConflictError(f"Tag '{normalized}' already exists.")
        return tag

    def list_categories(self) -> list[Category]:
        return list(self._session.execute(select(Category).order_by(Category.name)).scalars().all())

    def get_category(self, category_id: int) -> Category | None:
        return self._session.get(Category, category_id)

    def create_category(
        self,
        name: str,
        description: str | None = None,
        icon: str | None = None,
        color: str | None = None,
        parent_id: int | None = None,
    ) -> Category:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Category name is required.")
        if parent_id is not None and self.get_category(parent_id) is None:
            raise ValidationError(f"Parent category {parent_id} does not exist.")
        if find_one(self._session, Category, {"name": name}) is not None:
            raise ConflictError(f"Category '{name}' already exists.")
        category = Category(
            name=name,
            description=description,
            icon=icon,
            color=color or DEFAULT_COLOR,
            parent_id=parent_id,
        )
        self._session.add(category)
        self._session.flush()
        return category
