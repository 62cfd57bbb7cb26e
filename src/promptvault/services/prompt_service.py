"""Core business-logic service for prompts and their versions."""

from __future__ import annotations

import datetime
import difflib
import json
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from promptvault.errors import ConflictError, NotFoundError, StorageError, ValidationError
from promptvault.models import Category, Collection, Prompt, PromptVersion, Source, Tag
from promptvault.services.persistence import retry_on_conflict
from promptvault.services.tag_service import TagService, normalize_tag_name

logger = logging.getLogger(__name__)

INITIAL_VERSION_NOTE = "Initial version"

_UPDATABLE_FIELDS = frozenset(
    {
        "title",
        "content",
        "source",
        "category_id",
        "collection_id",
        "effectiveness_score",
        "is_favorite",
    }
)


def validate_source(source: str | Source | None) -> str:
    if isinstance(source, Source):
        return source.value
    if not source:
        raise ValidationError("Source is required.")
    try:
        return Source(source).value
    except ValueError:
        allowed = ", ".join(s.value for s in Source)
        raise ValidationError(f"Unknown source '{source}'. Expected one of: {allowed}.") from None


def validate_score(score: Any) -> int | None:
    if score is None:
        return None
    if isinstance(score, bool) or not isinstance(score, int) or not 1 <= score <= 10:
        raise ValidationError("Effectiveness score must be an integer from 1 to 10.")
    return score


class PromptService:
    """Service layer wrapping all prompt operations for one account."""

    def __init__(self, session: Session, account_id: int, *, retry_attempts: int = 3) -> None:
        self._session = session
        self._account_id = account_id
        self._retry_attempts = retry_attempts
        self._tags = TagService(session)

    @property
    def account_id(self) -> int:
        return self._account_id

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _load(self, prompt_id: int, *, fresh: bool = False) -> Prompt:
        stmt = select(Prompt).where(Prompt.id == prompt_id, Prompt.account_id == self._account_id)
        if fresh:
            stmt = stmt.execution_options(populate_existing=True)
        prompt = self._session.execute(stmt).scalar_one_or_none()
        if prompt is None:
            raise NotFoundError(f"Prompt {prompt_id} not found.")
        return prompt

    def _check_references(self, category_id: int | None, collection_id: int | None) -> None:
        if category_id is not None and self._session.get(Category, category_id) is None:
            raise NotFoundError(f"Category {category_id} not found.")
        if collection_id is not None:
            collection = self._session.get(Collection, collection_id)
            if collection is None or collection.account_id != self._account_id:
                raise NotFoundError(f"Collection {collection_id} not found.")

    def get_prompt(self, prompt_id: int) -> Prompt:
        """Fetch a prompt by id. Raises NotFoundError if absent or not owned."""
        return self._load(prompt_id)

    def list_prompts(
        self,
        *,
        query: str | None = None,
        source: str | None = None,
        category_id: int | None = None,
        collection_id: int | None = None,
        is_favorite: bool | None = None,
        tags: Iterable[str] | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Prompt]:
        """Return prompts, most recently updated first."""
        stmt = (
            select(Prompt)
            .options(selectinload(Prompt.tags), selectinload(Prompt.category))
            .where(Prompt.account_id == self._account_id)
        )
        if source:
            stmt = stmt.where(Prompt.source == validate_source(source))
        if category_id is not None:
            stmt = stmt.where(Prompt.category_id == category_id)
        if collection_id is not None:
            stmt = stmt.where(Prompt.collection_id == collection_id)
        if is_favorite is not None:
            stmt = stmt.where(Prompt.is_favorite.is_(is_favorite))
        if query:
            pattern = f"%{query}%"
            stmt = stmt.where(or_(Prompt.title.ilike(pattern), Prompt.content.ilike(pattern)))
        tag_names = [normalize_tag_name(t) for t in tags or [] if t.strip()]
        if tag_names:
            stmt = stmt.where(Prompt.tags.any(Tag.name.in_(tag_names)))
        stmt = stmt.order_by(Prompt.updated_at.desc(), Prompt.id.desc()).limit(limit).offset(offset)
        return list(self._session.execute(stmt).scalars().all())

    def recent_prompts(self, limit: int = 5) -> list[Prompt]:
        """Return the most recently created prompts."""
        stmt = (
            select(Prompt)
            .where(Prompt.account_id == self._account_id)
            .order_by(Prompt.created_at.desc(), Prompt.id.desc())
            .limit(limit)
        )
        return list(self._session.execute(stmt).scalars().all())

    def stats(self, now: datetime.datetime | None = None) -> dict[str, int]:
        """Counts of all prompts, favorites and prompts added in the last 7 days."""
        now = now or datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)
        week_ago = now - datetime.timedelta(days=7)
        owned = Prompt.account_id == self._account_id

        def count(*criteria: Any) -> int:
            stmt = select(func.count()).select_from(Prompt).where(owned, *criteria)
            return int(self._session.execute(stmt).scalar_one())

        return {
            "total": count(),
            "favorites": count(Prompt.is_favorite.is_(True)),
            "this_week": count(Prompt.created_at >= week_ago),
        }

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_prompt(
        self,
        title: str | None,
        content: str | None,
        source: str | Source | None,
        *,
        category_id: int | None = None,
        collection_id: int | None = None,
        effectiveness_score: int | None = None,
        tags: Iterable[str] | None = None,
        is_favorite: bool = False,
        change_notes: str = INITIAL_VERSION_NOTE,
        auto_tags: bool = False,
    ) -> Prompt:
        """Create a prompt together with its first version, then tag it."""
        title = (title or "").strip()
        if not title:
            raise ValidationError("Title is required.")
        if not content or not content.strip():
            raise ValidationError("Content is required.")
        source_value = validate_source(source)
        score = validate_score(effectiveness_score)
        self._check_references(category_id, collection_id)

        try:
            with self._session.begin_nested():
                prompt = Prompt(
                    account_id=self._account_id,
                    title=title,
                    content=content,
                    source=source_value,
                    category_id=category_id,
                    collection_id=collection_id,
                    effectiveness_score=score,
                    is_favorite=is_favorite,
                    use_count=0,
                    current_version=1,
                )
                prompt.versions.append(
                    PromptVersion(
                        version_number=1,
                        content=content,
                        change_notes=change_notes,
                        effectiveness_score=score,
                    )
                )
                self._session.add(prompt)
                self._session.flush()
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not create prompt: {exc}") from exc

        if tags:
            self._tags.tag_prompt(prompt.id, tags, auto_generated=auto_tags)
            self._session.expire(prompt, ["tags"])

        logger.info(
            "Created prompt %s (%s)",
            prompt.id,
            source_value,
            extra={"event": "prompt_created", "prompt_id": prompt.id, "account_id": self._account_id},
        )
        return prompt

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def _validated_changes(self, changes: Mapping[str, Any]) -> dict[str, Any]:
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update field(s): {', '.join(sorted(unknown))}.")

        values = dict(changes)
        if "title" in values:
            title = (values["title"] or "").strip()
            if not title:
                raise ValidationError("Title cannot be empty.")
            values["title"] = title
        if "content" in values and (not values["content"] or not values["content"].strip()):
            raise ValidationError("Content cannot be empty.")
        if "source" in values:
            values["source"] = validate_source(values["source"])
        if "effectiveness_score" in values:
            values["effectiveness_score"] = validate_score(values["effectiveness_score"])
        if "is_favorite" in values:
            values["is_favorite"] = bool(values["is_favorite"])
        self._check_references(values.get("category_id"), values.get("collection_id"))
        return values

    def update_prompt(
        self,
        prompt_id: int,
        changes: Mapping[str, Any],
        *,
        change_notes: str | None = None,
        tags: Iterable[str] | None = None,
    ) -> Prompt:
        """Apply ``changes`` to a prompt.

        A content change advances ``current_version`` by one and appends a
        matching PromptVersion in the same savepoint.  Unchanged or absent
        content leaves the version history alone.
        """
        values = self._validated_changes(changes)
        prompt = retry_on_conflict(
            lambda: self._apply_update(prompt_id, values, change_notes),
            attempts=self._retry_attempts,
            description=f"update of prompt {prompt_id}",
        )
        if tags:
            self._tags.tag_prompt(prompt.id, tags)
            self._session.expire(prompt, ["tags"])
        return prompt

    def _apply_update(
        self,
        prompt_id: int,
        values: Mapping[str, Any],
        change_notes: str | None,
    ) -> Prompt:
        prompt = self._load(prompt_id, fresh=True)
        row = dict(values)
        content = row.pop("content", None)
        expected = prompt.current_version
        content_changed = content is not None and content != prompt.content

        if content_changed:
            row["content"] = content
            row["current_version"] = expected + 1
        if not row:
            return prompt

        stmt = update(Prompt).where(
            Prompt.id == prompt.id,
            Prompt.account_id == self._account_id,
        )
        if content_changed:
            stmt = stmt.where(Prompt.current_version == expected)

        try:
            with self._session.begin_nested():
                result = self._session.execute(
                    stmt.values(**row).execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise ConflictError(f"Prompt {prompt_id} changed while it was being updated.")
                if content_changed:
                    if "effectiveness_score" in row:
                        score = row["effectiveness_score"]
                    else:
                        score = prompt.effectiveness_score
                    self._session.add(
                        PromptVersion(
                            prompt_id=prompt.id,
                            version_number=expected + 1,
                            content=content,
                            change_notes=change_notes or f"Version {expected + 1}",
                            effectiveness_score=score,
                        )
                    )
                    self._session.flush()
        except IntegrityError as exc:
            if content_changed:
                raise ConflictError(
                    f"Version {expected + 1} of prompt {prompt_id} was written concurrently."
                ) from exc
            raise StorageError(f"Could not update prompt {prompt_id}: {exc}") from exc

        self._session.expire(prompt)
        if content_changed:
            logger.info(
                "Prompt %s advanced to v%d",
                prompt_id,
                expected + 1,
                extra={"event": "prompt_versioned", "prompt_id": prompt_id},
            )
        return prompt

    def record_use(self, prompt_id: int) -> None:
        """Increment the use counter. Does not touch versions or updated_at."""
        result = self._session.execute(
            update(Prompt)
            .where(Prompt.id == prompt_id, Prompt.account_id == self._account_id)
            .values(use_count=Prompt.use_count + 1, updated_at=Prompt.updated_at)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError(f"Prompt {prompt_id} not found.")
        prompt = self._session.get(Prompt, prompt_id)
        if prompt is not None:
            self._session.expire(prompt, ["use_count"])

    def delete_prompt(self, prompt_id: int) -> None:
        """Delete a prompt and all its versions."""
        prompt = self._load(prompt_id)
        self._session.delete(prompt)
        self._session.flush()

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    def list_versions(self, prompt_id: int) -> list[PromptVersion]:
        """List all versions of a prompt, oldest first."""
        prompt = self._load(prompt_id)
        return list(
            self._session.execute(
                select(PromptVersion)
                .where(PromptVersion.prompt_id == prompt.id)
                .order_by(PromptVersion.version_number)
            )
            .scalars()
            .all()
        )

    def get_version(self, prompt_id: int, version_number: int) -> PromptVersion:
        """Fetch a specific version of a prompt."""
        prompt = self._load(prompt_id)
        version = self._session.execute(
            select(PromptVersion).where(
                PromptVersion.prompt_id == prompt.id,
                PromptVersion.version_number == version_number,
            )
        ).scalar_one_or_none()
        if version is None:
            raise NotFoundError(f"Version {version_number} not found for prompt {prompt_id}.")
        return version

    def diff_versions(self, prompt_id: int, v1: int, v2: int) -> str:
        """Return a unified diff between two versions of a prompt."""
        ver1 = self.get_version(prompt_id, v1)
        ver2 = self.get_version(prompt_id, v2)
        diff = difflib.unified_diff(
            ver1.content.splitlines(keepends=True),
            ver2.content.splitlines(keepends=True),
            fromfile=f"prompt {prompt_id} v{v1}",
            tofile=f"prompt {prompt_id} v{v2}",
        )
        return "".join(diff)

    def restore_version(self, prompt_id: int, version_number: int) -> Prompt:
        """Make an old version's content current again, as a new version."""
        old = self.get_version(prompt_id, version_number)
        return self.update_prompt(
            prompt_id,
            {"content": old.content},
            change_notes=f"Restored from v{version_number}",
        )

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export_prompt(self, prompt_id: int) -> str:
        """Export a prompt and all its versions as JSON."""
        prompt = self._load(prompt_id)
        versions = self.list_versions(prompt_id)
        data = {
            "id": prompt.id,
            "title": prompt.title,
            "source": prompt.source,
            "category": prompt.category.name if prompt.category else None,
            "tags": [t.name for t in prompt.tags],
            "current_version": prompt.current_version,
            "created_at": prompt.created_at.isoformat() if prompt.created_at else None,
            "versions": [
                {
                    "version_number": v.version_number,
                    "content": v.content,
                    "change_notes": v.change_notes,
                    "effectiveness_score": v.effectiveness_score,
                    "created_at": v.created_at.isoformat() if v.created_at else None,
                }
                for v in versions
            ],
        }
        return json.dumps(data, indent=2, ensure_ascii=False)

    def export_to_file(self, prompt_id: int, path: Path) -> Path:
        """Export prompt JSON to a file."""
        path.write_text(self.export_prompt(prompt_id), encoding="utf-8")
        return path
