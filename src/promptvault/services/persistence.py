"""
Write helpers shared by the services.

``get_or_create`` closes the lookup/insert race on uniquely-constrained rows
and ``retry_on_conflict`` re-runs a read-decide-write sequence that lost a race
against another writer.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any, TypeVar

from sqlalchemy import Table, insert, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from promptvault.errors import ConflictError, StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M")


def find_one(session: Session, model: type[M], lookup: Mapping[str, Any]) -> M | None:
    """Return the row of ``model`` matching every ``lookup`` column, if any."""
    with session.no_autoflush:
        stmt = select(model).filter_by(**lookup)
        return session.execute(stmt).scalar_one_or_none()


def get_or_create(
    session: Session,
    model: type[M],
    lookup: Mapping[str, Any],
    defaults: Mapping[str, Any] | None = None,
) -> tuple[M, bool]:
    """Fetch the row identified by ``lookup`` or insert it.

    The insert runs inside a savepoint.  A unique-constraint violation means a
    concurrent writer created the row first; the savepoint is rolled back and
    the winner's row is fetched instead.

    Returns ``(instance, created)``.
    """
    instance = find_one(session, model, lookup)
    if instance is not None:
        return instance, False

    params = {**(defaults or {}), **lookup}
    try:
        with session.begin_nested():
            instance = model(**params)
            session.add(instance)
            session.flush()
        return instance, True
    except IntegrityError:
        logger.info(
            "Concurrent insert detected for %s %s, re-fetching",
            model.__name__,
            dict(lookup),
        )

    instance = find_one(session, model, lookup)
    if instance is None:
        # The violation was not on the lookup key.
        raise StorageError(f"Could not create {model.__name__} for {dict(lookup)}.")
    return instance, False


def insert_ignore(session: Session, table: Table, values: Mapping[str, Any]) -> bool:
    """Insert a row into ``table`` unless it already exists.

    Returns True when a row was written.
    """
    try:
        with session.begin_nested():
            session.execute(insert(table).values(**values))
        return True
    except IntegrityError:
        return False


def retry_on_conflict(
    operation: Callable[[], T],
    *,
    attempts: int = 3,
    description: str = "write",
) -> T:
    """Run ``operation``, re-running it when it raises ConflictError.

    After ``attempts`` lost races the conflict surfaces as StorageError.
    Database errors other than conflicts are wrapped in StorageError.
    """
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except ConflictError as exc:
            if attempt == attempts:
                logger.error(
                    "%s still conflicting after %d attempts: %s",
                    description,
                    attempts,
                    exc,
                    extra={"event": "write_conflict_exhausted", "attempt": attempt},
                )
                raise StorageError(
                    f"Could not complete {description}: concurrent updates kept conflicting."
                ) from exc
            logger.warning(
                "%s attempt %d conflicted: %s. Retrying.",
                description,
                attempt,
                exc,
                extra={"event": "write_conflict", "attempt": attempt},
            )
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not complete {description}: {exc}") from exc

    raise StorageError(f"Could not complete {description}.")
