"""Database engine and session management."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

from alembic import command as alembic_command
from alembic.config import Config as AlembicConfig
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def database_url(target: str | Path) -> str:
    """Turn a SQLAlchemy URL or a SQLite file path into a URL."""
    if isinstance(target, str) and "://" in target:
        return target
    return f"sqlite:///{Path(target)}"


def _alembic_cfg(db_url: str) -> AlembicConfig:
    """Build an Alembic Config pointing at the bundled migrations."""
    # alembic.ini lives at the project root; find it relative to this file
    pkg_dir = Path(__file__).resolve().parent  # src/promptvault
    project_root = pkg_dir.parent.parent  # repo root
    ini_path = project_root / "alembic.ini"
    cfg = AlembicConfig(str(ini_path))
    cfg.set_main_option("sqlalchemy.url", db_url)
    cfg.set_main_option("script_location", str(project_root / "alembic"))
    return cfg


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """Turn on foreign keys and let SQLAlchemy own BEGIN so SAVEPOINTs nest."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # type: ignore[no-untyped-def]
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):  # type: ignore[no-untyped-def]
        conn.exec_driver_sql("BEGIN")


def build_engine(url: str) -> Engine:
    """Create a new engine for ``url`` with SQLite connection tweaks applied."""
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    engine = create_engine(url, echo=False, connect_args=connect_args)
    if engine.dialect.name == "sqlite":
        _enable_sqlite_savepoints(engine)
    return engine


def get_engine(target: str | Path) -> Engine:
    """Create or return a cached SQLAlchemy engine."""
    global _engine
    if _engine is not None:
        return _engine
    url = database_url(target)
    if url.startswith("sqlite:///"):
        Path(url.removeprefix("sqlite:///")).parent.mkdir(parents=True, exist_ok=True)
    _engine = build_engine(url)
    return _engine


def get_session_factory(target: str | Path) -> sessionmaker[Session]:
    """Return a session factory, creating the engine if needed."""
    global _session_factory
    if _session_factory is not None:
        return _session_factory
    engine = get_engine(target)
    _session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    return _session_factory


def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    """Yield a session and close it afterwards. Used as a FastAPI dependency."""
    session = factory()
    try:
        yield session
    finally:
        session.close()


def init_db(target: str | Path) -> None:
    """Initialise the database by running Alembic migrations to head.

    This is idempotent – safe to call multiple times.  It creates parent
    directories and the SQLite file as needed, then applies any pending
    Alembic migrations so that ``alembic_version`` is always present.
    """
    get_engine(target)
    cfg = _alembic_cfg(database_url(target))
    # Silence Alembic's INFO logging so it doesn't pollute CLI output.
    alembic_logger = logging.getLogger("alembic")
    prev_level = alembic_logger.level
    alembic_logger.setLevel(logging.WARNING)
    try:
        alembic_command.upgrade(cfg, "head")
    finally:
        alembic_logger.setLevel(prev_level)


def reset_engine() -> None:
    """Reset the cached engine and session factory. Used in tests."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None
