"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from promptvault.database import build_engine
from promptvault.llm.base import AnalysisProvider, AnalysisRequest
from promptvault.models import Account, Category
from promptvault.models.base import Base
from promptvault.services.account_service import AccountService
from promptvault.services.analysis import DEFAULT_CATEGORY_NAMES
from promptvault.services.prompt_service import PromptService
from promptvault.services.tag_service import TagService


@pytest.fixture()
def tmp_db(tmp_path: Path) -> Path:
    """Return a temporary database file path."""
    return tmp_path / "test.db"


@pytest.fixture()
def engine(tmp_db: Path) -> Iterator[Engine]:
    engine = build_engine(f"sqlite:///{tmp_db}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture()
def session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    """A session on a fresh file database with the default categories."""
    sess = session_factory()
    sess.add_all(Category(name=name) for name in DEFAULT_CATEGORY_NAMES)
    sess.commit()
    yield sess
    sess.close()


@pytest.fixture()
def accounts(session: Session) -> AccountService:
    return AccountService(session)


@pytest.fixture()
def account(session: Session, accounts: AccountService) -> Account:
    acct = accounts.create_account("owner@example.com")
    session.commit()
    return acct


@pytest.fixture()
def other_account(session: Session, accounts: AccountService) -> Account:
    acct = accounts.create_account("other@example.com")
    session.commit()
    return acct


@pytest.fixture()
def service(session: Session, account: Account) -> PromptService:
    """Return a PromptService for the default account."""
    return PromptService(session, account.id)


@pytest.fixture()
def tag_service(session: Session) -> TagService:
    return TagService(session)


@pytest.fixture()
def category_ids(session: Session) -> dict[str, int]:
    """Category name to id."""
    return {c.name: c.id for c in TagService(session).list_categories()}


class StubProvider(AnalysisProvider):
    """Analysis provider returning a canned payload, or raising."""

    def __init__(self, payload: dict[str, Any] | None = None, error: Exception | None = None) -> None:
        self.payload = payload or {}
        self.error = error
        self.requests: list[AnalysisRequest] = []

    @property
    def name(self) -> str:
        return "stub"

    @property
    def model_name(self) -> str:
        return "stub-1"

    def analyze(self, request: AnalysisRequest) -> dict[str, Any]:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return dict(self.payload)


class RecordingSender:
    """Chat message sender that keeps what it was asked to send."""

    def __init__(self, fail: bool = False) -> None:
        self.messages: list[tuple[int, str]] = []
        self.fail = fail

    def send_message(self, chat_id: int, text: str) -> None:
        if self.fail:
            raise RuntimeError("network down")
        self.messages.append((chat_id, text))

    def texts(self) -> list[str]:
        return [text for _, text in self.messages]


@pytest.fixture()
def make_provider() -> Callable[..., StubProvider]:
    return StubProvider


@pytest.fixture()
def sender() -> RecordingSender:
    return RecordingSender()
