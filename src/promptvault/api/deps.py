"""FastAPI dependencies: settings, sessions, authentication and services."""

from __future__ import annotations

from collections.abc import Iterator

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from promptvault.config import Settings
from promptvault.database import session_scope
from promptvault.errors import UnauthorizedError
from promptvault.models import Account
from promptvault.services.account_service import AccountService
from promptvault.services.analysis import AnalysisAdapter
from promptvault.services.collection_service import CollectionService
from promptvault.services.prompt_service import PromptService
from promptvault.services.usage_gate import UsageGate


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db(request: Request) -> Iterator[Session]:
    yield from session_scope(request.app.state.session_factory)


def get_account_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> AccountService:
    return AccountService(
        db,
        free_limit=settings.FREE_ANALYSES_LIMIT,
        link_code_ttl_minutes=settings.LINK_CODE_TTL_MINUTES,
    )


def get_current_account(
    authorization: str | None = Header(default=None),
    accounts: AccountService = Depends(get_account_service),
) -> Account:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise UnauthorizedError("Missing or invalid authorization header.")
    return accounts.authenticate(token.strip())


def get_prompt_service(
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> PromptService:
    return PromptService(db, account.id, retry_attempts=settings.WRITE_RETRY_ATTEMPTS)


def get_collection_service(
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db),
) -> CollectionService:
    return CollectionService(db, account.id)


def get_usage_gate(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> UsageGate:
    return UsageGate(db, free_limit=settings.FREE_ANALYSES_LIMIT)


def get_analysis_adapter(
    request: Request,
    db: Session = Depends(get_db),
    gate: UsageGate = Depends(get_usage_gate),
) -> AnalysisAdapter:
    return AnalysisAdapter(db, request.app.state.analysis_provider, gate)
