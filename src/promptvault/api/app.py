"""Application factory for the HTTP API."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker

from promptvault import __version__
from promptvault.api.routers import account, ai, catalog, collections, prompts, webhooks
from promptvault.config import Settings, get_settings
from promptvault.database import get_session_factory, init_db
from promptvault.errors import (
    ConflictError,
    NotFoundError,
    PromptVaultError,
    ProviderError,
    QuotaExceededError,
    StorageError,
    UnauthorizedError,
    ValidationError,
)
from promptvault.llm import AnalysisProvider, get_analysis_provider
from promptvault.services.chat_bot import MessageSender, TelegramClient

logger = logging.getLogger(__name__)

# Most specific first; the first isinstance match wins.
ERROR_STATUS: tuple[tuple[type[PromptVaultError], int], ...] = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (UnauthorizedError, status.HTTP_401_UNAUTHORIZED),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (QuotaExceededError, status.HTTP_429_TOO_MANY_REQUESTS),
    (ProviderError, status.HTTP_502_BAD_GATEWAY),
    (StorageError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def status_for(exc: PromptVaultError) -> int:
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def _promptvault_error_handler(request: Request, exc: PromptVaultError) -> JSONResponse:
    code = status_for(exc)
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=code, content={"detail": str(exc)})


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "; ".join(messages) or "Invalid request."},
    )


def create_app(
    settings: Settings | None = None,
    session_factory: sessionmaker[Session] | None = None,
    *,
    analysis_provider: AnalysisProvider | None = None,
    telegram_sender: MessageSender | None = None,
) -> FastAPI:
    """Build the API.

    Without an explicit ``session_factory`` the configured database is
    migrated to head and used.  Without an explicit provider or sender they
    are built from settings, and stay None when not configured.
    """
    settings = settings or get_settings()
    if session_factory is None:
        init_db(settings.database_target)
        session_factory = get_session_factory(settings.database_target)
    if analysis_provider is None:
        analysis_provider = get_analysis_provider(settings)
    owned_client: TelegramClient | None = None
    if telegram_sender is None and settings.TELEGRAM_BOT_TOKEN:
        owned_client = TelegramClient(
            settings.TELEGRAM_BOT_TOKEN, timeout=settings.TELEGRAM_TIMEOUT_SECONDS
        )
        telegram_sender = owned_client

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            if owned_client is not None:
                owned_client.close()

    app = FastAPI(title="PromptVault", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.analysis_provider = analysis_provider
    app.state.telegram_sender = telegram_sender

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(PromptVaultError, _promptvault_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)

    app.include_router(prompts.router)
    app.include_router(catalog.router)
    app.include_router(collections.router)
    app.include_router(collections.share_router)
    app.include_router(ai.router)
    app.include_router(account.router)
    app.include_router(webhooks.router)

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok", "service": "promptvault", "ai_enabled": analysis_provider is not None}

    return app
