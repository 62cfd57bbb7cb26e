"""
Inbound webhooks.

POST /api/webhooks/lemonsqueezy   - LemonSqueezy subscription events
POST /api/webhooks/stripe         - Stripe subscription events
POST /api/telegram/webhook        - Chat-bot updates
"""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session

from promptvault.api.deps import get_account_service, get_analysis_adapter, get_db, get_settings
from promptvault.config import Settings
from promptvault.errors import UnauthorizedError
from promptvault.services.account_service import AccountService
from promptvault.services.analysis import AnalysisAdapter
from promptvault.services.billing import (
    BillingService,
    parse_event,
    verify_lemonsqueezy_signature,
    verify_stripe_signature,
)
from promptvault.services.chat_bot import ChatBot
from promptvault.services.prompt_service import PromptService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["webhooks"])


async def raw_body(request: Request) -> bytes:
    return await request.body()


@router.post("/webhooks/lemonsqueezy")
def lemonsqueezy_webhook(
    payload: bytes = Depends(raw_body),
    x_signature: str | None = Header(default=None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> dict:
    verify_lemonsqueezy_signature(payload, x_signature, settings.LEMONSQUEEZY_WEBHOOK_SECRET)
    event = parse_event(payload)
    BillingService(db, free_limit=settings.FREE_ANALYSES_LIMIT).handle_lemonsqueezy(event)
    db.commit()
    return {"received": True}


@router.post("/webhooks/stripe")
def stripe_webhook(
    payload: bytes = Depends(raw_body),
    stripe_signature: str | None = Header(default=None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> dict:
    verify_stripe_signature(payload, stripe_signature, settings.STRIPE_WEBHOOK_SECRET)
    event = parse_event(payload)
    BillingService(db, free_limit=settings.FREE_ANALYSES_LIMIT).handle_stripe(event)
    db.commit()
    return {"received": True}


@router.post("/telegram/webhook")
def telegram_webhook(
    request: Request,
    payload: bytes = Depends(raw_body),
    x_telegram_bot_api_secret_token: str | None = Header(default=None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    accounts: AccountService = Depends(get_account_service),
    adapter: AnalysisAdapter = Depends(get_analysis_adapter),
) -> dict:
    secret = settings.TELEGRAM_WEBHOOK_SECRET
    if secret and x_telegram_bot_api_secret_token != secret:
        raise UnauthorizedError("Unauthorized")

    sender = request.app.state.telegram_sender
    if sender is None:
        logger.error("TELEGRAM_BOT_TOKEN not configured")
        return {"ok": True}

    try:
        update = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError):
        logger.warning("Ignoring malformed Telegram update")
        return {"ok": True}
    if isinstance(update, dict):
        bot = ChatBot(
            db,
            sender,
            adapter,
            accounts=accounts,
            prompt_service_factory=lambda account_id: PromptService(
                db, account_id, retry_attempts=settings.WRITE_RETRY_ATTEMPTS
            ),
        )
        bot.handle_update(update)
    return {"ok": True}
