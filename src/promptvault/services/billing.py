"""
Subscription state driven by payment-processor webhooks.

Signatures are verified before a payload is even parsed; a request that fails
verification never reaches the database.
"""

from __future__ import annotations

import datetime
import hashlib
import hmac
import json
import logging
from typing import Any

import stripe
from sqlalchemy import select
from sqlalchemy.orm import Session

from promptvault.errors import UnauthorizedError, ValidationError
from promptvault.models import UNLIMITED, Account, PlanType, Subscription, SubscriptionStatus
from promptvault.services.usage_gate import UsageGate

logger = logging.getLogger(__name__)

STRIPE_TOLERANCE_SECONDS = 300

LEMONSQUEEZY_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE.value,
    "on_trial": SubscriptionStatus.TRIALING.value,
    "paused": SubscriptionStatus.PAUSED.value,
    "past_due": SubscriptionStatus.PAST_DUE.value,
    "unpaid": SubscriptionStatus.PAST_DUE.value,
    "cancelled": SubscriptionStatus.CANCELED.value,
    "expired": SubscriptionStatus.CANCELED.value,
}

STRIPE_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE.value,
    "trialing": SubscriptionStatus.TRIALING.value,
    "paused": SubscriptionStatus.PAUSED.value,
    "past_due": SubscriptionStatus.PAST_DUE.value,
    "unpaid": SubscriptionStatus.PAST_DUE.value,
    "incomplete": SubscriptionStatus.PAST_DUE.value,
    "canceled": SubscriptionStatus.CANCELED.value,
    "incomplete_expired": SubscriptionStatus.CANCELED.value,
}


# ---------------------------------------------------------------------------
# Signatures
# ---------------------------------------------------------------------------


def _hmac_hex(secret: str, payload: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_lemonsqueezy_signature(payload: bytes, signature: str | None, secret: str | None) -> None:
    """Check the hex HMAC-SHA256 in the ``X-Signature`` header."""
    if not secret:
        raise UnauthorizedError("LemonSqueezy webhook secret is not configured.")
    if not signature or not hmac.compare_digest(signature.strip(), _hmac_hex(secret, payload)):
        raise UnauthorizedError("Invalid signature.")


def verify_stripe_signature(
    payload: bytes,
    header: str | None,
    secret: str | None,
    *,
    tolerance: int = STRIPE_TOLERANCE_SECONDS,
) -> None:
    """Check a ``Stripe-Signature`` header with the Stripe SDK."""
    if not secret:
        raise UnauthorizedError("Stripe webhook secret is not configured.")
    if not header:
        raise UnauthorizedError("Invalid signature.")
    try:
        stripe.WebhookSignature.verify_header(payload.decode("utf-8"), header, secret, tolerance)
    except stripe.SignatureVerificationError as exc:
        raise UnauthorizedError(f"Invalid signature: {exc.user_message or exc}") from exc
    except ValueError as exc:
        raise UnauthorizedError("Invalid signature.") from exc


def parse_event(payload: bytes) -> dict[str, Any]:
    try:
        event = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValidationError(f"Webhook body is not valid JSON: {exc}") from exc
    if not isinstance(event, dict):
        raise ValidationError("Webhook body must be a JSON object.")
    return event


def _iso_datetime(value: Any) -> datetime.datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(datetime.timezone.utc).replace(tzinfo=None)
    return parsed


def _epoch_datetime(value: Any) -> datetime.datetime | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return datetime.datetime.fromtimestamp(value, tz=datetime.timezone.utc).replace(tzinfo=None)


def _as_str(value: Any) -> str | None:
    return None if value is None else str(value)


class BillingService:
    """Applies verified payment events to Subscription rows."""

    def __init__(self, session: Session, free_limit: int = 10) -> None:
        self._session = session
        self._free_limit = free_limit
        self._gate = UsageGate(session, free_limit=free_limit)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _subscription_for_user(self, user_id: Any) -> Subscription | None:
        try:
            account_id = int(user_id)
        except (TypeError, ValueError):
            logger.warning("Webhook carries no usable user_id: %r", user_id)
            return None
        if self._session.get(Account, account_id) is None:
            logger.warning("Webhook references unknown account %s", account_id)
            return None
        return self._gate.subscription_for(account_id)

    def _subscription_for_customer(self, customer_id: Any) -> Subscription | None:
        if not customer_id:
            return None
        subscription = self._session.execute(
            select(Subscription).where(Subscription.provider_customer_id == str(customer_id))
        ).scalar_one_or_none()
        if subscription is None:
            logger.warning("No subscription found for customer %s", customer_id)
        return subscription

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _upgrade(self, subscription: Subscription, status: str) -> None:
        subscription.plan_type = PlanType.PRO.value
        subscription.status = status
        subscription.ai_analyses_limit = UNLIMITED

    def _downgrade(self, subscription: Subscription) -> None:
        subscription.plan_type = PlanType.FREE.value
        subscription.status = SubscriptionStatus.CANCELED.value
        subscription.ai_analyses_limit = self._free_limit
        subscription.cancel_at_period_end = False

    @staticmethod
    def _payment_succeeded(subscription: Subscription) -> None:
        subscription.ai_analyses_used = 0
        subscription.status = SubscriptionStatus.ACTIVE.value

    @staticmethod
    def _payment_failed(subscription: Subscription) -> None:
        subscription.status = SubscriptionStatus.PAST_DUE.value

    # ------------------------------------------------------------------
    # LemonSqueezy
    # ------------------------------------------------------------------

    def handle_lemonsqueezy(self, event: dict[str, Any]) -> str:
        """Apply a LemonSqueezy event. Returns the event name."""
        meta = event.get("meta") or {}
        event_name = str(meta.get("event_name") or "")
        user_id = (meta.get("custom_data") or {}).get("user_id")
        data = event.get("data") or {}
        attributes = data.get("attributes") or {}

        logger.info(
            "LemonSqueezy webhook event: %s",
            event_name,
            extra={"event": "billing_webhook", "event_name": event_name, "provider": "lemonsqueezy"},
        )

        if event_name == "order_created":
            logger.info("Order created for user %s", user_id)
            return event_name
        if event_name not in {
            "subscription_created",
            "subscription_updated",
            "subscription_cancelled",
            "subscription_expired",
            "subscription_resumed",
            "subscription_payment_success",
            "subscription_payment_failed",
        }:
            return event_name

        subscription = self._subscription_for_user(user_id)
        if subscription is None:
            return event_name

        if event_name in ("subscription_created", "subscription_updated"):
            status = LEMONSQUEEZY_STATUS_MAP.get(
                str(attributes.get("status")), SubscriptionStatus.ACTIVE.value
            )
            self._upgrade(subscription, status)
            subscription.provider_customer_id = _as_str(attributes.get("customer_id"))
            subscription.provider_subscription_id = _as_str(data.get("id"))
            subscription.current_period_start = _iso_datetime(attributes.get("created_at"))
            subscription.current_period_end = _iso_datetime(attributes.get("renews_at"))
            subscription.cancel_at_period_end = bool(attributes.get("cancelled"))
        elif event_name in ("subscription_cancelled", "subscription_expired"):
            self._downgrade(subscription)
        elif event_name == "subscription_resumed":
            self._upgrade(subscription, SubscriptionStatus.ACTIVE.value)
            subscription.cancel_at_period_end = False
        elif event_name == "subscription_payment_success":
            self._payment_succeeded(subscription)
        elif event_name == "subscription_payment_failed":
            self._payment_failed(subscription)

        self._session.flush()
        return event_name

    # ------------------------------------------------------------------
    # Stripe
    # ------------------------------------------------------------------

    def handle_stripe(self, event: dict[str, Any]) -> str:
        """Apply a Stripe event. Returns the event type."""
        event_type = str(event.get("type") or "")
        obj = (event.get("data") or {}).get("object") or {}

        logger.info(
            "Stripe webhook event: %s",
            event_type,
            extra={"event": "billing_webhook", "event_name": event_type, "provider": "stripe"},
        )

        if event_type == "checkout.session.completed":
            subscription = self._subscription_for_user((obj.get("metadata") or {}).get("user_id"))
            if subscription is None:
                return event_type
            self._upgrade(subscription, SubscriptionStatus.ACTIVE.value)
            subscription.provider_customer_id = _as_str(obj.get("customer"))
            subscription.provider_subscription_id = _as_str(obj.get("subscription"))
        elif event_type in (
            "customer.subscription.updated",
            "customer.subscription.deleted",
            "invoice.payment_succeeded",
            "invoice.payment_failed",
        ):
            subscription = self._subscription_for_customer(obj.get("customer"))
            if subscription is None:
                return event_type
            if event_type == "customer.subscription.updated":
                subscription.status = STRIPE_STATUS_MAP.get(
                    str(obj.get("status")), SubscriptionStatus.ACTIVE.value
                )
                subscription.current_period_start = _epoch_datetime(obj.get("current_period_start"))
                subscription.current_period_end = _epoch_datetime(obj.get("current_period_end"))
                subscription.cancel_at_period_end = bool(obj.get("cancel_at_period_end"))
            elif event_type == "customer.subscription.deleted":
                self._downgrade(subscription)
                subscription.provider_subscription_id = None
            elif event_type == "invoice.payment_succeeded":
                self._payment_succeeded(subscription)
            else:
                self._payment_failed(subscription)
        else:
            return event_type

        self._session.flush()
        return event_type
