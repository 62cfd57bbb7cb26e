"""Monthly AI-analysis quota for free accounts."""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass

from sqlalchemy import update
from sqlalchemy.orm import Session

from promptvault.models import UNLIMITED, PlanType, Subscription, SubscriptionStatus
from promptvault.services.persistence import get_or_create

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageDecision:
    allowed: bool
    remaining: int  # UNLIMITED (-1) for privileged plans


def month_start(day: datetime.date) -> datetime.date:
    return day.replace(day=1)


def _today() -> datetime.date:
    return datetime.datetime.now(datetime.timezone.utc).date()


class UsageGate:
    """Counts analysis calls against the account's monthly limit.

    Every read-compare-increment is a single conditional UPDATE, so concurrent
    requests from one account can never push the counter past the limit.
    """

    def __init__(self, session: Session, free_limit: int = 10) -> None:
        self._session = session
        self._free_limit = free_limit

    def subscription_for(self, account_id: int) -> Subscription:
        """Return the account's subscription, creating the free default if missing."""
        subscription, created = get_or_create(
            self._session,
            Subscription,
            {"account_id": account_id},
            {
                "plan_type": PlanType.FREE.value,
                "status": SubscriptionStatus.ACTIVE.value,
                "ai_analyses_limit": self._free_limit,
                "ai_analyses_used": 0,
                "usage_period": month_start(_today()),
            },
        )
        if created:
            logger.info(
                "Created free subscription for account %s",
                account_id,
                extra={"event": "subscription_created", "account_id": account_id},
            )
        return subscription

    @staticmethod
    def _unlimited(subscription: Subscription) -> bool:
        return subscription.is_privileged or subscription.ai_analyses_limit < 0

    def _roll_period(self, subscription: Subscription, today: datetime.date) -> None:
        """Reset a counter that belongs to an earlier month.

        A counter with no period yet is adopted into the current month as is.
        """
        period = month_start(today)
        if subscription.usage_period is None:
            stmt = (
                update(Subscription)
                .where(Subscription.id == subscription.id, Subscription.usage_period.is_(None))
                .values(usage_period=period)
            )
        elif subscription.usage_period < period:
            stmt = (
                update(Subscription)
                .where(Subscription.id == subscription.id, Subscription.usage_period < period)
                .values(ai_analyses_used=0, usage_period=period)
            )
        else:
            return
        self._session.execute(stmt.execution_options(synchronize_session=False))
        self._session.refresh(subscription)

    def usage(self, account_id: int, today: datetime.date | None = None) -> UsageDecision:
        """Report whether an analysis would be allowed, without consuming one."""
        subscription = self.subscription_for(account_id)
        if self._unlimited(subscription):
            return UsageDecision(True, UNLIMITED)
        self._roll_period(subscription, today or _today())
        remaining = max(0, subscription.ai_analyses_limit - subscription.ai_analyses_used)
        return UsageDecision(remaining > 0, remaining)

    def check_and_consume(self, account_id: int, today: datetime.date | None = None) -> UsageDecision:
        """Consume one analysis if the quota allows it.

        Privileged plans are always allowed and never counted.  A denied
        request leaves the counter untouched.
        """
        subscription = self.subscription_for(account_id)
        if self._unlimited(subscription):
            return UsageDecision(True, UNLIMITED)

        self._roll_period(subscription, today or _today())
        result = self._session.execute(
            update(Subscription)
            .where(
                Subscription.id == subscription.id,
                Subscription.ai_analyses_used < Subscription.ai_analyses_limit,
            )
            .values(ai_analyses_used=Subscription.ai_analyses_used + 1)
            .execution_options(synchronize_session=False)
        )
        self._session.refresh(subscription)
        remaining = max(0, subscription.ai_analyses_limit - subscription.ai_analyses_used)

        if result.rowcount != 1:
            logger.info(
                "Analysis quota exhausted for account %s",
                account_id,
                extra={"event": "quota_exhausted", "account_id": account_id},
            )
            return UsageDecision(False, 0)
        return UsageDecision(True, remaining)

    def refund(self, account_id: int) -> None:
        """Give back one consumed analysis, e.g. when the provider call failed."""
        subscription = self.subscription_for(account_id)
        if self._unlimited(subscription):
            return
        self._session.execute(
            update(Subscription)
            .where(Subscription.id == subscription.id, Subscription.ai_analyses_used > 0)
            .values(ai_analyses_used=Subscription.ai_analyses_used - 1)
            .execution_options(synchronize_session=False)
        )
        self._session.refresh(subscription)
        logger.info(
            "Refunded analysis for account %s",
            account_id,
            extra={"event": "quota_refunded", "account_id": account_id},
        )
