from __future__ import annotations

import datetime
import enum

from sqlalchemy import BigInteger, Boolean, Date, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from promptvault.models.base import Base

UNLIMITED = -1


class PlanType(str, enum.Enum):
    FREE = "free"
    PRO = "pro"
    LIFETIME = "lifetime"


PRIVILEGED_PLANS = frozenset({PlanType.PRO.value, PlanType.LIFETIME.value})


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "active"
    TRIALING = "trialing"
    PAUSED = "paused"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    api_token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    link_code: Mapped[str | None] = mapped_column(String(16), unique=True, nullable=True)
    link_code_expires_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime, nullable=True
    )
    telegram_chat_id: Mapped[int | None] = mapped_column(BigInteger, unique=True, nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    subscription: Mapped[Subscription | None] = relationship(
        "Subscription", back_populates="account", uselist=False, passive_deletes=True
    )

    def __repr__(self) -> str:
        return f"<Account(email={self.email!r})>"


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("accounts.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    plan_type: Mapped[str] = mapped_column(String(16), nullable=False, default=PlanType.FREE.value)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=SubscriptionStatus.ACTIVE.value
    )
    provider_customer_id: Mapped[str | None] = mapped_column(String(255), index=True)
    provider_subscription_id: Mapped[str | None] = mapped_column(String(255))
    current_period_start: Mapped[datetime.datetime | None] = mapped_column(DateTime)
    current_period_end: Mapped[datetime.datetime | None] = mapped_column(DateTime)
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ai_analyses_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ai_analyses_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    usage_period: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    account: Mapped[Account] = relationship("Account", back_populates="subscription")

    @property
    def is_privileged(self) -> bool:
        return self.plan_type in PRIVILEGED_PLANS

    def __repr__(self) -> str:
        return f"<Subscription(account_id={self.account_id}, plan={self.plan_type!r})>"
