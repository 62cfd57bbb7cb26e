from __future__ import annotations

import datetime

from pydantic import BaseModel, ConfigDict, Field


class SubscriptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    plan_type: str
    status: str
    ai_analyses_used: int
    ai_analyses_limit: int
    current_period_end: datetime.datetime | None = None
    cancel_at_period_end: bool = False


class SubscriptionStatusOut(BaseModel):
    subscription: SubscriptionOut
    is_pro: bool
    can_use_ai: bool
    ai_remaining: int = Field(description="-1 means unlimited")


class LinkCodeExchange(BaseModel):
    code: str = Field(..., min_length=1, max_length=16)


class TokenOut(BaseModel):
    token: str
    email: str
