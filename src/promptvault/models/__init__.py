from promptvault.models.account import (
    PRIVILEGED_PLANS,
    UNLIMITED,
    Account,
    PlanType,
    Subscription,
    SubscriptionStatus,
)
from promptvault.models.base import Base
from promptvault.models.prompt import (
    Category,
    Collection,
    Prompt,
    PromptVersion,
    Source,
    Tag,
    prompt_tags,
)

__all__ = [
    "PRIVILEGED_PLANS",
    "UNLIMITED",
    "Account",
    "Base",
    "Category",
    "Collection",
    "PlanType",
    "Prompt",
    "PromptVersion",
    "Source",
    "Subscription",
    "SubscriptionStatus",
    "Tag",
    "prompt_tags",
]
