"""
Analysis and subscription endpoints.

POST /api/ai/analyze     - Suggest title, tags, category and score (quota-gated)
GET  /api/subscription   - Plan and remaining analyses for the caller
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from promptvault.api.deps import get_analysis_adapter, get_current_account, get_db, get_usage_gate
from promptvault.models import Account
from promptvault.schemas.account import SubscriptionOut, SubscriptionStatusOut
from promptvault.schemas.analysis import AnalysisRequestIn, AnalysisResult
from promptvault.services.analysis import AnalysisAdapter
from promptvault.services.prompt_service import validate_source
from promptvault.services.usage_gate import UsageGate

router = APIRouter(prefix="/api", tags=["ai"])


@router.post("/ai/analyze", response_model=AnalysisResult)
def analyze_prompt(
    body: AnalysisRequestIn,
    account: Account = Depends(get_current_account),
    adapter: AnalysisAdapter = Depends(get_analysis_adapter),
    db: Session = Depends(get_db),
) -> AnalysisResult:
    source = validate_source(body.source) if body.source else None
    result = adapter.analyze_for(account.id, body.content, source, strict=True)
    db.commit()
    return result


@router.get("/subscription", response_model=SubscriptionStatusOut)
def get_subscription(
    account: Account = Depends(get_current_account),
    gate: UsageGate = Depends(get_usage_gate),
    db: Session = Depends(get_db),
) -> SubscriptionStatusOut:
    decision = gate.usage(account.id)
    subscription = gate.subscription_for(account.id)
    db.commit()
    return SubscriptionStatusOut(
        subscription=SubscriptionOut.model_validate(subscription),
        is_pro=subscription.is_privileged,
        can_use_ai=decision.allowed,
        ai_remaining=decision.remaining,
    )
