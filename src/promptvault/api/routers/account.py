"""
Browser-extension linking.

POST /api/extension/token   - Exchange a one-time link code for a bearer token
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from promptvault.api.deps import get_account_service, get_db
from promptvault.schemas.account import LinkCodeExchange, TokenOut
from promptvault.services.account_service import AccountService

router = APIRouter(prefix="/api/extension", tags=["extension"])


@router.post("/token", response_model=TokenOut)
def exchange_link_code(
    body: LinkCodeExchange,
    accounts: AccountService = Depends(get_account_service),
    db: Session = Depends(get_db),
) -> TokenOut:
    account = accounts.exchange_link_code(body.code)
    db.commit()
    return TokenOut(token=account.api_token, email=account.email)
