"""Accounts, bearer tokens and the one-time extension linking flow."""

from __future__ import annotations

import datetime
import logging
import secrets

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from promptvault.errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from promptvault.models import Account
from promptvault.services.persistence import find_one, get_or_create
from promptvault.services.usage_gate import UsageGate

logger = logging.getLogger(__name__)

LOCAL_ACCOUNT_EMAIL = "local@promptvault"


def new_api_token() -> str:
    return secrets.token_urlsafe(32)


def new_link_code() -> str:
    return secrets.token_hex(4).upper()


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


class AccountService:
    def __init__(
        self,
        session: Session,
        *,
        free_limit: int = 10,
        link_code_ttl_minutes: int = 10,
    ) -> None:
        self._session = session
        self._gate = UsageGate(session, free_limit=free_limit)
        self._link_code_ttl = datetime.timedelta(minutes=link_code_ttl_minutes)

    def create_account(self, email: str) -> Account:
        """Create an account with a fresh token and a free subscription."""
        email = (email or "").strip().lower()
        if not email or "@" not in email:
            raise ValidationError("A valid email address is required.")
        account, created = get_or_create(
            self._session, Account, {"email": email}, {"api_token": new_api_token()}
        )
        if not created:
            raise ConflictError(f"Account '{email}' already exists.")
        self._gate.subscription_for(account.id)
        logger.info(
            "Created account %s",
            account.id,
            extra={"event": "account_created", "account_id": account.id},
        )
        return account

    def local_account(self) -> Account:
        """The single account used by the command-line interface."""
        account, created = get_or_create(
            self._session,
            Account,
            {"email": LOCAL_ACCOUNT_EMAIL},
            {"api_token": new_api_token()},
        )
        if created:
            self._gate.subscription_for(account.id)
        return account

    def get_account(self, account_id: int) -> Account:
        account = self._session.get(Account, account_id)
        if account is None:
            raise NotFoundError(f"Account {account_id} not found.")
        return account

    def get_by_email(self, email: str) -> Account:
        account = find_one(self._session, Account, {"email": (email or "").strip().lower()})
        if account is None:
            raise NotFoundError(f"Account '{email}' not found.")
        return account

    def authenticate(self, token: str | None) -> Account:
        """Resolve a bearer token to its account."""
        if not token:
            raise UnauthorizedError("Missing bearer token.")
        account = self._session.execute(
            select(Account).where(Account.api_token == token)
        ).scalar_one_or_none()
        if account is None:
            raise UnauthorizedError("Invalid or expired token.")
        return account

    def rotate_token(self, account_id: int) -> str:
        account = self.get_account(account_id)
        account.api_token = new_api_token()
        self._session.flush()
        return account.api_token

    # ------------------------------------------------------------------
    # Extension linking
    # ------------------------------------------------------------------

    def issue_link_code(self, account_id: int, now: datetime.datetime | None = None) -> str:
        """Issue a short-lived code the browser extension trades for a token."""
        account = self.get_account(account_id)
        account.link_code = new_link_code()
        account.link_code_expires_at = (now or _utcnow()) + self._link_code_ttl
        self._session.flush()
        return account.link_code

    def exchange_link_code(self, code: str, now: datetime.datetime | None = None) -> Account:
        """Trade a link code for its account. The code works exactly once."""
        code = (code or "").strip().upper()
        if not code:
            raise UnauthorizedError("Link code is required.")
        now = now or _utcnow()
        account = find_one(self._session, Account, {"link_code": code})
        if account is None or account.link_code_expires_at is None or account.link_code_expires_at < now:
            raise UnauthorizedError("Invalid or expired link code.")

        result = self._session.execute(
            update(Account)
            .where(Account.id == account.id, Account.link_code == code)
            .values(link_code=None, link_code_expires_at=None)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise UnauthorizedError("Invalid or expired link code.")
        self._session.refresh(account)
        logger.info(
            "Link code exchanged for account %s",
            account.id,
            extra={"event": "link_code_exchanged", "account_id": account.id},
        )
        return account

    # ------------------------------------------------------------------
    # Chat linking
    # ------------------------------------------------------------------

    def link_telegram(self, account_id: int, chat_id: int) -> Account:
        account = self.get_account(account_id)
        try:
            with self._session.begin_nested():
                account.telegram_chat_id = chat_id
                self._session.flush()
        except IntegrityError as exc:
            raise ConflictError(f"Chat {chat_id} is already linked to another account.") from exc
        return account

    def account_for_chat(self, chat_id: int) -> Account | None:
        return find_one(self._session, Account, {"telegram_chat_id": chat_id})
