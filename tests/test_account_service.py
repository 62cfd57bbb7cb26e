"""Tests for accounts, tokens and linking."""

from __future__ import annotations

import datetime

import pytest
from sqlalchemy.orm import Session

from promptvault.errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from promptvault.models import Account, PlanType
from promptvault.services.account_service import LOCAL_ACCOUNT_EMAIL, AccountService

NOW = datetime.datetime(2026, 5, 1, 12, 0)


class TestAccounts:
    def test_create_normalizes_email_and_subscribes(self, accounts: AccountService) -> None:
        account = accounts.create_account("  Someone@Example.COM ")
        assert account.email == "someone@example.com"
        assert len(account.api_token) >= 32
        assert account.subscription is not None
        assert account.subscription.plan_type == PlanType.FREE.value

    def test_duplicate_email(self, accounts: AccountService, account: Account) -> None:
        with pytest.raises(ConflictError):
            accounts.create_account("OWNER@example.com")

    @pytest.mark.parametrize("email", ["", "   ", "not-an-email"])
    def test_invalid_email(self, accounts: AccountService, email: str) -> None:
        with pytest.raises(ValidationError):
            accounts.create_account(email)

    def test_local_account_is_stable(self, accounts: AccountService) -> None:
        first = accounts.local_account()
        assert first.email == LOCAL_ACCOUNT_EMAIL
        assert accounts.local_account().id == first.id

    def test_lookups(self, accounts: AccountService, account: Account) -> None:
        assert accounts.get_account(account.id).id == account.id
        assert accounts.get_by_email("Owner@Example.com").id == account.id
        with pytest.raises(NotFoundError):
            accounts.get_account(12345)
        with pytest.raises(NotFoundError):
            accounts.get_by_email("nobody@example.com")


class TestTokens:
    def test_authenticate(self, accounts: AccountService, account: Account) -> None:
        assert accounts.authenticate(account.api_token).id == account.id

    @pytest.mark.parametrize("token", [None, "", "wrong"])
    def test_authenticate_rejects(self, accounts: AccountService, account: Account, token: str | None) -> None:
        with pytest.raises(UnauthorizedError):
            accounts.authenticate(token)

    def test_rotate_invalidates_old_token(self, accounts: AccountService, account: Account) -> None:
        old = account.api_token
        new = accounts.rotate_token(account.id)
        assert new != old
        assert accounts.authenticate(new).id == account.id
        with pytest.raises(UnauthorizedError):
            accounts.authenticate(old)


class TestLinkCodes:
    def test_code_is_exchanged_once(self, accounts: AccountService, account: Account) -> None:
        code = accounts.issue_link_code(account.id, now=NOW)
        assert len(code) == 8 and code == code.upper()
        linked = accounts.exchange_link_code(code.lower(), now=NOW + datetime.timedelta(minutes=5))
        assert linked.id == account.id
        assert linked.link_code is None
        with pytest.raises(UnauthorizedError):
            accounts.exchange_link_code(code, now=NOW)

    def test_expired_code_rejected(self, accounts: AccountService, account: Account) -> None:
        code = accounts.issue_link_code(account.id, now=NOW)
        with pytest.raises(UnauthorizedError, match="expired"):
            accounts.exchange_link_code(code, now=NOW + datetime.timedelta(minutes=11))

    def test_new_code_replaces_old(self, accounts: AccountService, account: Account) -> None:
        old = accounts.issue_link_code(account.id, now=NOW)
        new = accounts.issue_link_code(account.id, now=NOW)
        if old != new:
            with pytest.raises(UnauthorizedError):
                accounts.exchange_link_code(old, now=NOW)
        assert accounts.exchange_link_code(new, now=NOW).id == account.id

    def test_custom_ttl(self, session: Session, account: Account) -> None:
        short = AccountService(session, link_code_ttl_minutes=1)
        code = short.issue_link_code(account.id, now=NOW)
        with pytest.raises(UnauthorizedError):
            short.exchange_link_code(code, now=NOW + datetime.timedelta(minutes=2))

    def test_blank_code(self, accounts: AccountService) -> None:
        with pytest.raises(UnauthorizedError):
            accounts.exchange_link_code("  ")


class TestTelegramLinking:
    def test_link_and_lookup(self, accounts: AccountService, account: Account) -> None:
        accounts.link_telegram(account.id, 4242)
        found = accounts.account_for_chat(4242)
        assert found is not None and found.id == account.id
        assert accounts.account_for_chat(1) is None

    def test_chat_linked_twice_conflicts(
        self, accounts: AccountService, account: Account, other_account: Account
    ) -> None:
        accounts.link_telegram(account.id, 4242)
        with pytest.raises(ConflictError):
            accounts.link_telegram(other_account.id, 4242)
        found = accounts.account_for_chat(4242)
        assert found is not None and found.id == account.id
