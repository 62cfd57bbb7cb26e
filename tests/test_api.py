"""Tests for the HTTP API."""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from collections.abc import Callable
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from promptvault.api import create_app
from promptvault.config import Settings
from promptvault.models import Account, PlanType, Subscription
from promptvault.services.account_service import AccountService
from promptvault.services.chat_bot import HELP_TEXT, TelegramClient
from promptvault.services.usage_gate import UsageGate

from conftest import RecordingSender

LS_SECRET = "ls-secret"
STRIPE_SECRET = "whsec_stripe"
TG_SECRET = "tg-secret"


def _settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "OPENAI_API_KEY": None,
        "TELEGRAM_BOT_TOKEN": None,
        "TELEGRAM_WEBHOOK_SECRET": TG_SECRET,
        "LEMONSQUEEZY_WEBHOOK_SECRET": LS_SECRET,
        "STRIPE_WEBHOOK_SECRET": STRIPE_SECRET,
        "APP_URL": "https://vault.example",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture()
def make_client(session: Session, session_factory: sessionmaker[Session]) -> Callable[..., TestClient]:
    """Build a TestClient. The ``session`` fixture has seeded the categories."""

    def _make(provider: Any = None, sender: Any = None, **overrides: Any) -> TestClient:
        app = create_app(
            _settings(**overrides),
            session_factory,
            analysis_provider=provider,
            telegram_sender=sender,
        )
        return TestClient(app)

    return _make


@pytest.fixture()
def client(make_client: Callable[..., TestClient]) -> TestClient:
    return make_client()


@pytest.fixture()
def auth(account: Account) -> dict[str, str]:
    return {"Authorization": f"Bearer {account.api_token}"}


def _subscription(session_factory: sessionmaker[Session], account_id: int) -> Subscription:
    with session_factory() as s:
        return s.execute(select(Subscription).where(Subscription.account_id == account_id)).scalar_one()


def _create(client: TestClient, auth: dict[str, str], **fields: Any) -> dict[str, Any]:
    body = {"title": "Hook writer", "content": "Write five hooks", "source": "chatgpt", **fields}
    response = client.post("/api/prompts", json=body, headers=auth)
    assert response.status_code == 201, response.text
    return response.json()


class TestHealthAndAuth:
    def test_health(self, client: TestClient) -> None:
        assert client.get("/health").json() == {
            "status": "ok",
            "service": "promptvault",
            "ai_enabled": False,
        }

    @pytest.mark.parametrize(
        "headers",
        [{}, {"Authorization": "Bearer nope"}, {"Authorization": "Token abc"}, {"Authorization": "Bearer "}],
    )
    def test_rejects_bad_credentials(self, client: TestClient, account: Account, headers: dict[str, str]) -> None:
        response = client.get("/api/prompts", headers=headers)
        assert response.status_code == 401
        assert "detail" in response.json()

    def test_catalog_requires_auth(self, client: TestClient) -> None:
        assert client.get("/api/tags").status_code == 401


class TestLifespan:
    def test_owned_telegram_client_closed_on_shutdown(
        self, session: Session, session_factory: sessionmaker[Session]
    ) -> None:
        app = create_app(_settings(TELEGRAM_BOT_TOKEN="123:abc"), session_factory)
        sender = app.state.telegram_sender
        assert isinstance(sender, TelegramClient)
        with TestClient(app) as client:
            assert client.get("/health").status_code == 200
            assert sender._client.is_closed is False
        assert sender._client.is_closed is True

    def test_injected_sender_left_open(self, session: Session, session_factory: sessionmaker[Session]) -> None:
        closed: list[bool] = []

        class ClosableSender(RecordingSender):
            def close(self) -> None:
                closed.append(True)

        app = create_app(_settings(), session_factory, telegram_sender=ClosableSender())
        with TestClient(app):
            pass
        assert closed == []


class TestPrompts:
    def test_create_and_fetch(self, client: TestClient, auth: dict[str, str]) -> None:
        created = _create(client, auth, tags=["Hooks", "hooks", "SEO"], effectiveness_score=8)
        assert created["current_version"] == 1
        assert [t["name"] for t in created["tags"]] == ["hooks", "seo"]
        fetched = client.get(f"/api/prompts/{created['id']}", headers=auth).json()
        assert fetched["title"] == "Hook writer"
        versions = client.get(f"/api/prompts/{created['id']}/versions", headers=auth).json()
        assert [(v["version_number"], v["change_notes"]) for v in versions] == [(1, "Initial version")]

    @pytest.mark.parametrize(
        "body",
        [
            {"content": "x", "source": "chatgpt"},
            {"title": "   ", "content": "x", "source": "chatgpt"},
            {"title": "t", "content": "", "source": "chatgpt"},
            {"title": "t", "content": "x", "source": "bard"},
            {"title": "t", "content": "x", "source": "chatgpt", "effectiveness_score": 11},
        ],
    )
    def test_invalid_create_is_400(self, client: TestClient, auth: dict[str, str], body: dict[str, Any]) -> None:
        response = client.post("/api/prompts", json=body, headers=auth)
        assert response.status_code == 400
        assert response.json()["detail"]

    def test_list_filters(self, client: TestClient, auth: dict[str, str]) -> None:
        _create(client, auth, title="Alpha", content="Debug code", source="cursor", tags=["dev"])
        _create(client, auth, title="Beta", content="Write an ad", is_favorite=True)

        def titles(params: dict[str, str]) -> set[str]:
            response = client.get("/api/prompts", params=params, headers=auth)
            return {p["title"] for p in response.json()}

        assert titles({}) == {"Alpha", "Beta"}
        assert titles({"q": "DEBUG"}) == {"Alpha"}
        assert titles({"source": "chatgpt"}) == {"Beta"}
        assert titles({"favorite": "true"}) == {"Beta"}
        assert titles({"favorite": "false"}) == {"Alpha"}
        assert titles({"tag": "DEV"}) == {"Alpha"}

    def test_patch_versions_content_only(self, client: TestClient, auth: dict[str, str]) -> None:
        prompt_id = _create(client, auth)["id"]
        renamed = client.patch(f"/api/prompts/{prompt_id}", json={"title": "Renamed"}, headers=auth).json()
        assert (renamed["title"], renamed["current_version"]) == ("Renamed", 1)

        edited = client.patch(
            f"/api/prompts/{prompt_id}",
            json={"content": "Write ten hooks", "change_notes": "More hooks"},
            headers=auth,
        ).json()
        assert edited["current_version"] == 2

        same = client.patch(
            f"/api/prompts/{prompt_id}", json={"content": "Write ten hooks"}, headers=auth
        ).json()
        assert same["current_version"] == 2

        restored = client.post(f"/api/prompts/{prompt_id}/restore/1", headers=auth).json()
        assert restored["current_version"] == 3
        assert restored["content"] == "Write five hooks"
        notes = [v["change_notes"] for v in client.get(f"/api/prompts/{prompt_id}/versions", headers=auth).json()]
        assert notes == ["Initial version", "More hooks", "Restored from v1"]

    def test_patch_empty_title_is_400(self, client: TestClient, auth: dict[str, str]) -> None:
        prompt_id = _create(client, auth)["id"]
        response = client.patch(f"/api/prompts/{prompt_id}", json={"title": ""}, headers=auth)
        assert response.status_code == 400

    def test_use_and_delete(self, client: TestClient, auth: dict[str, str]) -> None:
        prompt_id = _create(client, auth)["id"]
        assert client.post(f"/api/prompts/{prompt_id}/use", headers=auth).json() == {
            "id": prompt_id,
            "use_count": 1,
        }
        assert client.delete(f"/api/prompts/{prompt_id}", headers=auth).status_code == 204
        assert client.get(f"/api/prompts/{prompt_id}", headers=auth).status_code == 404
        assert client.get(f"/api/prompts/{prompt_id}/versions", headers=auth).status_code == 404

    def test_other_account_gets_404(
        self, client: TestClient, auth: dict[str, str], other_account: Account
    ) -> None:
        prompt_id = _create(client, auth)["id"]
        intruder = {"Authorization": f"Bearer {other_account.api_token}"}
        assert client.get(f"/api/prompts/{prompt_id}", headers=intruder).status_code == 404
        assert client.patch(f"/api/prompts/{prompt_id}", json={"title": "x"}, headers=intruder).status_code == 404

    def test_stats(self, client: TestClient, auth: dict[str, str]) -> None:
        _create(client, auth, is_favorite=True)
        _create(client, auth)
        assert client.get("/api/prompts/stats", headers=auth).json() == {
            "total": 2,
            "favorites": 1,
            "this_week": 2,
        }


class TestCatalog:
    def test_tags_and_categories(self, client: TestClient, auth: dict[str, str]) -> None:
        assert client.post("/api/tags", json={"name": "Research"}, headers=auth).json()["name"] == "research"
        assert client.post("/api/tags", json={"name": "research"}, headers=auth).status_code == 409
        assert [t["name"] for t in client.get("/api/tags", headers=auth).json()] == ["research"]

        categories = client.get("/api/categories", headers=auth).json()
        assert "Coding" in {c["name"] for c in categories}
        created = client.post("/api/categories", json={"name": "Poetry", "icon": "✒️"}, headers=auth)
        assert created.status_code == 201


class TestCollections:
    def test_crud_and_sharing(self, client: TestClient, auth: dict[str, str]) -> None:
        collection = client.post("/api/collections", json={"name": "Launch"}, headers=auth).json()
        collection_id = collection["id"]
        _create(client, auth, collection_id=collection_id, tags=["email"])

        listed = client.get("/api/collections", headers=auth).json()
        assert [(c["name"], c["prompt_count"]) for c in listed] == [("Launch", 1)]

        share = client.post(f"/api/collections/{collection_id}/share", headers=auth).json()
        token = share["share_token"]
        assert share["share_url"] == f"https://vault.example/share/{token}"
        assert client.post(f"/api/collections/{collection_id}/share", headers=auth).json()["share_token"] == token

        public = client.get(f"/api/share/{token}")
        assert public.status_code == 200
        body = public.json()
        assert body["collection"]["name"] == "Launch"
        assert body["collection"]["prompt_count"] == 1
        assert [t["name"] for t in body["prompts"][0]["tags"]] == ["email"]
        assert "share_token" not in body["collection"]

        unshared = client.delete(f"/api/collections/{collection_id}/share", headers=auth).json()
        assert unshared["is_public"] is False
        assert client.get(f"/api/share/{token}").status_code == 404

    def test_patch_and_delete(self, client: TestClient, auth: dict[str, str]) -> None:
        collection_id = client.post("/api/collections", json={"name": "Old"}, headers=auth).json()["id"]
        prompt_id = _create(client, auth, collection_id=collection_id)["id"]
        patched = client.patch(f"/api/collections/{collection_id}", json={"name": "New"}, headers=auth)
        assert patched.json()["name"] == "New"
        assert client.delete(f"/api/collections/{collection_id}", headers=auth).status_code == 204
        assert client.get(f"/api/prompts/{prompt_id}", headers=auth).json()["collection_id"] is None

    def test_missing_collection(self, client: TestClient, auth: dict[str, str]) -> None:
        assert client.post("/api/collections/999/share", headers=auth).status_code == 404


class TestAnalysisAndSubscription:
    def test_fallback_analysis(self, client: TestClient, auth: dict[str, str]) -> None:
        response = client.post(
            "/api/ai/analyze",
            json={"content": "Write a marketing email for...", "source": "chatgpt"},
            headers=auth,
        )
        body = response.json()
        assert body["ai_powered"] is False
        assert body["category"] == "Copywriting"
        assert body["tags"][0] == "chatgpt"
        assert body["message"] == "Basic analysis (no AI key configured)"

    def test_unknown_source_is_400(self, client: TestClient, auth: dict[str, str]) -> None:
        response = client.post("/api/ai/analyze", json={"content": "x", "source": "bard"}, headers=auth)
        assert response.status_code == 400

    def test_quota_exhausted_is_429(
        self,
        make_client: Callable[..., TestClient],
        make_provider: Callable[..., Any],
        session: Session,
        account: Account,
        auth: dict[str, str],
    ) -> None:
        UsageGate(session).subscription_for(account.id).ai_analyses_limit = 1
        session.commit()
        client = make_client(provider=make_provider({"title": "AI title", "tags": ["x"]}))

        first = client.post("/api/ai/analyze", json={"content": "hello"}, headers=auth)
        assert first.json()["ai_powered"] is True
        second = client.post("/api/ai/analyze", json={"content": "hello"}, headers=auth)
        assert second.status_code == 429

        status = client.get("/api/subscription", headers=auth).json()
        assert status["can_use_ai"] is False
        assert status["ai_remaining"] == 0
        assert status["subscription"]["ai_analyses_used"] == 1

    def test_subscription_defaults(self, client: TestClient, auth: dict[str, str]) -> None:
        status = client.get("/api/subscription", headers=auth).json()
        assert status["is_pro"] is False
        assert status["can_use_ai"] is True
        assert status["ai_remaining"] == 10
        assert status["subscription"]["plan_type"] == "free"


class TestExtensionToken:
    def test_exchange(self, client: TestClient, session: Session, account: Account) -> None:
        code = AccountService(session).issue_link_code(account.id)
        session.commit()
        response = client.post("/api/extension/token", json={"code": code})
        assert response.json() == {"token": account.api_token, "email": account.email}
        assert client.post("/api/extension/token", json={"code": code}).status_code == 401


class TestWebhooks:
    def _ls_body(self, account: Account, event_name: str = "subscription_created") -> bytes:
        return json.dumps(
            {
                "meta": {"event_name": event_name, "custom_data": {"user_id": str(account.id)}},
                "data": {"id": "sub_1", "attributes": {"status": "active", "customer_id": 9}},
            }
        ).encode()

    def test_lemonsqueezy_upgrade(
        self, client: TestClient, session_factory: sessionmaker[Session], account: Account
    ) -> None:
        body = self._ls_body(account)
        signature = hmac.new(LS_SECRET.encode(), body, hashlib.sha256).hexdigest()
        response = client.post(
            "/api/webhooks/lemonsqueezy", content=body, headers={"X-Signature": signature}
        )
        assert response.json() == {"received": True}
        assert _subscription(session_factory, account.id).plan_type == PlanType.PRO.value

    def test_lemonsqueezy_bad_signature_changes_nothing(
        self, client: TestClient, session_factory: sessionmaker[Session], account: Account
    ) -> None:
        response = client.post(
            "/api/webhooks/lemonsqueezy",
            content=self._ls_body(account),
            headers={"X-Signature": "0" * 64},
        )
        assert response.status_code == 401
        assert _subscription(session_factory, account.id).plan_type == PlanType.FREE.value

    def test_lemonsqueezy_unconfigured_secret(
        self, make_client: Callable[..., TestClient], account: Account
    ) -> None:
        client = make_client(LEMONSQUEEZY_WEBHOOK_SECRET=None)
        body = self._ls_body(account)
        signature = hmac.new(LS_SECRET.encode(), body, hashlib.sha256).hexdigest()
        response = client.post("/api/webhooks/lemonsqueezy", content=body, headers={"X-Signature": signature})
        assert response.status_code == 401

    def test_stripe_checkout(
        self, client: TestClient, session_factory: sessionmaker[Session], account: Account
    ) -> None:
        body = json.dumps(
            {
                "type": "checkout.session.completed",
                "data": {
                    "object": {
                        "metadata": {"user_id": str(account.id)},
                        "customer": "cus_9",
                        "subscription": "sub_9",
                    }
                },
            }
        ).encode()
        timestamp = str(int(time.time()))
        digest = hmac.new(STRIPE_SECRET.encode(), timestamp.encode() + b"." + body, hashlib.sha256).hexdigest()
        response = client.post(
            "/api/webhooks/stripe",
            content=body,
            headers={"Stripe-Signature": f"t={timestamp},v1={digest}"},
        )
        assert response.json() == {"received": True}
        subscription = _subscription(session_factory, account.id)
        assert subscription.plan_type == PlanType.PRO.value
        assert subscription.provider_customer_id == "cus_9"

    def test_stripe_bad_signature(self, client: TestClient) -> None:
        response = client.post(
            "/api/webhooks/stripe", content=b"{}", headers={"Stripe-Signature": "t=1,v1=bad"}
        )
        assert response.status_code == 401


class TestTelegramWebhook:
    def _update(self, text: str) -> dict[str, Any]:
        return {"update_id": 1, "message": {"chat": {"id": 99}, "text": text}}

    def test_secret_mismatch_is_401(self, make_client: Callable[..., TestClient]) -> None:
        client = make_client(sender=RecordingSender())
        response = client.post(
            "/api/telegram/webhook",
            json=self._update("/help"),
            headers={"X-Telegram-Bot-Api-Secret-Token": "wrong"},
        )
        assert response.status_code == 401

    def test_help_is_sent(self, make_client: Callable[..., TestClient]) -> None:
        sender = RecordingSender()
        client = make_client(sender=sender)
        response = client.post(
            "/api/telegram/webhook",
            json=self._update("/help"),
            headers={"X-Telegram-Bot-Api-Secret-Token": TG_SECRET},
        )
        assert response.json() == {"ok": True}
        assert sender.messages == [(99, HELP_TEXT)]

    def test_linked_chat_can_save(
        self,
        make_client: Callable[..., TestClient],
        session: Session,
        session_factory: sessionmaker[Session],
        account: Account,
    ) -> None:
        AccountService(session).link_telegram(account.id, 99)
        session.commit()
        sender = RecordingSender()
        client = make_client(sender=sender)
        client.post(
            "/api/telegram/webhook",
            json=self._update("/save Draft an email to the team"),
            headers={"X-Telegram-Bot-Api-Secret-Token": TG_SECRET},
        )
        assert sender.texts()[-1].startswith("✅")
        auth = {"Authorization": f"Bearer {account.api_token}"}
        (prompt,) = client.get("/api/prompts", headers=auth).json()
        assert prompt["source"] == "other"

    def test_malformed_body_is_acknowledged(self, make_client: Callable[..., TestClient]) -> None:
        sender = RecordingSender()
        client = make_client(sender=sender)
        response = client.post(
            "/api/telegram/webhook",
            content=b"not json",
            headers={"X-Telegram-Bot-Api-Secret-Token": TG_SECRET},
        )
        assert response.json() == {"ok": True}
        assert sender.messages == []

    def test_no_sender_configured(self, client: TestClient) -> None:
        response = client.post(
            "/api/telegram/webhook",
            json=self._update("/help"),
            headers={"X-Telegram-Bot-Api-Secret-Token": TG_SECRET},
        )
        assert response.json() == {"ok": True}
