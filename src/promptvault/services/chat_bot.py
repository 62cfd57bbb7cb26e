"""
Telegram chat-bot command handler.

Chats are mapped to accounts through ``Account.telegram_chat_id``.  The
handler never raises: Telegram retries any update that doesn't get a 200, so
every failure is logged and, where possible, reported back to the chat.
"""

from __future__ import annotations

import html
import logging
import math
from collections.abc import Callable
from typing import Any, Protocol

import httpx
from sqlalchemy.orm import Session

from promptvault.errors import ProviderError
from promptvault.models import Account, Prompt, Source
from promptvault.services.account_service import AccountService
from promptvault.services.analysis import AnalysisAdapter
from promptvault.services.prompt_service import PromptService

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"
SAVE_CHANGE_NOTE = "Saved via Telegram"
SEARCH_LIMIT = 5
RECENT_LIMIT = 5

HELP_TEXT = (
    "🗃️ <b>PromptVault Bot</b>\n\n"
    "Save and search your AI prompts from anywhere!\n\n"
    "<b>Commands:</b>\n\n"
    "📥 <code>/save [prompt]</code>\nSave a new prompt\n\n"
    "🔍 <code>/search [query]</code> or <code>/find [query]</code>\nSearch your prompts\n\n"
    "📋 <code>/recent</code> or <code>/last</code>\nShow recent prompts\n\n"
    "📊 <code>/stats</code>\nView your stats\n\n"
    "❓ <code>/help</code>\nShow this help message\n\n"
    "<i>💡 Tip: For full editing and version control, use the web dashboard!</i>"
)
UNKNOWN_COMMAND_TEXT = "❓ Unknown command. Use /help to see available commands."
UNLINKED_TEXT = (
    "🔗 This chat is not linked to a PromptVault account yet.\n\n"
    "Link it with <code>pvault account link-telegram &lt;email&gt; {chat_id}</code>"
)


class MessageSender(Protocol):
    def send_message(self, chat_id: int, text: str) -> None: ...


class TelegramClient:
    """Minimal Bot API client: sendMessage only."""

    def __init__(
        self,
        bot_token: str,
        *,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        if not bot_token:
            raise ValueError("Telegram bot token required.")
        self._url = f"{TELEGRAM_API_URL}/bot{bot_token}/sendMessage"
        self._client = client or httpx.Client(timeout=timeout)

    def send_message(self, chat_id: int, text: str) -> None:
        try:
            response = self._client.post(
                self._url,
                json={"chat_id": chat_id, "text": text, "parse_mode": "HTML"},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ProviderError(f"Telegram sendMessage failed: {exc}") from exc

    def close(self) -> None:
        self._client.close()


def _preview(content: str, limit: int) -> str:
    text = content[:limit] + ("..." if len(content) > limit else "")
    return html.escape(text)


def _stars(score: int | None) -> str:
    return "⭐" * math.ceil(score / 2) if score else ""


class ChatBot:
    """Dispatches slash commands from chat updates."""

    def __init__(
        self,
        session: Session,
        sender: MessageSender,
        analysis: AnalysisAdapter,
        *,
        accounts: AccountService | None = None,
        prompt_service_factory: Callable[[int], PromptService] | None = None,
    ) -> None:
        self._session = session
        self._sender = sender
        self._analysis = analysis
        self._accounts = accounts or AccountService(session)
        self._prompt_service_factory = prompt_service_factory or (
            lambda account_id: PromptService(session, account_id)
        )

    def _reply(self, chat_id: int, text: str) -> None:
        try:
            self._sender.send_message(chat_id, text)
        except Exception as exc:
            logger.error("Could not reply to chat %s: %s", chat_id, exc)

    def handle_update(self, update: dict[str, Any]) -> None:
        """Handle one webhook update. Never raises."""
        try:
            self._dispatch(update)
        except Exception:
            logger.exception("Telegram update handling failed")
            self._session.rollback()

    def _dispatch(self, update: dict[str, Any]) -> None:
        message = update.get("message") or {}
        text = message.get("text")
        chat_id = (message.get("chat") or {}).get("id")
        if not isinstance(text, str) or chat_id is None:
            return
        text = text.strip()
        if not text.startswith("/"):
            return

        head, _, rest = text.partition(" ")
        command = head.split("@", 1)[0].lower()
        argument = rest.strip()

        if command in ("/help", "/start"):
            self._reply(chat_id, HELP_TEXT)
            return
        if command not in ("/save", "/search", "/find", "/recent", "/last", "/stats"):
            self._reply(chat_id, UNKNOWN_COMMAND_TEXT)
            return

        account = self._accounts.account_for_chat(chat_id)
        if account is None:
            self._reply(chat_id, UNLINKED_TEXT.format(chat_id=chat_id))
            return

        if command == "/save":
            self._save(chat_id, account, argument)
        elif command in ("/search", "/find"):
            self._search(chat_id, account, argument)
        elif command in ("/recent", "/last"):
            self._recent(chat_id, account)
        else:
            self._stats(chat_id, account)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def _save(self, chat_id: int, account: Account, content: str) -> None:
        if not content:
            self._reply(chat_id, "❌ Please provide the prompt content after /save")
            return

        self._reply(chat_id, "🤖 <i>AI is analyzing your prompt...</i>")
        try:
            result = self._analysis.analyze_for(account.id, content, Source.OTHER.value)
            service = self._prompt_service_factory(account.id)
            service.create_prompt(
                result.title,
                content,
                Source.OTHER,
                category_id=result.category_id,
                effectiveness_score=result.effectiveness_score,
                tags=result.tags,
                change_notes=SAVE_CHANGE_NOTE,
                auto_tags=result.ai_powered,
            )
            self._session.commit()
        except Exception:
            logger.exception(
                "Error saving prompt from chat %s",
                chat_id,
                extra={"event": "chat_save_failed", "account_id": account.id},
            )
            self._session.rollback()
            self._reply(chat_id, "❌ Failed to save prompt. Please try again.")
            return

        lines = [f"✅ <b>Prompt saved!{' 🤖' if result.ai_powered else ''}</b>", ""]
        lines.append(f"📝 <b>Title:</b> {html.escape(result.title)}")
        if result.tags:
            lines.append("🏷️ <b>Tags:</b> " + " ".join(f"#{html.escape(t)}" for t in result.tags))
        if result.effectiveness_score:
            lines.append(f"⭐ <b>Score:</b> {result.effectiveness_score}/10")
        if result.effectiveness_reason:
            lines.append(f"💡 <i>{html.escape(result.effectiveness_reason)}</i>")
        self._reply(chat_id, "\n".join(lines))

    def _search(self, chat_id: int, account: Account, query: str) -> None:
        if not query:
            self._reply(chat_id, "❌ Please provide a search query after /search")
            return
        try:
            prompts = self._prompt_service_factory(account.id).list_prompts(
                query=query, limit=SEARCH_LIMIT
            )
        except Exception:
            logger.exception("Error searching prompts for chat %s", chat_id)
            self._session.rollback()
            self._reply(chat_id, "❌ Search failed. Please try again.")
            return

        safe_query = html.escape(query)
        if not prompts:
            self._reply(chat_id, f'🔍 No prompts found for "{safe_query}"')
            return
        response = f'🔍 <b>Found {len(prompts)} prompt(s) for "{safe_query}":</b>\n\n'
        response += "".join(
            f"{i}. {_stars(p.effectiveness_score)} <b>{html.escape(p.title)}</b>\n"
            f"<code>{_preview(p.content, 100)}</code>\n\n"
            for i, p in enumerate(prompts, start=1)
        )
        self._reply(chat_id, response)

    def _recent(self, chat_id: int, account: Account) -> None:
        try:
            prompts: list[Prompt] = self._prompt_service_factory(account.id).recent_prompts(
                RECENT_LIMIT
            )
        except Exception:
            logger.exception("Error fetching recent prompts for chat %s", chat_id)
            self._session.rollback()
            self._reply(chat_id, "❌ Failed to fetch recent prompts.")
            return

        if not prompts:
            self._reply(chat_id, "📭 No prompts saved yet. Use /save to add your first prompt!")
            return
        response = "📋 <b>Your recent prompts:</b>\n\n"
        response += "".join(
            f"{i}. <b>{html.escape(p.title)}</b>\n<code>{_preview(p.content, 80)}</code>\n\n"
            for i, p in enumerate(prompts, start=1)
        )
        self._reply(chat_id, response)

    def _stats(self, chat_id: int, account: Account) -> None:
        try:
            stats = self._prompt_service_factory(account.id).stats()
        except Exception:
            logger.exception("Error fetching stats for chat %s", chat_id)
            self._session.rollback()
            self._reply(chat_id, "❌ Failed to fetch stats.")
            return

        self._reply(
            chat_id,
            "📊 <b>Your PromptVault Stats</b>\n\n"
            f"📝 Total prompts: <b>{stats['total']}</b>\n"
            f"⭐ Favorites: <b>{stats['favorites']}</b>\n"
            f"📅 Added this week: <b>{stats['this_week']}</b>",
        )
