"""
Prompt analysis: title, tags, category and effectiveness suggestions.

The provider is optional.  Without one, or whenever it fails, suggestions
come from ordered keyword tables so saving a prompt never depends on it.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from sqlalchemy.orm import Session

from promptvault.errors import ProviderError, QuotaExceededError
from promptvault.llm.base import AnalysisProvider, AnalysisRequest
from promptvault.models import Category, Source
from promptvault.schemas.analysis import AnalysisResult
from promptvault.services.tag_service import TagService, normalize_tag_name
from promptvault.services.usage_gate import UsageGate

logger = logging.getLogger(__name__)

MAX_TITLE_CHARS = 60
UNTITLED = "Untitled prompt"
MAX_FALLBACK_TAGS = 4
DEFAULT_CATEGORY = "Creative"
DEFAULT_CATEGORY_NAMES = (
    "Copywriting",
    "Coding",
    "Analysis",
    "Creative",
    "Automation",
    "Communication",
    "Learning",
)

MSG_NO_PROVIDER = "Basic analysis (no AI key configured)"
MSG_PROVIDER_FAILED = "AI analysis failed, using basic analysis"
MSG_QUOTA = "AI analysis quota exceeded, using basic analysis"


def _words(*alternatives: str) -> re.Pattern[str]:
    """Whole-word matcher. Alternatives ending in '*' match any word with that stem."""
    parts = [a[:-1] + r"\w*" if a.endswith("*") else a for a in alternatives]
    return re.compile(r"\b(?:" + "|".join(parts) + r")\b")


# Evaluated in order; the first MAX_FALLBACK_TAGS hits win.
TAG_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (_words("write", "writing", "copy", "headline", "hook"), "copywriting"),
    (_words("code", "function", "programming", "debug", "api"), "coding"),
    (_words("image", "visual", "design", "poster", "graphic"), "visual"),
    (_words("automat*", "workflow", "script", "n8n", "zapier"), "automation"),
    (_words("analyz*", "data", "research", "insight", "report"), "analysis"),
    (_words("creative", "brainstorm", "idea", "concept"), "creative"),
    (_words("email", "message", "present", "communicate"), "communication"),
    (_words("explain", "teach", "learn", "tutorial", "summary"), "learning"),
    (_words("market*", "brand", "advertis*", "campaign", "social"), "marketing"),
    (_words("seo", "keyword", "search", "rank"), "seo"),
)

# Evaluated in order; the first hit wins, DEFAULT_CATEGORY otherwise.
CATEGORY_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        _words("code", "function", "programming", "debug", "api", "javascript", "python", "typescript"),
        "Coding",
    ),
    (_words("write", "copy", "headline", "hook", "ad", "marketing", "sales"), "Copywriting"),
    (_words("image", "visual", "design", "poster", "graphic", "art", "creative"), "Creative"),
    (_words("automat*", "workflow", "script", "integration"), "Automation"),
    (_words("analyz*", "data", "research", "insight", "report"), "Analysis"),
    (_words("email", "message", "present", "communicate"), "Communication"),
    (_words("explain", "teach", "learn", "tutorial", "summary"), "Learning"),
)


# ---------------------------------------------------------------------------
# Fallback heuristics
# ---------------------------------------------------------------------------


def truncate_title(text: str, limit: int = MAX_TITLE_CHARS) -> str:
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def basic_title(content: str) -> str:
    """First line of ``content``, capped at 60 characters."""
    title = truncate_title(content.split("\n", 1)[0])
    return title or UNTITLED


def basic_tags(content: str, source: str | None) -> list[str]:
    tags: list[str] = []
    if source and source != Source.OTHER.value:
        tags.append(source.replace("_", "-"))

    lowered = content.lower()
    for pattern, tag in TAG_RULES:
        if len(tags) >= MAX_FALLBACK_TAGS:
            break
        if tag not in tags and pattern.search(lowered):
            tags.append(tag)
    return tags


def detect_category(content: str) -> str:
    lowered = content.lower()
    for pattern, category in CATEGORY_RULES:
        if pattern.search(lowered):
            return category
    return DEFAULT_CATEGORY


# ---------------------------------------------------------------------------
# Provider output parsing
# ---------------------------------------------------------------------------


def _parse_score(value: Any) -> int | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if isinstance(value, (int, float)):
        score = round(value)
        if 1 <= score <= 10:
            return int(score)
    return None


def _parse_tags(value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ProviderError("'tags' must be a list.")
    tags: list[str] = []
    for item in value:
        if not isinstance(item, str):
            continue
        name = normalize_tag_name(item)
        if name and name not in tags:
            tags.append(name)
    return tags


class AnalysisAdapter:
    """Maps provider suggestions, or the keyword fallback, onto prompt metadata."""

    def __init__(
        self,
        session: Session,
        provider: AnalysisProvider | None = None,
        gate: UsageGate | None = None,
    ) -> None:
        self._session = session
        self._provider = provider
        self._gate = gate
        self._tags = TagService(session)

    @property
    def ai_enabled(self) -> bool:
        return self._provider is not None

    def _categories(self) -> list[Category]:
        return self._tags.list_categories()

    @staticmethod
    def _match_category(name: str | None, categories: list[Category]) -> int | None:
        if not name:
            return None
        wanted = name.strip().lower()
        for category in categories:
            if category.name.lower() == wanted:
                return category.id
        return None

    def fallback(self, content: str, source: str | None, message: str) -> AnalysisResult:
        """Deterministic keyword-based analysis."""
        category = detect_category(content)
        return AnalysisResult(
            title=basic_title(content),
            tags=basic_tags(content, source),
            category=category,
            category_id=self._match_category(category, self._categories()),
            effectiveness_score=None,
            effectiveness_reason=None,
            ai_powered=False,
            message=message,
        )

    def analyze(self, content: str, source: str | None = None) -> AnalysisResult:
        """Analyze ``content``. Never raises for provider trouble."""
        if self._provider is None:
            return self.fallback(content, source, MSG_NO_PROVIDER)

        categories = self._categories()
        request = AnalysisRequest(
            content=content,
            source=source,
            category_names=[c.name for c in categories] or list(DEFAULT_CATEGORY_NAMES),
            existing_tags=self._tags.sample_tag_names(20),
        )
        try:
            data = self._provider.analyze(request)
            tags = _parse_tags(data.get("tags"))
        except Exception as exc:  # any provider failure degrades to the fallback
            logger.warning(
                "AI analysis failed, falling back to keyword analysis: %s",
                exc,
                extra={"event": "analysis_fallback", "provider": self._provider.name},
            )
            return self.fallback(content, source, MSG_PROVIDER_FAILED)

        title = data.get("title")
        category = data.get("category") if isinstance(data.get("category"), str) else None
        reason = data.get("effectiveness_reason")
        return AnalysisResult(
            title=truncate_title(title) if isinstance(title, str) and title.strip() else basic_title(content),
            tags=tags,
            category=category,
            category_id=self._match_category(category, categories),
            effectiveness_score=_parse_score(data.get("effectiveness_score")),
            effectiveness_reason=reason if isinstance(reason, str) else None,
            ai_powered=True,
        )

    def analyze_for(
        self,
        account_id: int,
        content: str,
        source: str | None = None,
        *,
        strict: bool = False,
    ) -> AnalysisResult:
        """Analyze on behalf of an account, charging its quota for AI calls.

        The keyword fallback is free: a slot is reserved before the provider
        call and handed back if the call falls back.  When the quota is
        exhausted a strict caller gets QuotaExceededError; everyone else gets
        the fallback.
        """
        if self._provider is None or self._gate is None:
            return self.analyze(content, source)

        decision = self._gate.check_and_consume(account_id)
        if not decision.allowed:
            if strict:
                raise QuotaExceededError(
                    "Monthly AI analysis limit reached. Upgrade to Pro for unlimited analyses."
                )
            return self.fallback(content, source, MSG_QUOTA)
        result = self.analyze(content, source)
        if not result.ai_powered:
            self._gate.refund(account_id)
        return result
