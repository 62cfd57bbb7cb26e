"""
Analysis provider abstraction layer.

Usage:
    from promptvault.llm import get_analysis_provider

    provider = get_analysis_provider(settings)  # None when no key is configured
"""

from __future__ import annotations

from promptvault.config import Settings
from promptvault.llm.base import AnalysisProvider, AnalysisRequest

__all__ = [
    "AnalysisProvider",
    "AnalysisRequest",
    "get_analysis_provider",
]


def get_analysis_provider(settings: Settings) -> AnalysisProvider | None:
    """
    Build the configured analysis provider.

    Returns None when no credential is configured; callers then use the
    keyword fallback.
    """
    if not settings.OPENAI_API_KEY:
        return None

    from promptvault.llm.openai_provider import OpenAIProvider

    return OpenAIProvider(
        api_key=settings.OPENAI_API_KEY,
        model=settings.ANALYSIS_MODEL,
        timeout=settings.ANALYSIS_TIMEOUT_SECONDS,
    )
