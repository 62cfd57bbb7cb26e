"""
Base interface for analysis providers.
Allows swapping the LLM vendor behind the analysis adapter.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any


@dataclass
class AnalysisRequest:
    """What the provider needs to analyze one prompt."""

    content: str
    source: str | None
    category_names: Sequence[str]
    existing_tags: Sequence[str] = field(default_factory=list)


class AnalysisProvider(ABC):
    """Abstract base class for text-analysis providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the provider name (e.g., 'openai')."""

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the model being used (e.g., 'gpt-4o-mini')."""

    @abstractmethod
    def analyze(self, request: AnalysisRequest) -> dict[str, Any]:
        """
        Analyze a prompt.

        Returns the decoded JSON object produced by the model, with keys
        title, tags, category, effectiveness_score and effectiveness_reason.
        Raises ProviderError on transport failures or unparseable output.
        """
