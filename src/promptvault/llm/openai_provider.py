"""
OpenAI analysis provider implementation.
"""

from __future__ import annotations

import json
import logging
import re
import time
from typing import Any

from openai import OpenAI, OpenAIError

from promptvault.errors import ProviderError
from promptvault.llm.base import AnalysisProvider, AnalysisRequest
from promptvault.llm.prompts import (
    ANALYSIS_SYSTEM_PROMPT,
    ANALYSIS_USER_TEMPLATE,
    MAX_CONTENT_CHARS,
)

logger = logging.getLogger(__name__)


def extract_json(text: str) -> dict[str, Any]:
    """Extract a JSON object from an LLM response, handling markdown code blocks."""
    code_block_match = re.search(r"```(?:json)?\s*([\s\S]*?)```", text)
    if code_block_match:
        text = code_block_match.group(1).strip()

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        json_match = re.search(r"\{[\s\S]*\}", text)
        if not json_match:
            raise ProviderError(f"Could not extract JSON from response: {text[:200]}") from None
        try:
            data = json.loads(json_match.group())
        except json.JSONDecodeError as exc:
            raise ProviderError(f"Malformed JSON in response: {exc}") from exc

    if not isinstance(data, dict):
        raise ProviderError("Analysis response is not a JSON object.")
    return data


class OpenAIProvider(AnalysisProvider):
    """OpenAI-based analysis provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        timeout: float = 20.0,
        client: OpenAI | None = None,
    ):
        """
        Initialize OpenAI provider.

        Args:
            api_key: OpenAI API key.
            model: Chat model to use.
            timeout: Per-request timeout in seconds.
            client: Pre-built client, mainly for tests.
        """
        if not api_key and client is None:
            raise ValueError("OpenAI API key required.")
        self._model = model
        self._client = client or OpenAI(api_key=api_key, timeout=timeout, max_retries=1)

    @property
    def name(self) -> str:
        return "openai"

    @property
    def model_name(self) -> str:
        return self._model

    def analyze(self, request: AnalysisRequest) -> dict[str, Any]:
        system_prompt = ANALYSIS_SYSTEM_PROMPT.format(
            categories=", ".join(request.category_names),
            existing_tags=", ".join(request.existing_tags) or "none yet",
            source=request.source or "unknown AI tool",
        )
        user_message = ANALYSIS_USER_TEMPLATE.format(content=request.content[:MAX_CONTENT_CHARS])

        start = time.monotonic()
        try:
            response = self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_message},
                ],
                temperature=0.3,
                max_tokens=300,
                response_format={"type": "json_object"},
            )
        except OpenAIError as exc:
            raise ProviderError(f"OpenAI request failed: {exc}") from exc

        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Analysis call completed: %s/%s (%dms)",
            self.name,
            self._model,
            duration_ms,
            extra={
                "event": "analysis_call_complete",
                "provider": self.name,
                "model": self._model,
                "duration_ms": duration_ms,
            },
        )

        text = response.choices[0].message.content if response.choices else None
        if not text:
            raise ProviderError("No response from OpenAI")
        return extract_json(text)
