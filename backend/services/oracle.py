"""
Text-Generation Oracle
The only way the monitor talks to a language model: text in, text out.

Usage:
    from services import AnthropicOracle

    oracle = AnthropicOracle(api_key="...", timeout=20.0)
    text = oracle.generate("Convert ... to JSON")

Anything implementing `generate(prompt) -> str` and raising
OracleUnavailable on failure can stand in (tests use canned responses).
"""

import logging
import os
from typing import Optional, Protocol, runtime_checkable

import anthropic

from core.errors import OracleUnavailable

logger = logging.getLogger(__name__)


@runtime_checkable
class TextOracle(Protocol):
    def generate(self, prompt: str) -> str:
        """Return the model's text response; raise OracleUnavailable on failure"""
        ...


class AnthropicOracle:
    """Claude-backed oracle. No retries: retrying is the caller's call."""

    DEFAULT_MODEL = "claude-sonnet-4-20250514"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: float = 20.0,
        max_tokens: int = 1024,
        client: Optional[anthropic.Anthropic] = None,
    ):
        self.model = model or self.DEFAULT_MODEL
        self.max_tokens = max_tokens
        self._client = client
        key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        if self._client is None and key:
            self._client = anthropic.Anthropic(api_key=key, timeout=timeout, max_retries=0)

    @property
    def is_available(self) -> bool:
        return self._client is not None

    def generate(self, prompt: str) -> str:
        if self._client is None:
            raise OracleUnavailable("Text-generation service is not configured (no API key)")

        try:
            response = self._client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=0,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as e:
            logger.warning("Oracle call failed: %s", e)
            raise OracleUnavailable(f"Text-generation service unavailable: {e}") from e

        text = "".join(
            block.text for block in response.content
            if getattr(block, "type", None) == "text"
        ).strip()
        if not text:
            raise OracleUnavailable("Text-generation service returned an empty response")
        return text
