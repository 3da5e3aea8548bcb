"""
anthropic_generator.py -- Claude-backed text generation for titles.

Implements the TextGenerator port. Transient failures (rate limit, timeout,
connection) are retried with exponential backoff; anything else surfaces as
GenerationError, or UnsupportedLanguageError when the API rejects the
prompt's language.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Optional

import anthropic

from titling.errors import GenerationError, UnsupportedLanguageError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

MAX_RETRIES: int = 4
INITIAL_BACKOFF_SECONDS: float = 2.0
REQUEST_TIMEOUT_SECONDS: float = 60.0
MAX_TOKENS: int = 128
MODEL: str = os.getenv("CLAUDE_MODEL", "claude-sonnet-4-6")


class AnthropicTextGenerator:
    """TextGenerator using the Anthropic Messages API."""

    def __init__(
        self,
        client: Optional[anthropic.AsyncAnthropic] = None,
        api_key: Optional[str] = None,
        model: str = MODEL,
        backoff_seconds: float = INITIAL_BACKOFF_SECONDS,
    ) -> None:
        if client is None:
            key = api_key or os.environ.get("ANTHROPIC_API_KEY", "")
            if not key:
                raise ValueError(
                    "ANTHROPIC_API_KEY is required. Set it as an environment variable "
                    "or pass api_key to AnthropicTextGenerator()."
                )
            client = anthropic.AsyncAnthropic(api_key=key)
        self.client = client
        self.model = model
        self.backoff_seconds = backoff_seconds

    async def generate(self, instructions: str, prompt: str, temperature: float) -> str:
        backoff = self.backoff_seconds

        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = await self.client.messages.create(
                    model=self.model,
                    max_tokens=MAX_TOKENS,
                    temperature=temperature,
                    system=instructions,
                    messages=[{"role": "user", "content": prompt}],
                    timeout=REQUEST_TIMEOUT_SECONDS,
                )
                text_blocks = [block.text for block in response.content if block.type == "text"]
                return chr(10).join(text_blocks)

            except (
                anthropic.RateLimitError,
                anthropic.APITimeoutError,
                anthropic.APIConnectionError,
            ) as exc:
                logger.warning(
                    "%s (attempt %d/%d): %s", type(exc).__name__, attempt, MAX_RETRIES, exc,
                )
                if attempt == MAX_RETRIES:
                    raise GenerationError(f"Claude unavailable after {MAX_RETRIES} attempts") from exc
                await asyncio.sleep(backoff)
                backoff *= 2

            except anthropic.APIStatusError as exc:
                if "language" in str(exc).lower():
                    raise UnsupportedLanguageError(str(exc)) from exc
                raise GenerationError(f"Claude returned {exc.status_code}: {exc}") from exc

        raise GenerationError("Exhausted retries for Claude API call")
