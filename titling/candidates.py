"""
candidates.py -- Title candidate generation and canonicalization.

Responsibility:
- Drive the text generator through N sequential sampling attempts
- Reject empty or multi-line responses
- Canonicalize each response with shrink(), allowing a longer limit for
  music-attribution titles ("artist - track")
"""

from __future__ import annotations

import logging
import random
import re
from typing import Optional, Protocol

from titling.context import MUSIC_TAG_KEYS, TitleContext, tag_matches
from titling.errors import UnsupportedLanguageError
from titling.policy import TitlePolicy
from titling.prompt_builder import (
    SYSTEM_INSTRUCTIONS,
    assemble_prompt,
    build_fallback_prompt,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

GENERATION_ATTEMPTS: int = 4
GENERATION_TEMPERATURE: float = 0.35
SHORT_TITLE_LIMIT: int = 15
LONG_TITLE_LIMIT: int = 64

JUNK_CHARACTERS: str = "\"'`“”„‘’«»「」『』[](){}<>…#"
TERMINAL_PUNCTUATION: str = ".,!?;:·•"
FILLER_PREFIXES: tuple[str, ...] = ("오늘의 ", "조용한 ", "아주 ")
LIST_SEPARATORS: tuple[str, ...] = (",", " - ", "—")

_JUNK_TABLE = str.maketrans("", "", JUNK_CHARACTERS)
_TERMINAL_RE = re.compile("[" + re.escape(TERMINAL_PUNCTUATION) + "]")
_WORD_RE = re.compile(r"\S+")


class TextGenerator(Protocol):
    """Port to a text-generation engine."""

    async def generate(self, instructions: str, prompt: str, temperature: float) -> str:
        ...


def shrink(raw: str, limit: int) -> str:
    """
    Canonicalize a generated title to at most `limit` characters.

    Trim, drop junk characters, cut at the first sentence-terminal mark,
    strip leading filler phrases, then keep whole words while they fit. A
    first word longer than the limit is hard-truncated.
    """
    if limit < 1:
        raise ValueError(f"limit must be positive, got {limit}")

    text = raw.strip()
    text = text.translate(_JUNK_TABLE).strip()

    match = _TERMINAL_RE.search(text)
    if match:
        text = text[:match.start()].strip()

    stripped = True
    while stripped:
        stripped = False
        for filler in FILLER_PREFIXES:
            if text.startswith(filler):
                text = text[len(filler):].strip()
                stripped = True
                break

    if len(text) <= limit:
        return text

    end = 0
    for word in _WORD_RE.finditer(text):
        if word.end() > limit:
            break
        end = word.end()
    if end == 0:
        return text.split(maxsplit=1)[0][:limit]
    return text[:end]


def allows_long_form(raw: str, context: TitleContext) -> bool:
    """Music-attribution titles may run long when the music evidence backs them."""
    music_like = tag_matches(context.primary_tag, MUSIC_TAG_KEYS) or tag_matches(
        context.secondary_tag, MUSIC_TAG_KEYS
    )
    if not music_like:
        return False
    for known in (context.bgm_title, context.bgm_artist):
        if known and known in raw:
            return True
    return any(sep in raw for sep in LIST_SEPARATORS)


def is_unsupported_language(exc: BaseException) -> bool:
    if isinstance(exc, UnsupportedLanguageError):
        return True
    return "unsupported language" in str(exc).lower()


def _accept(raw: str, context: TitleContext) -> Optional[str]:
    text = (raw or "").strip()
    if not text or "\n" in text:
        return None
    limit = LONG_TITLE_LIMIT if allows_long_form(text, context) else SHORT_TITLE_LIMIT
    shrunk = shrink(text, limit)
    return shrunk or None


async def generate_candidates(
    context: TitleContext,
    policy: TitlePolicy,
    generator: TextGenerator,
    attempts: int = GENERATION_ATTEMPTS,
    temperature: float = GENERATION_TEMPERATURE,
    rng: Optional[random.Random] = None,
    retry_unsupported_language: bool = False,
) -> list[str]:
    """
    Run `attempts` sequential generations and return the surviving candidates
    in generation order. Failed attempts are logged and skipped; an empty
    list means no candidate was produced.
    """
    context_json = context.to_json()
    prompt = assemble_prompt(
        context_json, policy, context.has_walking_cues, context.primary_tag, rng,
    )

    candidates: list[str] = []
    retried = False
    for attempt in range(1, attempts + 1):
        try:
            raw = await generator.generate(SYSTEM_INSTRUCTIONS, prompt, temperature)
        except Exception as exc:
            if not is_unsupported_language(exc):
                logger.warning("Title generation attempt %d/%d failed: %s", attempt, attempts, exc)
                continue
            fallback = build_fallback_prompt(context_json)
            logger.warning(
                "Attempt %d/%d rejected for language; fallback prompt prepared (%d chars)",
                attempt, attempts, len(fallback),
            )
            if not retry_unsupported_language or retried:
                continue
            retried = True
            try:
                raw = await generator.generate(SYSTEM_INSTRUCTIONS, fallback, temperature)
            except Exception as retry_exc:
                logger.warning("Fallback prompt failed: %s", retry_exc)
                continue

        candidate = _accept(raw, context)
        if candidate is None:
            logger.info("Attempt %d/%d discarded: %r", attempt, attempts, raw)
            continue
        candidates.append(candidate)

    logger.info("Generated %d/%d title candidates", len(candidates), attempts)
    return candidates
