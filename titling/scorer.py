"""
scorer.py -- Rule-based reranking of title candidates.

Each candidate gets an additive score from:
- evidence bonuses (discourse, music, rain, waves, siren words backed by tag ratios)
- guardrail penalties (speech, water, music, walking, place words without evidence)
- form bonuses (short, single-spaced, no quote/hash/ellipsis)

The score is deterministic and never raises; absent ratios count as 0.
"""

from __future__ import annotations

import logging
from typing import Iterable

from pydantic import BaseModel

from titling.context import (
    MUSIC_TAG_KEYS,
    RAIN_TAG_KEYS,
    SIREN_TAG_KEYS,
    WATER_TAG_KEYS,
    TitleContext,
    tag_matches,
)
from titling.policy import TitlePolicy

logger = logging.getLogger(__name__)

LOW_EVIDENCE_RATIO: float = 0.12
FORM_LENGTH_LIMIT: int = 22
FORM_NOISE_CHARACTERS: tuple[str, ...] = ("\"", "“", "#", "…")


class ScoredCandidate(BaseModel):
    """A candidate title and its rerank score (may be negative)."""

    title: str
    score: float


def _has_any(title: str, words: Iterable[str]) -> bool:
    return any(word in title for word in words)


def score(title: str, context: TitleContext, policy: TitlePolicy) -> float:
    """Score one candidate against the context and policy vocabulary."""
    vocab = policy.vocabulary
    primary = context.primary_tag
    s = 0.0

    speech_ratio = context.speech_ratio
    wave_ratio = context.ratio(WATER_TAG_KEYS)
    music_ratio = context.ratio(MUSIC_TAG_KEYS)
    rain_ratio = context.ratio(RAIN_TAG_KEYS)
    siren_ratio = context.ratio(SIREN_TAG_KEYS)

    # Evidence bonuses
    if _has_any(title, vocab.discourse_words):
        s += min(3.0, 4.0 * speech_ratio)
        if policy.speech_bias.applies_to(primary):
            s += 0.8
    has_music_word = _has_any(title, vocab.music_words)
    if has_music_word:
        s += min(2.2, 3.0 * music_ratio)
        if tag_matches(primary, MUSIC_TAG_KEYS):
            s += 0.6
    if _has_any(title, vocab.rain_words):
        s += min(1.8, 2.5 * rain_ratio)
    if _has_any(title, vocab.wave_words):
        s += min(1.8, 2.5 * wave_ratio)
    if _has_any(title, vocab.siren_words):
        s += min(1.6, 2.0 * siren_ratio)

    # Guardrail penalties
    if not context.has_voice and _has_any(title, vocab.speech_words):
        s -= 5.0
    has_water_word = _has_any(title, vocab.water_words)
    if has_water_word and not context.has_water_allowed:
        s -= 4.0
    if has_water_word and wave_ratio < LOW_EVIDENCE_RATIO:
        s -= 2.5
    if has_music_word and music_ratio < LOW_EVIDENCE_RATIO:
        s -= 2.0
    walking = policy.walking_constraints
    if (
        walking.require_walking_cues_for_walk_words
        and not context.has_walking_cues
        and _has_any(title, walking.walk_words)
    ):
        s -= 4.0
    if _has_any(title, vocab.place_words):
        s -= 5.0

    # Form
    if "  " not in title and len(title) <= FORM_LENGTH_LIMIT:
        s += 0.5
    if not _has_any(title, FORM_NOISE_CHARACTERS):
        s += 0.3

    return s


def rank(candidates: list[str], context: TitleContext, policy: TitlePolicy) -> list[ScoredCandidate]:
    """Score and order candidates, best first. Ties keep generation order."""
    scored = [
        ScoredCandidate(title=title, score=score(title, context, policy))
        for title in candidates
    ]
    scored.sort(key=lambda c: c.score, reverse=True)
    for c in scored:
        logger.debug("Candidate %.2f  %s", c.score, c.title)
    return scored
