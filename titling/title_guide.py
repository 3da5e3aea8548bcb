"""
title_guide.py -- Title synthesis: context -> precheck -> candidates -> rerank.

Weak evidence (no tag reaching the 20% floor) is refused up front with a
fixed phrase and no generator call. Otherwise the best-scoring candidate
wins; ties keep generation order.
"""

from __future__ import annotations

import logging
import random
from typing import Optional

from pydantic import BaseModel, Field

from processing.models import RecordingMetadata
from titling.candidates import (
    GENERATION_ATTEMPTS,
    GENERATION_TEMPERATURE,
    TextGenerator,
    generate_candidates,
)
from titling.context import TagWeights, build_context
from titling.policy import TitlePolicy
from titling.scorer import ScoredCandidate, rank

logger = logging.getLogger(__name__)

REFUSAL_TITLE: str = "알 수 없는 소리"


class TitleOutcome(BaseModel):
    """Result of one title-generation attempt for a recording."""

    title: Optional[str] = None
    refused: bool = False
    candidates: list[ScoredCandidate] = Field(default_factory=list)


async def generate_title(
    recording: RecordingMetadata,
    generator: TextGenerator,
    policy: TitlePolicy,
    weights: TagWeights = None,
    temperature: float = GENERATION_TEMPERATURE,
    attempts: int = GENERATION_ATTEMPTS,
    rng: Optional[random.Random] = None,
    retry_unsupported_language: bool = False,
) -> TitleOutcome:
    """
    Produce a title for the recording.

    Returns an outcome whose `title` is the refusal phrase when evidence is
    too weak, the top-ranked candidate on success, or None when every
    attempt failed.
    """
    context = build_context(recording, weights)

    if not context.has_sufficient_evidence:
        logger.info(
            "Refusing title generation for %s: max tag ratio %.2f below floor",
            recording.id, context.max_ratio,
        )
        return TitleOutcome(title=REFUSAL_TITLE, refused=True)

    candidates = await generate_candidates(
        context, policy, generator,
        attempts=attempts,
        temperature=temperature,
        rng=rng,
        retry_unsupported_language=retry_unsupported_language,
    )
    if not candidates:
        logger.warning("No title candidate produced for %s", recording.id)
        return TitleOutcome()

    ranked = rank(candidates, context, policy)
    best = ranked[0]
    logger.info(
        "Selected title for %s: '%s' (score %.2f of %d candidates)",
        recording.id, best.title, best.score, len(ranked),
    )
    return TitleOutcome(title=best.title, candidates=ranked)
