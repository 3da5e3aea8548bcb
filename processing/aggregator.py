"""
aggregator.py -- Sound classification aggregation and voice gating.

Responsibility:
- Drop classifier events at or below the confidence floor (0.20)
- Count occurrences per label (counts, not confidence-weighted)
- Decide hasVoice: any speech/singing/vocal label seen at confidence >= 0.40
"""

from __future__ import annotations

import logging
from typing import Iterable

from processing.models import (
    EVENT_CONFIDENCE_FLOOR,
    VOICE_CONFIDENCE_THRESHOLD,
    VOICE_LABEL_KEYS,
    ClassificationEvent,
    TagStatistics,
)

logger = logging.getLogger(__name__)


def is_voice_label(label: str) -> bool:
    """True if the label names a voice-like sound (case-insensitive substring)."""
    lowered = label.lower()
    return any(key in lowered for key in VOICE_LABEL_KEYS)


def passes_floor(event: ClassificationEvent) -> bool:
    return event.confidence > EVENT_CONFIDENCE_FLOOR


def aggregate_events(
    events: Iterable[ClassificationEvent],
) -> tuple[TagStatistics, bool]:
    """
    Reduce classifier events into TagStatistics and the hasVoice signal.

    Events are expected to be pre-filtered by the caller (confidence > 0.20).
    An empty sequence yields empty statistics and hasVoice=False, which is a
    valid outcome for silent recordings.
    """
    stats = TagStatistics()
    has_voice = False
    seen = 0
    for event in events:
        seen += 1
        stats.add(event.label)
        if (
            not has_voice
            and event.confidence >= VOICE_CONFIDENCE_THRESHOLD
            and is_voice_label(event.label)
        ):
            has_voice = True
    logger.info(
        "Aggregation: %d events -> %d labels (hasVoice=%s)",
        seen, len(stats.counts), has_voice,
    )
    return stats, has_voice
