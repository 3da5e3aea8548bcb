"""
context.py -- Derived-signal context for title generation.

Builds an immutable TitleContext from a recording's metadata and its tag
weights (occurrence counts). The context serializes to a flat JSON document
with fixed Korean keys; that document is what the text generator sees.
"""

from __future__ import annotations

import json
import logging
from typing import Iterable, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from processing.models import RecordingMetadata, TagStatistics

logger = logging.getLogger(__name__)

SPEECH_TAG_KEYS: tuple[str, ...] = ("speech", "vocal", "singing")
WATER_TAG_KEYS: tuple[str, ...] = ("waves", "wave", "water", "ocean", "sea")
WALKING_TAG_KEYS: tuple[str, ...] = ("footsteps", "walking", "walk", "jog", "stroll")
MUSIC_TAG_KEYS: tuple[str, ...] = (
    "music", "singing", "instrument", "song", "guitar", "piano", "keyboard", "drum",
)
RAIN_TAG_KEYS: tuple[str, ...] = ("rain",)
SIREN_TAG_KEYS: tuple[str, ...] = ("siren", "alarm", "beep")

VOICE_RATIO_THRESHOLD: float = 0.25
WATER_RATIO_THRESHOLD: float = 0.15
WALKING_RATIO_THRESHOLD: float = 0.15
MIN_EVIDENCE_RATIO: float = 0.20

HINT_TAG_COUNT: int = 3
DIALOG_LINE_COUNT: int = 3

TagWeights = Union[Mapping[str, int], TagStatistics, None]


def ratio_for(ratios: Mapping[str, float], keys: Iterable[str]) -> float:
    """Largest ratio among labels whose lowercase form contains any key; 0 if none."""
    if not ratios:
        return 0.0
    keys = tuple(keys)
    best = 0.0
    for label, value in ratios.items():
        lowered = label.lower()
        if any(key in lowered for key in keys):
            best = max(best, value)
    return best


def tag_matches(tag: Optional[str], keys: Iterable[str]) -> bool:
    if not tag:
        return False
    lowered = tag.lower()
    return any(key in lowered for key in keys)


class TitleContext(BaseModel):
    """Signals derived from one recording, built once per title attempt."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    primary_tag: Optional[str] = Field(default=None, alias="주태그")
    secondary_tag: Optional[str] = Field(default=None, alias="부태그")
    hint_tags: tuple[str, ...] = Field(default=(), alias="힌트태그")
    tag_weights: Optional[dict[str, int]] = Field(default=None, alias="태그가중치")
    dialog: Optional[str] = Field(default=None, alias="전사")
    bgm_title: Optional[str] = Field(default=None, alias="배경음악제목")
    bgm_artist: Optional[str] = Field(default=None, alias="배경음악아티스트")
    ratios: dict[str, float] = Field(default_factory=dict, alias="태그비율")
    primary_ratio: float = Field(default=0.0, alias="주태그비율")
    speech_ratio: float = Field(default=0.0, alias="음성비율")
    has_voice: bool = Field(default=False, alias="음성유무")
    has_water_allowed: bool = Field(default=False, alias="물/파도허용")
    has_walking_cues: bool = False

    def ratio(self, keys: Iterable[str]) -> float:
        return ratio_for(self.ratios, keys)

    @property
    def max_ratio(self) -> float:
        return max(self.ratios.values(), default=0.0)

    @property
    def has_sufficient_evidence(self) -> bool:
        """False when no single tag reaches the 20% floor; generation is refused."""
        return self.max_ratio >= MIN_EVIDENCE_RATIO

    def to_json(self) -> str:
        """Serialize with the fixed semantic keys, keeping absent fields as null."""
        payload = self.model_dump(by_alias=True, exclude={"has_walking_cues"})
        return json.dumps(payload, ensure_ascii=False)


def _ordered_tags(weights: Mapping[str, int]) -> list[str]:
    return [label for label, _ in sorted(weights.items(), key=lambda kv: (-kv[1], kv[0]))]


def _dialog_excerpt(transcript: Optional[str]) -> Optional[str]:
    if not transcript or not transcript.strip():
        return None
    lines = [line for line in transcript.strip().split("\n") if line]
    return " ".join(lines[:DIALOG_LINE_COUNT])


def build_context(recording: RecordingMetadata, weights: TagWeights = None) -> TitleContext:
    """
    Assemble the title context.

    With weights, ratios are weight / max(1, total) and tags are ordered by
    weight descending (label ascending on ties). Without weights the
    recording's stored tag order is used and ratios stay empty.
    """
    if isinstance(weights, TagStatistics):
        weights = weights.counts
    weight_map: Optional[dict[str, int]] = dict(weights) if weights else None

    if weight_map:
        total = max(1, sum(weight_map.values()))
        ratios = {label: count / total for label, count in weight_map.items()}
        ordered = _ordered_tags(weight_map)
    else:
        ratios = {}
        ordered = list(recording.tags or [])

    primary = ordered[0] if ordered else None
    speech_ratio = ratio_for(ratios, SPEECH_TAG_KEYS)

    context = TitleContext(
        primary_tag=primary,
        secondary_tag=ordered[1] if len(ordered) > 1 else None,
        hint_tags=tuple(ordered[2:2 + HINT_TAG_COUNT]),
        tag_weights=weight_map,
        dialog=_dialog_excerpt(recording.dialog),
        bgm_title=recording.bgm_title,
        bgm_artist=recording.bgm_artist,
        ratios=ratios,
        primary_ratio=ratios.get(primary, 0.0) if primary else 0.0,
        speech_ratio=speech_ratio,
        has_voice=speech_ratio >= VOICE_RATIO_THRESHOLD,
        has_water_allowed=ratio_for(ratios, WATER_TAG_KEYS) >= WATER_RATIO_THRESHOLD,
        has_walking_cues=ratio_for(ratios, WALKING_TAG_KEYS) >= WALKING_RATIO_THRESHOLD,
    )
    logger.debug("Title context for %s: %s", recording.id, context.to_json())
    return context
