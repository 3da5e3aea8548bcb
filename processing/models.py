"""
models.py -- Pydantic models for the Audiolog recording pipeline.

Defines: RecordingMetadata, ClassificationEvent, TagStatistics,
PipelineState, PipelineResult.
All data crossing component boundaries uses these models.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Classifier thresholds
# ---------------------------------------------------------------------------

EVENT_CONFIDENCE_FLOOR: float = 0.20
VOICE_CONFIDENCE_THRESHOLD: float = 0.40
VOICE_LABEL_KEYS: tuple[str, ...] = ("speech", "singing", "vocal")
PERSISTED_TAG_COUNT: int = 5

DEFAULT_TITLE_FORMAT: str = "%m월 %d일 %H시 %M분"


# ---------------------------------------------------------------------------
# Persisted entity -- one recording
# ---------------------------------------------------------------------------

class RecordingMetadata(BaseModel):
    """A recording as stored by the persistence layer."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    file_path: str = ""
    duration: float = 0.0
    created_at: datetime = Field(default_factory=datetime.now)
    title: str = ""
    is_title_generated: bool = False
    location: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    weather: Optional[str] = None
    tags: Optional[list[str]] = None
    dialog: Optional[str] = None
    bgm_title: Optional[str] = None
    bgm_artist: Optional[str] = None

    def finalize_title(self, title: str) -> None:
        """Set the title and mark it finalized. Empty titles are rejected."""
        cleaned = title.strip()
        if not cleaned:
            raise ValueError("A finalized title must not be empty")
        self.title = cleaned
        self.is_title_generated = True

    @property
    def formatted_duration(self) -> str:
        minutes = int(self.duration) // 60
        seconds = int(self.duration) % 60
        return f"{minutes}:{seconds:02d}"

    @property
    def placeholder_title(self) -> str:
        """Timestamp title shown while generation is still pending."""
        return self.created_at.strftime(DEFAULT_TITLE_FORMAT)


# ---------------------------------------------------------------------------
# Classifier output -- ephemeral
# ---------------------------------------------------------------------------

class ClassificationEvent(BaseModel):
    """One (label, confidence, window) observation from the sound classifier."""

    label: str
    confidence: float = Field(ge=0.0, le=1.0)
    start: float = 0.0
    end: float = 0.0


class TagStatistics(BaseModel):
    """Per-label occurrence counts with derived ratios."""

    counts: dict[str, int] = Field(default_factory=dict)

    def add(self, label: str, n: int = 1) -> None:
        self.counts[label] = self.counts.get(label, 0) + n

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    @property
    def ratios(self) -> dict[str, float]:
        """Label -> share of all occurrences. Recomputed on every access."""
        if not self.counts:
            return {}
        total = max(1, self.total)
        return {label: count / total for label, count in self.counts.items()}

    def top_tags(self, k: int = PERSISTED_TAG_COUNT) -> list[str]:
        ordered = sorted(self.counts.items(), key=lambda kv: (-kv[1], kv[0]))
        return [label for label, _ in ordered[:k]]

    def describe(self, k: int = PERSISTED_TAG_COUNT) -> str:
        """Human-readable 'label 41.2% | ...' line for logging."""
        ratios = self.ratios
        return " | ".join(
            f"{label} {ratios[label] * 100:.1f}%" for label in self.top_tags(k)
        )


# ---------------------------------------------------------------------------
# Pipeline result summary
# ---------------------------------------------------------------------------

class PipelineState(str, Enum):
    IDLE = "idle"
    PREPARED = "prepared"
    CLASSIFIED = "classified"
    TRANSCRIBED = "transcribed"
    TRANSCRIPT_SKIPPED = "transcript_skipped"
    TITLED = "titled"
    SAVED = "saved"
    FAILED = "failed"


class PipelineResult(BaseModel):
    """Summary of one pipeline run for a single recording."""

    recording_id: str
    state: PipelineState = PipelineState.IDLE
    failed_stage: Optional[str] = None
    error: Optional[str] = None
    has_voice: bool = False
    tag_counts: dict[str, int] = Field(default_factory=dict)
    transcribed: bool = False
    title: Optional[str] = None
    title_refused: bool = False
    states: list[PipelineState] = Field(default_factory=list)
    elapsed_seconds: float = 0.0


class MusicMatch(BaseModel):
    """Background music identified by the external matcher."""

    title: Optional[str] = None
    artist: Optional[str] = None
