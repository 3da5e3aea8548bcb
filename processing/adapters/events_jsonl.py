"""
events_jsonl.py -- Classifier adapter that replays sound events from JSONL.

Each line is one classifier observation:
    {"label": "speech", "confidence": 0.82, "start": 0.0, "end": 0.9}

By default events are read from a sidecar file next to the audio
(`<audio>.events.jsonl`). Malformed lines are skipped with a warning; a
missing file is a classification failure.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import AsyncIterator, Optional

from processing.errors import ClassificationError
from processing.models import ClassificationEvent

logger = logging.getLogger(__name__)

SIDECAR_SUFFIX: str = ".events.jsonl"


def sidecar_path(audio_handle: str) -> Path:
    return Path(audio_handle + SIDECAR_SUFFIX)


def load_events(path: Path) -> list[ClassificationEvent]:
    """
    Load all events from a JSONL file.

    Blank lines are ignored; lines that are not valid events are skipped.
    """
    if not path.is_file():
        raise ClassificationError(f"Event file not found: {path}")

    events: list[ClassificationEvent] = []
    with open(path, "r", encoding="utf-8") as f:
        for line_num, line in enumerate(f, start=1):
            stripped = line.strip()
            if not stripped:
                continue
            try:
                events.append(ClassificationEvent(**json.loads(stripped)))
            except (json.JSONDecodeError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed line %d in %s: %s", line_num, path.name, exc)

    logger.info("Loaded %d events from %s", len(events), path.name)
    return events


class JsonlClassifier:
    """Classifier port backed by a JSONL event file."""

    def __init__(self, events_path: Optional[str | Path] = None) -> None:
        self.events_path = Path(events_path) if events_path else None

    async def classify(self, audio_handle: str) -> AsyncIterator[ClassificationEvent]:
        path = self.events_path or sidecar_path(audio_handle)
        for event in load_events(path):
            yield event
