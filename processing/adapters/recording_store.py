"""
recording_store.py -- JSON-file persistence for recordings.

One `<recording id>.json` document per recording in a store directory.
Writes go through a temporary file and a rename so a crash mid-write
never leaves a truncated document behind.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from pydantic import ValidationError

from processing.models import RecordingMetadata

logger = logging.getLogger(__name__)


class JsonRecordingStore:
    """RecordingStore writing each recording to its own JSON file."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, recording_id: str) -> Path:
        return self.directory / f"{recording_id}.json"

    def save(self, recording: RecordingMetadata) -> None:
        target = self.path_for(recording.id)
        tmp = target.with_suffix(".json.tmp")
        tmp.write_text(recording.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp, target)
        logger.debug("Saved recording %s -> %s", recording.id, target)

    def load(self, recording_id: str) -> RecordingMetadata:
        path = self.path_for(recording_id)
        if not path.exists():
            raise FileNotFoundError(f"No recording {recording_id} in {self.directory}")
        return RecordingMetadata.model_validate_json(path.read_text(encoding="utf-8"))

    def load_all(self) -> list[RecordingMetadata]:
        """Load every stored recording, oldest first. Unreadable files are skipped."""
        recordings: list[RecordingMetadata] = []
        for path in sorted(self.directory.glob("*.json")):
            try:
                recordings.append(
                    RecordingMetadata.model_validate_json(path.read_text(encoding="utf-8"))
                )
            except (OSError, ValidationError) as exc:
                logger.warning("Skipping unreadable recording file %s: %s", path.name, exc)
        recordings.sort(key=lambda r: r.created_at)
        logger.info("Loaded %d recordings from %s", len(recordings), self.directory)
        return recordings

    def pending(self) -> list[RecordingMetadata]:
        """Recordings whose title was never finalized."""
        return [r for r in self.load_all() if not r.is_title_generated]
