"""
media.py -- Media preparation: make sure a recording has analyzable audio.

Container conversion is out of scope; the preparer only checks that the file
exists, can be opened by libsndfile, and carries at least one audio frame.
"""

from __future__ import annotations

import logging
from pathlib import Path

import soundfile as sf

from processing.errors import MediaError
from processing.models import RecordingMetadata

logger = logging.getLogger(__name__)


def describe_path(path: Path) -> str:
    """Summarize path/existence/size for log lines."""
    parts = [f"path={path}"]
    exists = path.exists()
    parts.append(f"exists={exists}")
    if exists:
        parts.append(f"size={path.stat().st_size}B")
    return " ".join(parts)


def read_audio_info(path: str | Path):
    """
    Open the file's header and confirm it holds audio.

    Raises:
        MediaError: missing file, unreadable container, or no audio frames.
    """
    audio_path = Path(path)
    if not audio_path.is_file():
        raise MediaError(f"Recording file not found: {audio_path}")
    try:
        info = sf.info(str(audio_path))
    except RuntimeError as exc:
        raise MediaError(f"Unreadable audio in {audio_path.name}: {exc}") from exc
    if info.channels < 1 or info.frames < 1:
        raise MediaError(f"No audio track in {audio_path.name}")
    return info


class SoundfileMediaPreparer:
    """MediaPreparer that validates the recording file in place."""

    async def prepare(self, recording: RecordingMetadata) -> str:
        path = Path(recording.file_path)
        logger.info("Preparing media: %s", describe_path(path))
        info = read_audio_info(path)
        logger.info(
            "Media ready: %s (%d ch, %d Hz, %.2fs)",
            path.name, info.channels, info.samplerate, info.duration,
        )
        return str(path)
