"""
ports.py -- Collaborator interfaces consumed by the recording pipeline.

Concrete transports (sound classifier, speech recognizer, music matcher,
persistence, reverse geocoder) live outside the core; the pipeline only
depends on these shapes.
"""

from __future__ import annotations

from typing import AsyncIterator, Optional, Protocol

from processing.models import ClassificationEvent, MusicMatch, RecordingMetadata


class MediaPreparer(Protocol):
    async def prepare(self, recording: RecordingMetadata) -> str:
        """Return an analyzable audio handle or raise MediaError."""
        ...


class Classifier(Protocol):
    def classify(self, audio_handle: str) -> AsyncIterator[ClassificationEvent]:
        """Yield events until completion; raise ClassificationError on failure."""
        ...


class Transcriber(Protocol):
    async def transcribe(self, audio_handle: str, locale: str) -> str:
        """
        Resolve to the transcript for `locale`.

        Raise TranscriptionError when recognition fails or the locale is not
        supported. Cancelling the awaiting task cancels recognition.
        """
        ...


class MusicMatcher(Protocol):
    async def identify(self, audio_handle: str) -> Optional[MusicMatch]:
        ...


class Geocoder(Protocol):
    async def reverse(self, latitude: float, longitude: float) -> Optional[str]:
        ...


class RecordingStore(Protocol):
    def save(self, recording: RecordingMetadata) -> None:
        ...
