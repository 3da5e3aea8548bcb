"""
pipeline.py -- Per-recording processing pipeline.

Runs the full flow for one recording:
1. Prepare media (fatal if there is no usable audio)
2. Classify sounds and aggregate tag statistics
3. Transcribe speech (only when a voice was detected)
4. Identify background music and resolve the location (optional)
5. Generate, rank and finalize a title (+ canonical location suffix)
6. Save

Each stage persists its partial result before the next starts, so a crash
loses at most one stage of work. Recordings whose title was never finalized
can be re-run from the start.

Usage:
    python -m processing.pipeline --recording rec.json --store ./recordings
    python -m processing.pipeline --store ./recordings      # all pending
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
import time
from pathlib import Path
from typing import Iterable, Optional

from dotenv import load_dotenv

from processing.aggregator import aggregate_events, passes_floor
from processing.errors import MediaError, TranscriptionError
from processing.models import (
    PipelineResult,
    PipelineState,
    RecordingMetadata,
    TagStatistics,
)
from processing.ports import (
    Classifier,
    Geocoder,
    MediaPreparer,
    MusicMatcher,
    RecordingStore,
    Transcriber,
)
from titling.address import attach_location
from titling.candidates import TextGenerator
from titling.policy import TitlePolicy
from titling.title_guide import TitleOutcome, generate_title

logger = logging.getLogger(__name__)

TRANSCRIBE_LOCALE: str = os.getenv("TRANSCRIBE_LOCALE", "ko_KR")
DEFAULT_CONCURRENCY: int = 2


def paragraphize(raw: str) -> str:
    """Collapse double spaces and break the transcript after each sentence."""
    return raw.replace("  ", " ").replace(". ", ".\n").strip()


def _banner(step: int, title: str) -> None:
    logger.info("=" * 60)
    logger.info("STEP %d: %s", step, title)
    logger.info("=" * 60)


class RecordingPipeline:
    """Sequences the processing stages for recordings; one task per recording."""

    def __init__(
        self,
        media: MediaPreparer,
        classifier: Classifier,
        generator: TextGenerator,
        policy: TitlePolicy,
        store: RecordingStore,
        transcriber: Optional[Transcriber] = None,
        music_matcher: Optional[MusicMatcher] = None,
        geocoder: Optional[Geocoder] = None,
        locale: str = TRANSCRIBE_LOCALE,
        retry_unsupported_language: bool = False,
    ) -> None:
        self.media = media
        self.classifier = classifier
        self.generator = generator
        self.policy = policy
        self.store = store
        self.transcriber = transcriber
        self.music_matcher = music_matcher
        self.geocoder = geocoder
        self.locale = locale
        self.retry_unsupported_language = retry_unsupported_language
        self._inflight: set[str] = set()

    # -- helpers -------------------------------------------------------------

    @staticmethod
    def _enter(result: PipelineResult, state: PipelineState) -> None:
        result.state = state
        result.states.append(state)

    def _fail(self, result: PipelineResult, stage: str, error: object) -> None:
        result.failed_stage = stage
        result.error = str(error)
        self._enter(result, PipelineState.FAILED)
        logger.error("Recording %s failed at %s: %s", result.recording_id, stage, error)

    def _persist(self, recording: RecordingMetadata, checkpoint: str) -> None:
        try:
            self.store.save(recording)
            logger.info("Checkpoint '%s' saved for %s", checkpoint, recording.id)
        except Exception as exc:
            logger.error("Checkpoint '%s' save failed for %s: %s", checkpoint, recording.id, exc)

    # -- stages --------------------------------------------------------------

    async def _classify(self, audio_handle: str) -> tuple[TagStatistics, bool]:
        """Run the classifier to completion, then aggregate. Failures yield empty stats."""
        try:
            events = [e async for e in self.classifier.classify(audio_handle)]
        except Exception as exc:
            logger.error("Sound classification failed: %s", exc)
            return TagStatistics(), False
        kept = [e for e in events if passes_floor(e)]
        logger.info("Classifier produced %d events, %d above floor", len(events), len(kept))
        return aggregate_events(kept)

    async def _transcribe(self, recording: RecordingMetadata, audio_handle: str) -> bool:
        assert self.transcriber is not None
        try:
            text = await self.transcriber.transcribe(audio_handle, self.locale)
        except asyncio.CancelledError:
            raise
        except TranscriptionError as exc:
            logger.warning("Transcription failed for %s: %s", recording.id, exc)
            return False
        except Exception as exc:
            logger.error("Unexpected transcriber error for %s: %s", recording.id, exc)
            return False
        transcript = paragraphize(text or "")
        if not transcript:
            logger.info("Transcription for %s was empty", recording.id)
            return False
        recording.dialog = transcript
        preview = transcript.replace("\n", " ")[:120]
        logger.info("Transcript (%d chars): %s", len(transcript), preview)
        return True

    async def _identify_music(self, recording: RecordingMetadata, audio_handle: str) -> None:
        assert self.music_matcher is not None
        try:
            match = await self.music_matcher.identify(audio_handle)
        except Exception as exc:
            logger.warning("Music identification failed for %s: %s", recording.id, exc)
            return
        if match is None:
            logger.info("No background music matched")
            return
        recording.bgm_title = match.title or recording.bgm_title
        recording.bgm_artist = match.artist or recording.bgm_artist
        logger.info("Background music: %s - %s", match.title or "?", match.artist or "?")
        self._persist(recording, "music")

    async def _locate(self, recording: RecordingMetadata) -> None:
        assert self.geocoder is not None
        try:
            address = await self.geocoder.reverse(recording.latitude, recording.longitude)
        except Exception as exc:
            logger.warning("Location lookup failed for %s: %s", recording.id, exc)
            return
        if address:
            recording.location = address
            self._persist(recording, "location")

    async def _title(self, recording: RecordingMetadata, stats: TagStatistics) -> TitleOutcome:
        try:
            return await generate_title(
                recording,
                self.generator,
                self.policy,
                weights=stats,
                retry_unsupported_language=self.retry_unsupported_language,
            )
        except Exception as exc:
            logger.error("Title generation failed for %s: %s", recording.id, exc)
            return TitleOutcome()

    # -- entry points --------------------------------------------------------

    async def run(self, recording: RecordingMetadata) -> PipelineResult:
        """Process one recording. Only cancellation escapes as an exception."""
        result = PipelineResult(recording_id=recording.id)
        self._enter(result, PipelineState.IDLE)
        if recording.is_title_generated:
            logger.info("Recording %s already has a final title; skipping", recording.id)
            return result
        if recording.id in self._inflight:
            logger.info("Recording %s is already being processed; skipping", recording.id)
            result.error = "already in progress"
            return result

        self._inflight.add(recording.id)
        start_time = time.monotonic()
        try:
            await self._run_stages(recording, result)
        finally:
            self._inflight.discard(recording.id)
            result.elapsed_seconds = round(time.monotonic() - start_time, 2)
        self._log_summary(recording, result)
        return result

    async def _run_stages(self, recording: RecordingMetadata, result: PipelineResult) -> None:
        _banner(1, f"Preparing media for {recording.id}")
        try:
            audio_handle = await self.media.prepare(recording)
        except MediaError as exc:
            self._fail(result, "prepare", exc)
            return
        self._enter(result, PipelineState.PREPARED)

        _banner(2, "Classifying sounds")
        stats, has_voice = await self._classify(audio_handle)
        result.has_voice = has_voice
        result.tag_counts = dict(stats.counts)
        if stats.counts:
            recording.tags = stats.top_tags()
            logger.info("Top tags: %s", stats.describe())
        self._persist(recording, "classified")
        self._enter(result, PipelineState.CLASSIFIED)

        _banner(3, "Transcribing speech")
        if has_voice and self.transcriber is not None:
            try:
                result.transcribed = await self._transcribe(recording, audio_handle)
            except asyncio.CancelledError:
                self._fail(result, "transcribe", "cancelled")
                raise
            if result.transcribed:
                self._persist(recording, "transcribed")
        else:
            logger.info("Transcription skipped (hasVoice=%s)", has_voice)
        self._enter(
            result,
            PipelineState.TRANSCRIBED if result.transcribed else PipelineState.TRANSCRIPT_SKIPPED,
        )

        _banner(4, "Enriching metadata")
        if self.music_matcher is not None:
            await self._identify_music(recording, audio_handle)
        if (
            self.geocoder is not None
            and not recording.location
            and recording.latitude is not None
            and recording.longitude is not None
        ):
            await self._locate(recording)

        _banner(5, "Generating title")
        outcome = await self._title(recording, stats)
        if outcome.title:
            recording.finalize_title(attach_location(outcome.title, recording.location))
            result.title = recording.title
            result.title_refused = outcome.refused
            self._enter(result, PipelineState.TITLED)
        else:
            logger.warning("No title produced for %s; left in progress", recording.id)

        _banner(6, "Saving")
        self._persist(recording, "final")
        self._enter(result, PipelineState.SAVED)

    @staticmethod
    def _log_summary(recording: RecordingMetadata, result: PipelineResult) -> None:
        logger.info("=" * 60)
        logger.info("PIPELINE COMPLETE")
        logger.info("=" * 60)
        logger.info("Recording:       %s", recording.id)
        logger.info("Duration:        %s", recording.formatted_duration)
        logger.info("Final state:     %s", result.state.value)
        logger.info("Tags counted:    %d", len(result.tag_counts))
        logger.info("Voice detected:  %s", result.has_voice)
        logger.info("Transcribed:     %s", result.transcribed)
        logger.info("Title:           %s", result.title or f"{recording.placeholder_title} (in progress)")
        logger.info("Elapsed time:    %.2fs", result.elapsed_seconds)

    async def process_pending(
        self,
        recordings: Iterable[RecordingMetadata],
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> list[PipelineResult]:
        """
        Run the pipeline for every recording without a finalized title.

        Recordings run as independent concurrent tasks, at most `concurrency`
        at a time; a recording id appearing twice is processed once.
        """
        seen: set[str] = set()
        eligible: list[RecordingMetadata] = []
        for recording in recordings:
            if recording.is_title_generated or recording.id in seen:
                continue
            seen.add(recording.id)
            eligible.append(recording)
        logger.info("Processing %d pending recordings (concurrency=%d)", len(eligible), concurrency)

        semaphore = asyncio.Semaphore(concurrency)

        async def _one(recording: RecordingMetadata) -> PipelineResult:
            async with semaphore:
                return await self.run(recording)

        return list(await asyncio.gather(*(_one(r) for r in eligible)))


def main() -> None:
    from processing.adapters.events_jsonl import JsonlClassifier
    from processing.adapters.kakao_geocoder import KakaoGeocoder
    from processing.adapters.recording_store import JsonRecordingStore
    from processing.media import SoundfileMediaPreparer
    from titling.anthropic_generator import AnthropicTextGenerator
    from titling.errors import PolicyLoadError
    from titling.policy import load_policy

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    parser = argparse.ArgumentParser(description="Audiolog recording pipeline")
    parser.add_argument("--recording", type=str, help="Path to a recording metadata JSON file")
    parser.add_argument("--events", type=str, help="Classifier events JSONL (default: <audio>.events.jsonl)")
    parser.add_argument("--store", type=str, default="recordings", help="Recording store directory")
    parser.add_argument("--policy", type=str, default=None, help="Title policy JSON (default: bundled)")
    parser.add_argument("--concurrency", type=int, default=DEFAULT_CONCURRENCY)
    args = parser.parse_args()

    env_path = Path.cwd() / ".env"
    if env_path.exists():
        load_dotenv(env_path)
        logger.info("Loaded environment from %s", env_path)
    if not os.environ.get("ANTHROPIC_API_KEY"):
        logger.error("ANTHROPIC_API_KEY not set. Set it in .env or environment.")
        sys.exit(1)

    try:
        policy = load_policy(args.policy or os.getenv("TITLE_POLICY_PATH"))
    except PolicyLoadError as exc:
        logger.critical("%s", exc)
        sys.exit(1)

    store = JsonRecordingStore(args.store)
    pipeline = RecordingPipeline(
        media=SoundfileMediaPreparer(),
        classifier=JsonlClassifier(args.events),
        generator=AnthropicTextGenerator(),
        policy=policy,
        store=store,
        geocoder=KakaoGeocoder() if os.getenv("KAKAO_REST_API_KEY") else None,
    )

    if args.recording:
        recording = RecordingMetadata.model_validate_json(
            Path(args.recording).read_text(encoding="utf-8")
        )
        results = [asyncio.run(pipeline.run(recording))]
    else:
        results = asyncio.run(pipeline.process_pending(store.pending(), args.concurrency))

    failed = [r for r in results if r.state == PipelineState.FAILED]
    if failed:
        logger.error("%d of %d recordings failed", len(failed), len(results))
        sys.exit(1)


if __name__ == "__main__":
    main()
