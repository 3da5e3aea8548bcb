from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Optional

import pytest

from processing.errors import ClassificationError, MediaError, TranscriptionError
from processing.models import ClassificationEvent, MusicMatch, PipelineState, RecordingMetadata
from processing.pipeline import RecordingPipeline, paragraphize
from titling.errors import GenerationError
from titling.title_guide import REFUSAL_TITLE

S = PipelineState


class FakeMedia:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.prepared: list[str] = []

    async def prepare(self, recording: RecordingMetadata) -> str:
        self.prepared.append(recording.id)
        if self.error:
            raise self.error
        return recording.file_path


class FakeClassifier:
    def __init__(self, events=(), error: Optional[Exception] = None) -> None:
        self.events = list(events)
        self.error = error
        self.calls = 0

    async def classify(self, audio_handle: str):
        self.calls += 1
        for event in self.events:
            yield event
        if self.error:
            raise self.error


class FakeTranscriber:
    def __init__(self, text: str = "", block: bool = False) -> None:
        self.text = text
        self.block = block
        self.calls = 0
        self.started = asyncio.Event() if block else None
        self.cancelled = False

    async def transcribe(self, audio_handle: str, locale: str) -> str:
        self.calls += 1
        if self.block:
            self.started.set()
            try:
                await asyncio.sleep(60)
            except asyncio.CancelledError:
                self.cancelled = True
                raise
        return self.text


class FakeMusic:
    async def identify(self, audio_handle: str) -> Optional[MusicMatch]:
        return MusicMatch(title="Blue Night", artist="Lumen")


class FakeGeocoder:
    def __init__(self, address: Optional[str] = None, error: Optional[Exception] = None) -> None:
        self.address = address
        self.error = error
        self.calls: list[tuple[float, float]] = []

    async def reverse(self, latitude: float, longitude: float) -> Optional[str]:
        self.calls.append((latitude, longitude))
        if self.error:
            raise self.error
        return self.address


class MemoryStore:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.saved: list[RecordingMetadata] = []

    def save(self, recording: RecordingMetadata) -> None:
        if self.fail:
            raise OSError("disk full")
        self.saved.append(recording.model_copy(deep=True))


def _events(label: str, n: int, confidence: float = 0.9) -> list[ClassificationEvent]:
    return [ClassificationEvent(label=label, confidence=confidence) for _ in range(n)]


def _pipeline(policy, generator, **overrides) -> RecordingPipeline:
    parts = {
        "media": FakeMedia(),
        "classifier": FakeClassifier(_events("rain", 8) + _events("wind", 2)),
        "generator": generator,
        "policy": policy,
        "store": MemoryStore(),
    }
    parts.update(overrides)
    return RecordingPipeline(**parts)


def test_paragraphize_breaks_sentences() -> None:
    raw = "안녕하세요.  오늘 회의를 시작합니다. 일정부터 보죠 "
    assert paragraphize(raw) == "안녕하세요.\n오늘 회의를 시작합니다.\n일정부터 보죠"


def test_full_run_with_speech(make_recording, policy, fake_generator) -> None:
    events = _events("speech", 6) + _events("wind", 2, 0.5) + _events("dog", 5, 0.15)
    transcriber = FakeTranscriber("안녕하세요.  오늘 회의를 시작합니다. 일정부터 보죠")
    store = MemoryStore()
    pipeline = _pipeline(
        policy, fake_generator(default="프로젝트 회의"),
        classifier=FakeClassifier(events), transcriber=transcriber, store=store,
    )
    recording = make_recording(location="서울특별시 강남구 역삼동")

    result = asyncio.run(pipeline.run(recording))

    assert result.states == [S.IDLE, S.PREPARED, S.CLASSIFIED, S.TRANSCRIBED, S.TITLED, S.SAVED]
    assert result.has_voice is True
    assert result.tag_counts == {"speech": 6, "wind": 2}
    assert recording.tags == ["speech", "wind"]
    assert recording.dialog == "안녕하세요.\n오늘 회의를 시작합니다.\n일정부터 보죠"
    assert recording.title == "프로젝트 회의, 서울 강남구"
    assert recording.is_title_generated is True
    assert store.saved[-1].is_title_generated is True
    assert store.saved[0].tags == ["speech", "wind"]
    assert store.saved[0].is_title_generated is False


def test_no_voice_skips_transcription(make_recording, policy, fake_generator) -> None:
    transcriber = FakeTranscriber("들리면 안 되는 말")
    pipeline = _pipeline(policy, fake_generator(default="빗소리"), transcriber=transcriber)
    recording = make_recording()

    result = asyncio.run(pipeline.run(recording))

    assert transcriber.calls == 0
    assert S.TRANSCRIPT_SKIPPED in result.states
    assert recording.dialog is None
    assert recording.title == "빗소리"


def test_media_failure_halts(make_recording, policy, fake_generator) -> None:
    classifier = FakeClassifier(_events("rain", 3))
    store = MemoryStore()
    pipeline = _pipeline(
        policy, fake_generator(),
        media=FakeMedia(MediaError("no audio")), classifier=classifier, store=store,
    )

    result = asyncio.run(pipeline.run(make_recording()))

    assert result.state == S.FAILED
    assert result.failed_stage == "prepare"
    assert result.states == [S.IDLE, S.FAILED]
    assert classifier.calls == 0
    assert store.saved == []


def test_classification_failure_leads_to_refusal(make_recording, policy, fake_generator) -> None:
    generator = fake_generator(default="빗소리")
    transcriber = FakeTranscriber("무언가")
    classifier = FakeClassifier(_events("speech", 4), error=ClassificationError("model crashed"))
    pipeline = _pipeline(
        policy, generator, classifier=classifier, transcriber=transcriber,
    )
    recording = make_recording()

    result = asyncio.run(pipeline.run(recording))

    assert result.state == S.SAVED
    assert result.tag_counts == {}
    assert result.has_voice is False
    assert transcriber.calls == 0
    assert generator.calls == []
    assert recording.title == REFUSAL_TITLE
    assert recording.is_title_generated is True
    assert result.title_refused is True


def test_generation_failure_leaves_title_unfinalized(make_recording, policy, fake_generator, caplog) -> None:
    caplog.set_level(logging.INFO, logger="processing.pipeline")
    store = MemoryStore()
    pipeline = _pipeline(policy, fake_generator([GenerationError("down")] * 4), store=store)
    recording = make_recording(created_at=datetime(2025, 11, 3, 14, 5), duration=125.0)

    result = asyncio.run(pipeline.run(recording))

    assert S.TITLED not in result.states
    assert result.state == S.SAVED
    assert recording.is_title_generated is False
    assert recording.title == ""
    assert store.saved[-1].tags == ["rain", "wind"]
    assert "11월 03일 14시 05분 (in progress)" in caplog.text
    assert "Duration:        2:05" in caplog.text


def test_transcription_error_is_not_fatal(make_recording, policy, fake_generator, caplog) -> None:
    caplog.set_level(logging.WARNING, logger="processing.pipeline")

    class BrokenTranscriber:
        async def transcribe(self, audio_handle: str, locale: str) -> str:
            raise TranscriptionError("recognizer unavailable")

    pipeline = _pipeline(
        policy, fake_generator(default="대화 소리"),
        classifier=FakeClassifier(_events("speech", 5)), transcriber=BrokenTranscriber(),
    )
    recording = make_recording()

    result = asyncio.run(pipeline.run(recording))

    assert result.transcribed is False
    assert S.TRANSCRIPT_SKIPPED in result.states
    assert recording.is_title_generated is True
    failures = [r for r in caplog.records if "recognizer unavailable" in r.getMessage()]
    assert [r.levelno for r in failures] == [logging.WARNING]


def test_unexpected_transcriber_error_is_logged_and_skipped(make_recording, policy, fake_generator, caplog) -> None:
    caplog.set_level(logging.WARNING, logger="processing.pipeline")

    class CrashingTranscriber:
        async def transcribe(self, audio_handle: str, locale: str) -> str:
            raise KeyError("engine")

    pipeline = _pipeline(
        policy, fake_generator(default="대화 소리"),
        classifier=FakeClassifier(_events("speech", 5)), transcriber=CrashingTranscriber(),
    )

    result = asyncio.run(pipeline.run(make_recording()))

    assert result.state == S.SAVED
    assert S.TRANSCRIPT_SKIPPED in result.states
    assert "Unexpected transcriber error" in caplog.text


def test_cancellation_during_transcription(make_recording, policy, fake_generator, caplog) -> None:
    caplog.set_level(logging.ERROR, logger="processing.pipeline")
    transcriber = FakeTranscriber(block=True)
    store = MemoryStore()
    generator = fake_generator(default="빗소리")
    pipeline = _pipeline(
        policy, generator,
        classifier=FakeClassifier(_events("speech", 5)), transcriber=transcriber, store=store,
    )
    recording = make_recording()

    async def scenario() -> None:
        task = asyncio.create_task(pipeline.run(recording))
        await transcriber.started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())

    assert transcriber.cancelled is True
    assert "failed at transcribe" in caplog.text
    assert len(store.saved) == 1
    assert generator.calls == []
    assert recording.is_title_generated is False


def test_enrichment_stages(make_recording, policy, fake_generator) -> None:
    geocoder = FakeGeocoder("경상북도 포항시 남구 효자동 123")
    pipeline = _pipeline(
        policy, fake_generator(default="빗소리"),
        music_matcher=FakeMusic(), geocoder=geocoder,
    )
    recording = make_recording(latitude=36.01, longitude=129.32)

    asyncio.run(pipeline.run(recording))

    assert geocoder.calls == [(36.01, 129.32)]
    assert recording.location == "경상북도 포항시 남구 효자동 123"
    assert recording.bgm_title == "Blue Night"
    assert recording.bgm_artist == "Lumen"
    assert recording.title == "빗소리, 포항 남구"


def test_geocoder_skipped_when_location_known(make_recording, policy, fake_generator) -> None:
    geocoder = FakeGeocoder("부산광역시 해운대구 우동")
    pipeline = _pipeline(policy, fake_generator(default="빗소리"), geocoder=geocoder)
    recording = make_recording(location="서울특별시 강남구", latitude=1.0, longitude=2.0)

    asyncio.run(pipeline.run(recording))

    assert geocoder.calls == []
    assert recording.title == "빗소리, 서울 강남구"


def test_enrichment_failures_are_not_fatal(make_recording, policy, fake_generator) -> None:
    geocoder = FakeGeocoder(error=RuntimeError("timeout"))
    pipeline = _pipeline(policy, fake_generator(default="빗소리"), geocoder=geocoder)
    recording = make_recording(latitude=1.0, longitude=2.0)

    result = asyncio.run(pipeline.run(recording))

    assert result.state == S.SAVED
    assert recording.location is None
    assert recording.title == "빗소리"


def test_persistence_failure_does_not_stop_run(make_recording, policy, fake_generator) -> None:
    pipeline = _pipeline(policy, fake_generator(default="빗소리"), store=MemoryStore(fail=True))
    recording = make_recording()

    result = asyncio.run(pipeline.run(recording))

    assert result.state == S.SAVED
    assert recording.is_title_generated is True


def test_finalized_recording_is_not_reprocessed(make_recording, policy, fake_generator) -> None:
    media = FakeMedia()
    pipeline = _pipeline(policy, fake_generator(default="빗소리"), media=media)
    recording = make_recording(title="이미 정한 제목", is_title_generated=True)

    result = asyncio.run(pipeline.run(recording))

    assert result.states == [S.IDLE]
    assert media.prepared == []
    assert recording.title == "이미 정한 제목"


def test_process_pending_runs_each_unfinalized_recording_once(make_recording, policy, fake_generator) -> None:
    media = FakeMedia()
    pipeline = _pipeline(policy, fake_generator(default="빗소리"), media=media)
    done = make_recording(title="끝", is_title_generated=True)
    first = make_recording()
    second = make_recording()
    duplicate = first.model_copy()

    results = asyncio.run(pipeline.process_pending([done, first, duplicate, second], concurrency=1))

    assert [r.recording_id for r in results] == [first.id, second.id]
    assert sorted(media.prepared) == sorted([first.id, second.id])
    assert all(r.state == S.SAVED for r in results)
    assert first.title == "빗소리"
