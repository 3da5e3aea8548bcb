from __future__ import annotations

import asyncio
import wave
from pathlib import Path

import pytest

from processing.errors import MediaError
from processing.media import SoundfileMediaPreparer, read_audio_info


def _write_tone(path: Path, frames: int = 800) -> Path:
    with wave.open(str(path), "wb") as w:
        w.setnchannels(1)
        w.setsampwidth(2)
        w.setframerate(8000)
        w.writeframes(b"\x00\x10" * frames)
    return path


def test_reads_wav_header(tmp_path: Path) -> None:
    info = read_audio_info(_write_tone(tmp_path / "tone.wav"))

    assert info.channels == 1
    assert info.samplerate == 8000
    assert info.frames == 800


def test_missing_file_is_media_error(tmp_path: Path) -> None:
    with pytest.raises(MediaError, match="not found"):
        read_audio_info(tmp_path / "absent.wav")


def test_rejects_non_audio(tmp_path: Path) -> None:
    path = tmp_path / "notes.wav"
    path.write_text("definitely not audio", encoding="utf-8")

    with pytest.raises(MediaError):
        read_audio_info(path)


def test_prepare_returns_audio_handle(tmp_path: Path, make_recording) -> None:
    path = _write_tone(tmp_path / "tone.wav")
    recording = make_recording(file_path=str(path))

    assert asyncio.run(SoundfileMediaPreparer().prepare(recording)) == str(path)
