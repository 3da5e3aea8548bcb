"""Shared fakes and fixtures for the Audiolog test suite."""

from __future__ import annotations

from typing import Any, Iterable

import pytest

from processing.models import RecordingMetadata
from titling.policy import TitlePolicy, default_policy


class FakeGenerator:
    """Scripted TextGenerator: returns (or raises) queued items in order."""

    def __init__(self, responses: Iterable[Any] = (), default: str = "") -> None:
        self.responses = list(responses)
        self.default = default
        self.calls: list[dict[str, Any]] = []

    async def generate(self, instructions: str, prompt: str, temperature: float) -> str:
        self.calls.append(
            {"instructions": instructions, "prompt": prompt, "temperature": temperature}
        )
        item = self.responses.pop(0) if self.responses else self.default
        if isinstance(item, BaseException):
            raise item
        return item


@pytest.fixture
def policy() -> TitlePolicy:
    return default_policy()


@pytest.fixture
def fake_generator():
    return FakeGenerator


@pytest.fixture
def make_recording():
    def _make(**overrides: Any) -> RecordingMetadata:
        fields: dict[str, Any] = {"file_path": "/tmp/rec.wav", "duration": 42.0}
        fields.update(overrides)
        return RecordingMetadata(**fields)

    return _make
