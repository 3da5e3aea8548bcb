from __future__ import annotations

import asyncio
from types import SimpleNamespace

import anthropic
import httpx
import pytest

from titling.anthropic_generator import MAX_RETRIES, AnthropicTextGenerator
from titling.errors import GenerationError, UnsupportedLanguageError

REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


class FakeMessages:
    def __init__(self, outcomes) -> None:
        self.outcomes = list(outcomes)
        self.kwargs: list[dict] = []

    async def create(self, **kwargs):
        self.kwargs.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return SimpleNamespace(content=[
            SimpleNamespace(type="text", text=outcome),
        ])


def _generator(outcomes) -> tuple[AnthropicTextGenerator, FakeMessages]:
    messages = FakeMessages(outcomes)
    client = SimpleNamespace(messages=messages)
    return AnthropicTextGenerator(client=client, model="test-model", backoff_seconds=0), messages


def _status_error(cls, status: int, message: str):
    return cls(message, response=httpx.Response(status, request=REQUEST), body=None)


def test_returns_text_and_passes_parameters() -> None:
    generator, messages = _generator(["빗소리"])

    text = asyncio.run(generator.generate("지침", "프롬프트", 0.35))

    assert text == "빗소리"
    call = messages.kwargs[0]
    assert call["model"] == "test-model"
    assert call["system"] == "지침"
    assert call["temperature"] == 0.35
    assert call["messages"] == [{"role": "user", "content": "프롬프트"}]


def test_transient_errors_are_retried() -> None:
    generator, messages = _generator([
        anthropic.APIConnectionError(request=REQUEST),
        _status_error(anthropic.RateLimitError, 429, "slow down"),
        "파도 소리",
    ])

    assert asyncio.run(generator.generate("i", "p", 0.35)) == "파도 소리"
    assert len(messages.kwargs) == 3


def test_gives_up_after_max_retries() -> None:
    generator, messages = _generator(
        [anthropic.APITimeoutError(request=REQUEST)] * MAX_RETRIES
    )

    with pytest.raises(GenerationError):
        asyncio.run(generator.generate("i", "p", 0.35))
    assert len(messages.kwargs) == MAX_RETRIES


def test_language_rejection_maps_to_unsupported_language() -> None:
    generator, _ = _generator([
        _status_error(anthropic.BadRequestError, 400, "Unsupported language in prompt"),
    ])

    with pytest.raises(UnsupportedLanguageError):
        asyncio.run(generator.generate("i", "p", 0.35))


def test_other_api_errors_are_not_retried() -> None:
    generator, messages = _generator([
        _status_error(anthropic.InternalServerError, 500, "boom"),
    ])

    with pytest.raises(GenerationError) as excinfo:
        asyncio.run(generator.generate("i", "p", 0.35))
    assert not isinstance(excinfo.value, UnsupportedLanguageError)
    assert len(messages.kwargs) == 1


def test_missing_api_key(monkeypatch) -> None:
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    with pytest.raises(ValueError):
        AnthropicTextGenerator()
