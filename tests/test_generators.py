"""Tests for the HTTP text and speech clients."""

from __future__ import annotations

import json

import httpx
import pytest

from coach_core.config import Settings
from coach_core.errors import GenerationFailure
from coach_core.services.cues import CueCategory
from coach_core.services.generators import (
    ChatCompletionTextGenerator,
    HttpSpeechSynthesizer,
    synthesizer_from_settings,
    text_generator_from_settings,
)
from coach_core.services.providers import UnavailableSynthesizer, UnavailableTextGenerator
from tests.fakes import make_context


@pytest.mark.asyncio
async def test_chat_completion_returns_trimmed_text():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"choices": [{"message": {"content": "  Knees up, Dana!  "}}]})

    generator = ChatCompletionTextGenerator(
        "https://llm.test/v1/", api_key="k", transport=httpx.MockTransport(handler)
    )
    text = await generator.generate(make_context(CueCategory.MOTIVATION))

    assert text == "Knees up, Dana!"
    request = seen[0]
    assert str(request.url) == "https://llm.test/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer k"
    body = json.loads(request.content)
    assert body["model"] == "gpt-4o-mini"
    assert "Jumping Jacks" in body["messages"][0]["content"]


@pytest.mark.asyncio
async def test_chat_completion_http_error_is_generation_failure():
    generator = ChatCompletionTextGenerator(
        "https://llm.test/v1", transport=httpx.MockTransport(lambda r: httpx.Response(503))
    )
    with pytest.raises(GenerationFailure) as exc:
        await generator.generate(make_context())
    assert exc.value.stage == "text"


@pytest.mark.asyncio
async def test_chat_completion_empty_choices_is_failure():
    generator = ChatCompletionTextGenerator(
        "https://llm.test/v1", transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"choices": []}))
    )
    with pytest.raises(GenerationFailure):
        await generator.generate(make_context())


@pytest.mark.asyncio
async def test_speech_returns_audio_bytes():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=b"ID3audio")

    synth = HttpSpeechSynthesizer("https://tts.test", "voice-1", api_key="xi", transport=httpx.MockTransport(handler))
    audio = await synth.synthesize("Rest now")

    assert audio == b"ID3audio"
    request = seen[0]
    assert request.url.path == "/v1/text-to-speech/voice-1"
    assert request.url.params["output_format"] == "mp3_44100_128"
    assert request.headers["xi-api-key"] == "xi"
    assert json.loads(request.content)["text"] == "Rest now"


@pytest.mark.asyncio
async def test_speech_error_keeps_text():
    synth = HttpSpeechSynthesizer(
        "https://tts.test", "voice-1", transport=httpx.MockTransport(lambda r: httpx.Response(500))
    )
    with pytest.raises(GenerationFailure) as exc:
        await synth.synthesize("Rest now")
    assert exc.value.stage == "speech"
    assert exc.value.partial_text == "Rest now"


def test_factories_fall_back_when_unconfigured():
    settings = Settings()
    assert isinstance(text_generator_from_settings(settings), UnavailableTextGenerator)
    assert isinstance(synthesizer_from_settings(settings), UnavailableSynthesizer)


def test_factories_build_http_clients():
    settings = Settings(text_api_url="https://llm.test/v1", speech_api_url="https://tts.test", speech_voice_id="v")
    assert isinstance(text_generator_from_settings(settings), ChatCompletionTextGenerator)
    assert isinstance(synthesizer_from_settings(settings), HttpSpeechSynthesizer)
