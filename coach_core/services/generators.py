"""HTTP clients for the text and speech services.

``ChatCompletionTextGenerator`` talks to an OpenAI-compatible chat
completions endpoint and ``HttpSpeechSynthesizer`` to an ElevenLabs-style
text-to-speech endpoint. Both use ``httpx.AsyncClient``; any transport or
HTTP error is raised as ``GenerationFailure`` so the cue fallback chain takes
over.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from coach_core.config import Settings
from coach_core.errors import GenerationFailure
from coach_core.services.cues import CueContext
from coach_core.services.prompts import build_prompt
from coach_core.services.providers import (
    CoachingTextGenerator,
    SpeechSynthesizer,
    UnavailableSynthesizer,
    UnavailableTextGenerator,
)

logger = logging.getLogger(__name__)

DEFAULT_TEXT_MODEL = "gpt-4o-mini"
DEFAULT_SPEECH_MODEL = "eleven_v3"

VOICE_SETTINGS = {
    "stability": 0.5,
    "similarity_boost": 0.75,
    "style": 0,
    "use_speaker_boost": False,
}


class ChatCompletionTextGenerator(CoachingTextGenerator):
    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        model: str = DEFAULT_TEXT_MODEL,
        *,
        max_tokens: int = 500,
        temperature: float = 1.0,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def generate(self, context: CueContext) -> str:
        body = {
            "model": self.model,
            "messages": [{"role": "user", "content": build_prompt(context)}],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(f"{self.base_url}/chat/completions", json=body, headers=self._headers())
                resp.raise_for_status()
                data: dict[str, Any] = resp.json()
        except httpx.HTTPError as exc:
            raise GenerationFailure("text", str(exc)) from exc
        except ValueError as exc:
            raise GenerationFailure("text", "invalid JSON response") from exc

        choices = data.get("choices") or []
        text = ((choices[0].get("message") or {}).get("content") if choices else None) or ""
        text = text.strip()
        if not text:
            raise GenerationFailure("text", "empty completion")
        logger.debug("Generated coaching text", extra={"ctx_category": context.category.value, "ctx_chars": len(text)})
        return text


class HttpSpeechSynthesizer(SpeechSynthesizer):
    def __init__(
        self,
        base_url: str,
        voice_id: str,
        api_key: str | None = None,
        model: str = DEFAULT_SPEECH_MODEL,
        *,
        output_format: str = "mp3_44100_128",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.voice_id = voice_id
        self.api_key = api_key
        self.model = model
        self.output_format = output_format
        self.timeout = timeout
        self._transport = transport

    async def synthesize(self, text: str) -> bytes:
        headers = {"Content-Type": "application/json", "Accept": "audio/mpeg"}
        if self.api_key:
            headers["xi-api-key"] = self.api_key
        body = {"text": text, "model_id": self.model, "voice_settings": VOICE_SETTINGS}
        url = f"{self.base_url}/v1/text-to-speech/{self.voice_id}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(url, json=body, headers=headers, params={"output_format": self.output_format})
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise GenerationFailure("speech", str(exc), partial_text=text) from exc
        if not resp.content:
            raise GenerationFailure("speech", "empty audio", partial_text=text)
        return resp.content


def text_generator_from_settings(settings: Settings) -> CoachingTextGenerator:
    if not settings.text_api_url:
        return UnavailableTextGenerator()
    return ChatCompletionTextGenerator(
        settings.text_api_url,
        settings.text_api_key,
        settings.text_model,
        timeout=settings.generation_timeout_seconds,
    )


def synthesizer_from_settings(settings: Settings) -> SpeechSynthesizer:
    if not (settings.speech_api_url and settings.speech_voice_id):
        return UnavailableSynthesizer()
    return HttpSpeechSynthesizer(
        settings.speech_api_url,
        settings.speech_voice_id,
        settings.speech_api_key,
        timeout=settings.generation_timeout_seconds,
    )
