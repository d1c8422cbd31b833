"""Abstract interfaces for the services the coaching core talks to.

Concrete text, speech and audio-device implementations live outside the
core; each implements one of these interfaces so the cache and the playback
coordinator can treat them uniformly.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable

from coach_core.errors import GenerationFailure
from coach_core.services.cues import CueContext

logger = logging.getLogger(__name__)

DoneCallback = Callable[[Exception | None], None]


class CoachingTextGenerator(ABC):
    """Turns a coaching context into one spoken line of text."""

    @abstractmethod
    async def generate(self, context: CueContext) -> str:
        """Return the coaching line. May raise on timeout or service error."""


class SpeechSynthesizer(ABC):
    """Turns text into encoded audio bytes."""

    @abstractmethod
    async def synthesize(self, text: str) -> bytes:
        """Return audio for ``text``. May raise on timeout or service error."""


class AudioBackend(ABC):
    """Device that renders audio. At most one cue is started at a time."""

    @abstractmethod
    def start(self, audio: bytes, on_done: DoneCallback) -> Any:
        """Begin playback and return a backend token.

        ``on_done(None)`` is called on natural completion and
        ``on_done(error)`` on a decode or stream error. Raising here means
        the cue could not be started at all.
        """

    @abstractmethod
    def stop(self, token: Any) -> None:
        """Stop the playback identified by ``token``."""


class AmbientAudio(ABC):
    """Background music that is stopped on pause and restarted on resume."""

    @abstractmethod
    def start(self) -> None: ...

    @abstractmethod
    def stop(self) -> None: ...


class UnavailableTextGenerator(CoachingTextGenerator):
    """Used when no text service is configured; always falls back."""

    async def generate(self, context: CueContext) -> str:
        raise GenerationFailure("text", "no text generator configured")


class UnavailableSynthesizer(SpeechSynthesizer):
    """Used when no speech service is configured; cues stay text-only."""

    async def synthesize(self, text: str) -> bytes:
        raise GenerationFailure("speech", "no speech synthesizer configured")


class NullAmbientAudio(AmbientAudio):
    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass


class ClipLibrary:
    """Pre-recorded clips loaded from ``<audio_dir>/<name>.mp3``.

    A ``voice`` sub-directory is preferred when present, falling back to the
    root directory.
    """

    def __init__(self, audio_dir: str | Path | None, voice: str | None = None):
        self.audio_dir = Path(audio_dir) if audio_dir else None
        self.voice = voice

    def _clip_path(self, name: str) -> Path | None:
        if self.audio_dir is None:
            return None
        filename = f"{name}.mp3"
        if self.voice:
            voice_path = self.audio_dir / self.voice / filename
            if voice_path.exists():
                return voice_path
        root_path = self.audio_dir / filename
        if root_path.exists():
            return root_path
        return None

    def load(self, name: str) -> bytes | None:
        path = self._clip_path(name)
        if path is None:
            return None
        try:
            return path.read_bytes()
        except OSError:
            logger.warning("Could not read audio clip %s", path, exc_info=True)
            return None
