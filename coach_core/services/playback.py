"""Single-voice playback coordination.

The coordinator owns the one ``PlaybackHandle`` that may be speaking. Every
new cue stops the previous one before it starts (preemption, never
queueing), and the most recently triggered cue wins even when an older one
finishes resolving later. Playback errors release the handle and are logged;
they are never raised to the caller so the workout keeps running.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from coach_core.errors import PlaybackFailure
from coach_core.services.coaching_cache import CoachingCache
from coach_core.services.cues import Cue, CueCategory, CueKey, CueRequest, ResolvedCue, SpokenLine
from coach_core.services.providers import AmbientAudio, AudioBackend, ClipLibrary, NullAmbientAudio

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CueDelivery:
    """Published to delivery listeners whenever a cue is about to be spoken."""

    text: str
    category: CueCategory
    source: str
    key: CueKey | None = None
    handle_id: int | None = None
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


DeliveryListener = Callable[[CueDelivery], None]


class PlaybackHandle:
    """One started cue on the audio backend."""

    def __init__(self, handle_id: int, cue: ResolvedCue, backend: AudioBackend):
        self.id = handle_id
        self.cue = cue
        self.token: Any = None
        self.active = True
        self._backend = backend

    def stop(self) -> None:
        if not self.active:
            return
        self.active = False
        try:
            self._backend.stop(self.token)
        except Exception:
            logger.warning("Audio backend failed to stop handle %s", self.id, exc_info=True)

    def __repr__(self) -> str:
        return f"PlaybackHandle(id={self.id}, active={self.active}, text={self.cue.text!r})"


class AudioPlaybackCoordinator:
    def __init__(
        self,
        cache: CoachingCache,
        backend: AudioBackend,
        *,
        ambient: AmbientAudio | None = None,
        clips: ClipLibrary | None = None,
        adhoc_spacing_seconds: float = 8.0,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cache = cache
        self.backend = backend
        self.ambient = ambient or NullAmbientAudio()
        self.clips = clips
        self.adhoc_spacing = adhoc_spacing_seconds
        self.enabled = enabled
        self._clock = clock
        self._handle: PlaybackHandle | None = None
        self._ids = itertools.count(1)
        self._ticket = 0
        self._last_adhoc_at: float | None = None
        self._last_error: str | None = None
        self._listeners: list[DeliveryListener] = []
        self._tasks: set[asyncio.Task] = set()

    # -- observers --

    def on_delivery(self, listener: DeliveryListener) -> None:
        self._listeners.append(listener)

    def _emit(self, delivery: CueDelivery) -> None:
        for listener in list(self._listeners):
            try:
                listener(delivery)
            except Exception:
                logger.exception("Cue delivery listener failed")

    # -- playback --

    @property
    def current(self) -> PlaybackHandle | None:
        return self._handle

    async def play_immediate(self, cue: Cue) -> PlaybackHandle | None:
        """Resolve ``cue`` and speak it, preempting whatever is playing.

        Returns the new handle, or None when the cue was superseded by a
        newer trigger, was silent, or could not be started.
        """
        if not self.enabled:
            return None
        self._ticket += 1
        ticket = self._ticket
        try:
            resolved = await self._resolve(cue)
        except Exception:
            logger.exception("Cue resolution failed")
            return None
        if ticket != self._ticket:
            logger.debug("Cue superseded before playback: %r", resolved.text)
            return None
        return self._start(resolved)

    async def play_adhoc(self, cue: Cue) -> bool:
        """Speak a cue unless another ad-hoc cue was delivered too recently.

        Nothing is spoken, and the spacing window is left untouched, while
        voice is disabled.
        """
        if not self.enabled:
            return False
        now = self._clock()
        if self._last_adhoc_at is not None and now - self._last_adhoc_at < self.adhoc_spacing:
            logger.debug("Ad-hoc cue suppressed by spacing rule")
            return False
        self._last_adhoc_at = now
        await self.play_immediate(cue)
        return True

    def speak(self, cue: Cue) -> asyncio.Task:
        """Fire-and-forget ``play_immediate`` for callers that must not wait."""
        return self._spawn(self.play_immediate(cue))

    def speak_adhoc(self, cue: Cue) -> asyncio.Task:
        return self._spawn(self.play_adhoc(cue))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _resolve(self, cue: Cue) -> ResolvedCue:
        if isinstance(cue, CueRequest):
            return await self.cache.resolve(cue.key, cue.context)
        if isinstance(cue, SpokenLine):
            if cue.audio:
                return ResolvedCue(cue.text, cue.audio, "line", cue.category)
            if cue.key is not None:
                cached = self.cache.consume(cue.key)
                if cached is not None:
                    return ResolvedCue(cached.text, cached.audio, "cache", cue.category, cue.key)
            clip = self.clips.load(cue.category.value) if self.clips else None
            if clip:
                return ResolvedCue(cue.text, clip, "clip", cue.category)
            audio = await self.cache.voice(cue.text)
            return ResolvedCue(cue.text, audio, "line" if audio else "silent", cue.category)
        raise TypeError(f"unsupported cue type: {type(cue).__name__}")

    def _start(self, resolved: ResolvedCue) -> PlaybackHandle | None:
        self._stop_current()
        if resolved.audio is None:
            self._emit(CueDelivery(resolved.text, resolved.category, "silent", resolved.key))
            logger.info("Silent cue: %r", resolved.text)
            return None

        handle = PlaybackHandle(next(self._ids), resolved, self.backend)
        self._handle = handle
        self._emit(CueDelivery(resolved.text, resolved.category, resolved.source, resolved.key, handle.id))
        self._last_error = None
        try:
            handle.token = self.backend.start(resolved.audio, lambda error: self._on_done(handle, error))
        except Exception as exc:
            self._fail(handle, PlaybackFailure(str(exc)))
            return None
        logger.info(
            "Speaking cue",
            extra={"ctx_handle": handle.id, "ctx_source": resolved.source, "ctx_category": resolved.category.value},
        )
        return handle if handle.active else None

    def _on_done(self, handle: PlaybackHandle, error: Exception | None) -> None:
        if error is not None:
            self._fail(handle, PlaybackFailure(str(error)))
            return
        handle.active = False
        if self._handle is handle:
            self._handle = None
        logger.debug("Cue finished", extra={"ctx_handle": handle.id})

    def _fail(self, handle: PlaybackHandle, failure: PlaybackFailure) -> None:
        handle.active = False
        if self._handle is handle:
            self._handle = None
        self._last_error = str(failure)
        logger.warning("Playback failed for handle %s: %s", handle.id, failure)

    def _stop_current(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            logger.debug("Preempting handle %s", handle.id)
            handle.stop()

    def stop(self) -> None:
        """Stop the active cue and drop cues still being resolved."""
        self._ticket += 1
        self._stop_current()

    # -- ambient audio --

    def start_ambient(self) -> None:
        try:
            self.ambient.start()
        except Exception:
            logger.warning("Ambient audio failed to start", exc_info=True)

    def pause_ambient(self) -> None:
        try:
            self.ambient.stop()
        except Exception:
            logger.warning("Ambient audio failed to stop", exc_info=True)

    resume_ambient = start_ambient

    # -- control --

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = enabled
        if not enabled:
            self.stop()
        logger.info("Voice coach %s", "enabled" if enabled else "disabled")

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        self.stop()
        self.pause_ambient()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def status(self) -> dict:
        handle = self._handle
        if handle is not None:
            audio_status = "playing"
        elif self._last_error:
            audio_status = "error"
        else:
            audio_status = "idle"
        return {
            "enabled": self.enabled,
            "audio_status": audio_status,
            "current_text": handle.cue.text if handle else None,
            "last_error": self._last_error,
            "cache": self.cache.stats(),
        }
