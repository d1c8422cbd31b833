"""Pre-generation cache for spoken coaching cues.

One ``CachedCue`` (text plus audio) is kept per ``CueKey``. Generation runs
in background asyncio tasks so the session clock never waits on the text or
speech services, and a key that is already being generated is never
generated a second time concurrently: later requests either no-op
(pre-generation) or wait for the running one (delivery).
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import asdict, dataclass
from typing import Awaitable, Callable

from coach_core.errors import GenerationFailure
from coach_core.services.cues import CachedCue, CueContext, CueKey, ResolvedCue, static_phrase
from coach_core.services.providers import CoachingTextGenerator, SpeechSynthesizer

logger = logging.getLogger(__name__)

RelevancePredicate = Callable[[CueKey], bool]


@dataclass
class CacheCounter:
    hits: int = 0
    misses: int = 0
    generations: int = 0
    failures: int = 0
    discarded: int = 0


def _always_relevant(key: CueKey) -> bool:
    return True


class CoachingCache:
    def __init__(
        self,
        text_generator: CoachingTextGenerator,
        synthesizer: SpeechSynthesizer,
        *,
        ttl_seconds: float = 900,
        timeout_seconds: float = 8.0,
        is_relevant: RelevancePredicate | None = None,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ):
        self.text_generator = text_generator
        self.synthesizer = synthesizer
        self.ttl = ttl_seconds
        self.timeout = timeout_seconds
        self._is_relevant = is_relevant or _always_relevant
        self._clock = clock
        self._rng = rng or random.Random()
        self._store: dict[CueKey, tuple[float, CachedCue]] = {}
        self._in_flight: dict[CueKey, asyncio.Future] = {}
        self._tasks: set[asyncio.Task] = set()
        self.counter = CacheCounter()

    def set_relevance(self, predicate: RelevancePredicate) -> None:
        self._is_relevant = predicate

    # -- reads --

    def _fresh(self, key: CueKey) -> CachedCue | None:
        item = self._store.get(key)
        if not item:
            return None
        ts, cue = item
        if self._clock() - ts > self.ttl:
            self._store.pop(key, None)
            return None
        return cue

    def consume(self, key: CueKey) -> CachedCue | None:
        """Return the cached cue without removing it, so it can be replayed."""
        cue = self._fresh(key)
        if cue is None:
            self.counter.misses += 1
        else:
            self.counter.hits += 1
        return cue

    def is_cached(self, key: CueKey) -> bool:
        return self._fresh(key) is not None

    def is_in_flight(self, key: CueKey) -> bool:
        return key in self._in_flight

    # -- generation --

    async def _produce(self, context: CueContext) -> CachedCue:
        """Run text then speech generation, each bounded by the timeout."""
        try:
            text = await asyncio.wait_for(self.text_generator.generate(context), self.timeout)
        except GenerationFailure:
            raise
        except Exception as exc:
            raise GenerationFailure("text", repr(exc)) from exc
        text = (text or "").strip()
        if not text:
            raise GenerationFailure("text", "empty response")
        return await self._speak(text)

    async def _speak(self, text: str) -> CachedCue:
        try:
            audio = await asyncio.wait_for(self.synthesizer.synthesize(text), self.timeout)
        except Exception as exc:
            raise GenerationFailure("speech", repr(exc), partial_text=text) from exc
        if not audio:
            raise GenerationFailure("speech", "empty audio", partial_text=text)
        return CachedCue(text=text, audio=audio)

    async def _generate_into(self, key: CueKey, produce: Awaitable[CachedCue]) -> CachedCue:
        """Await ``produce`` for ``key`` while holding its in-flight marker."""
        done: asyncio.Future = asyncio.get_running_loop().create_future()
        self._in_flight[key] = done
        self.counter.generations += 1
        try:
            cue = await produce
        except GenerationFailure:
            self.counter.failures += 1
            raise
        else:
            if self._is_relevant(key):
                self._store[key] = (self._clock(), cue)
            else:
                self.counter.discarded += 1
                logger.debug("Discarding stale cue %s", key)
            return cue
        finally:
            self._in_flight.pop(key, None)
            if not done.done():
                done.set_result(None)

    async def request_pre_generation(self, key: CueKey, context: CueContext) -> bool:
        """Generate and cache ``key`` unless it is already cached or in flight.

        Returns True when a new cue was stored. Failures leave no entry.
        """
        if self.is_cached(key) or key in self._in_flight:
            logger.debug("Pre-generation skipped for %s", key)
            return False
        try:
            await self._generate_into(key, self._produce(context))
        except GenerationFailure as exc:
            logger.warning("Pre-generation failed for %s: %s", key, exc)
            return False
        return self.is_cached(key)

    async def prepare_line(self, key: CueKey, text: str) -> bool:
        """Voice a fixed line ahead of time and cache it under ``key``.

        A preparation already running for ``key`` is awaited rather than
        repeated. Returns True when the line is cached afterwards.
        """
        if self.is_cached(key):
            return True
        pending = self._in_flight.get(key)
        if pending is not None:
            try:
                await asyncio.wait_for(asyncio.shield(pending), self.timeout)
            except asyncio.TimeoutError:
                logger.warning("Timed out waiting for line %s", key)
            return self.is_cached(key)
        try:
            await self._generate_into(key, self._speak(text))
        except GenerationFailure as exc:
            logger.warning("Could not prepare line %s: %s", key, exc)
            return False
        return self.is_cached(key)

    def schedule_pre_generation(self, key: CueKey, context: CueContext) -> asyncio.Task | None:
        """Fire-and-forget variant of ``request_pre_generation``."""
        if self.is_cached(key) or key in self._in_flight:
            return None
        task = asyncio.get_running_loop().create_task(self.request_pre_generation(key, context))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def voice(self, text: str) -> bytes | None:
        """Synthesize ``text`` directly, returning None on failure."""
        try:
            audio = await asyncio.wait_for(self.synthesizer.synthesize(text), self.timeout)
        except Exception as exc:
            logger.warning("Could not voice line: %r", exc)
            return None
        return audio or None

    async def resolve(self, key: CueKey, context: CueContext) -> ResolvedCue:
        """Cache hit, else synchronous generation, else a static phrase.

        The returned text never contains an unsubstituted placeholder. When
        not even the static phrase can be voiced the cue is silent.
        """
        cached = self.consume(key)
        if cached is None and key in self._in_flight:
            try:
                await asyncio.wait_for(asyncio.shield(self._in_flight[key]), self.timeout)
            except asyncio.TimeoutError:
                logger.warning("Timed out waiting for in-flight cue %s", key)
            cached = self._fresh(key)
            if cached is None:
                return await self._static(key, context)
        if cached is not None:
            return ResolvedCue(cached.text, cached.audio, "cache", key.category, key)

        try:
            cue = await self._generate_into(key, self._produce(context))
        except GenerationFailure as exc:
            logger.warning("Synchronous generation failed for %s: %s", key, exc)
            if exc.partial_text:
                return ResolvedCue(exc.partial_text, None, "silent", key.category, key)
            return await self._static(key, context)
        return ResolvedCue(cue.text, cue.audio, "generated", key.category, key)

    async def _static(self, key: CueKey, context: CueContext) -> ResolvedCue:
        text = static_phrase(context, self._rng)
        audio = await self.voice(text)
        return ResolvedCue(text, audio, "static" if audio else "silent", key.category, key)

    # -- lifecycle --

    async def drain(self) -> None:
        """Wait for every background generation currently running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def clear(self) -> None:
        """Drop all entries. Running generations finish but are not stored."""
        self._store.clear()
        self._is_relevant = lambda key: False

    def stats(self) -> dict:
        return {
            **asdict(self.counter),
            "entries": len(self._store),
            "in_flight": len(self._in_flight),
        }
