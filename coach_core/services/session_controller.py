"""Session controller: the workout phase state machine.

GET_READY -> WORKOUT -> REST -> WORKOUT -> ... -> WORKOUT -> COMPLETE

The controller owns sequencing and phase transitions. It drives a
``PhaseTimer`` and, on every phase entry, tells the playback coordinator
what to say and the coaching cache what to prepare next. It never waits on
speech or text generation: all of that runs in background tasks.

One controller (with its own cache and coordinator) is built per session by
``build_session``.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Callable, Sequence

from coach_core.config import SessionTimings, Settings, get_settings
from coach_core.errors import InvariantViolation
from coach_core.logging_config import session_logger
from coach_core.services.coaching_cache import CoachingCache
from coach_core.services.completions import CompletionRecord, CompletionRecorder
from coach_core.services.cues import CueCategory, CueContext, CueKey, CueRequest, SpokenLine, ready_line
from coach_core.services.phase_timer import PhaseTimer
from coach_core.services.playback import AudioPlaybackCoordinator, CueDelivery
from coach_core.services.providers import (
    AmbientAudio,
    AudioBackend,
    ClipLibrary,
    CoachingTextGenerator,
    SpeechSynthesizer,
)
from coach_core.services.sequencing import Exercise, clamp_step, exercise_for_step, next_exercise, total_steps


class Phase(str, Enum):
    GET_READY = "get-ready"
    WORKOUT = "workout"
    REST = "rest"
    COMPLETE = "complete"


# Phase each cue category is spoken in; GENERAL follows the current phase.
_CUE_PHASE = {
    CueCategory.READY: Phase.GET_READY,
    CueCategory.INSTRUCTION: Phase.WORKOUT,
    CueCategory.MOTIVATION: Phase.WORKOUT,
    CueCategory.REST_ANNOUNCEMENT: Phase.REST,
}


@dataclass
class Session:
    """Mutable state of one running workout. Only the controller writes it."""

    id: str
    exercises: tuple[Exercise, ...]
    step: int = 0
    phase: Phase = Phase.GET_READY
    paused: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    worked_seconds: dict[int, int] = field(default_factory=dict)

    @property
    def total_steps(self) -> int:
        return total_steps(len(self.exercises))


@dataclass(frozen=True)
class SessionEvent:
    """State-transition notification delivered to subscribers.

    ``kind`` is one of ``started``, ``phase_changed``, ``tick``, ``paused``,
    ``resumed``, ``cue``, ``completed`` or ``closed``.
    """

    kind: str
    session_id: str
    phase: Phase | None
    step: int
    remaining: int
    exercise_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)


SessionListener = Callable[[SessionEvent], None]


@dataclass(frozen=True)
class _ScheduledCue:
    step: int
    fire_at_remaining: int
    cue: CueRequest


class SessionController:
    def __init__(
        self,
        exercises: Sequence[Exercise],
        coordinator: AudioPlaybackCoordinator,
        *,
        timings: SessionTimings | None = None,
        user_name: str = "Athlete",
        recorder: CompletionRecorder | None = None,
        timer: PhaseTimer | None = None,
        session_id: str | None = None,
        today: Callable[[], date] = date.today,
    ):
        if not exercises:
            raise ValueError("a workout needs at least one exercise")
        self.exercises = tuple(exercises)
        self.session_id = session_id or uuid.uuid4().hex
        self.log = session_logger(__name__, self.session_id, self._position)
        self.coordinator = coordinator
        self.cache: CoachingCache = coordinator.cache
        self.timings = timings or SessionTimings()
        self.user_name = user_name
        self.recorder = recorder
        self._today = today
        self.session: Session | None = None
        self.violations: list[InvariantViolation] = []
        self._scheduled: _ScheduledCue | None = None
        self._listeners: list[SessionListener] = []
        self._closed = False
        self._clock_task: asyncio.Task | None = None

        self.timer = timer or PhaseTimer()
        self.timer.on_tick(self._on_tick)
        self.timer.on_expired(self._on_expired)
        self.cache.set_relevance(self._is_relevant)
        self.coordinator.on_delivery(self._on_delivery)

    # -- read accessors --

    @property
    def phase(self) -> Phase | None:
        return self.session.phase if self.session else None

    @property
    def step(self) -> int:
        return self.session.step if self.session else 0

    @property
    def total_steps(self) -> int:
        return total_steps(len(self.exercises))

    @property
    def current_exercise(self) -> Exercise:
        return exercise_for_step(self.exercises, self.step)

    @property
    def next_exercise(self) -> Exercise | None:
        return next_exercise(self.exercises, self.step)

    @property
    def remaining(self) -> int:
        return self.timer.remaining() if self.session else 0

    @property
    def is_paused(self) -> bool:
        return bool(self.session and self.session.paused)

    @property
    def is_active(self) -> bool:
        return self.session is not None and not self._closed and self.session.phase is not Phase.COMPLETE

    @property
    def scheduled_cue_pending(self) -> bool:
        return self._scheduled is not None

    def snapshot(self) -> dict[str, Any]:
        current = self.current_exercise
        upcoming = self.next_exercise
        return {
            "session_id": self.session_id,
            "phase": self.phase.value if self.phase else None,
            "step": self.step,
            "total_steps": self.total_steps,
            "remaining": self.remaining,
            "paused": self.is_paused,
            "closed": self._closed,
            "exercise": {"id": current.id, "name": current.name, "media_ref": current.media_ref},
            "next_exercise": {"id": upcoming.id, "name": upcoming.name} if upcoming else None,
            "voice": self.coordinator.status(),
        }

    def _position(self) -> tuple[str, int] | None:
        session = self.session
        return (session.phase.value, session.step) if session else None

    # -- observers --

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, kind: str, **payload: Any) -> None:
        session = self.session
        event = SessionEvent(
            kind=kind,
            session_id=self.session_id,
            phase=session.phase if session else None,
            step=session.step if session else 0,
            remaining=self.timer.remaining() if session else 0,
            exercise_id=self.current_exercise.id if session else None,
            payload=payload,
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                self.log.exception("Session listener failed for %s event", kind)

    def _on_delivery(self, delivery: CueDelivery) -> None:
        if self.session is None or self._closed:
            return
        self._emit("cue", text=delivery.text, category=delivery.category.value, source=delivery.source)

    # -- control surface --

    async def prepare(self) -> bool:
        """Voice the get-ready line ahead of ``start()``.

        The line is deterministic, so its audio can be cached before the
        session begins and played the instant get-ready is entered. Returns
        True when the audio is ready.
        """
        if self._closed:
            return False
        line = self._ready_cue(0)
        return await self.cache.prepare_line(line.key, line.text)

    def start(self) -> bool:
        """Begin the workout with the get-ready phase."""
        if self.session is not None or self._closed:
            self.log.warning("start() ignored: session already started or closed")
            return False
        self.session = Session(id=self.session_id, exercises=self.exercises)
        self.log.info(
            "Session started",
            extra={"ctx_exercises": len(self.exercises), "ctx_steps": self.total_steps},
        )
        self._emit("started")
        self.coordinator.start_ambient()
        self._enter(Phase.GET_READY)
        return True

    def pause(self) -> bool:
        if not self.is_active or self.session.paused:
            return False
        self.session.paused = True
        self.timer.pause()
        self._cancel_scheduled()
        self.coordinator.stop()
        self.coordinator.pause_ambient()
        self.log.info("Session paused", extra={"ctx_remaining": self.timer.remaining()})
        self._emit("paused")
        return True

    def resume(self) -> bool:
        if not self.is_active or not self.session.paused:
            return False
        self.session.paused = False
        self.timer.resume()
        self.coordinator.resume_ambient()
        self.log.info("Session resumed", extra={"ctx_remaining": self.timer.remaining()})
        self._emit("resumed")
        return True

    def skip(self) -> bool:
        """End the current phase now ("Start now" / "Skip rest")."""
        if not self.is_active or self.session.paused:
            return False
        self.log.info("Skipping %s", self.session.phase.value)
        self.timer.expire()
        return True

    def tick(self) -> None:
        """Advance the session clock by one second."""
        self.timer.tick()

    def request_pep_talk(self) -> bool:
        """Ad-hoc encouragement, subject to the coordinator's spacing rule."""
        if not self.is_active or self.session.paused or self.session.phase is Phase.GET_READY:
            return False
        step = self.session.step
        self.coordinator.speak_adhoc(self._cue(CueCategory.GENERAL, step, self.timer.remaining()))
        return True

    def set_voice_enabled(self, enabled: bool) -> None:
        self.coordinator.set_enabled(enabled)

    def close(self) -> None:
        """Cancel scheduled cues, stop audio and release the session."""
        if self._closed:
            return
        self._closed = True
        self._cancel_scheduled()
        self.timer.stop()
        self.coordinator.stop()
        self.coordinator.pause_ambient()
        self.cache.clear()
        if self._clock_task is not None and not self._clock_task.done():
            self._clock_task.cancel()
        self.log.info("Session closed")
        self._emit("closed")
        self._listeners.clear()
        self.session = None

    async def aclose(self) -> None:
        self.close()
        await self.coordinator.close()
        await self.cache.drain()

    # -- clock --

    async def run(self, interval: float = 1.0) -> None:
        """Drive the timer in real time until the session completes or closes."""
        await self.timer.run(lambda: self.is_active, interval)

    def start_clock(self, interval: float = 1.0) -> asyncio.Task:
        self._clock_task = asyncio.get_running_loop().create_task(self.run(interval))
        return self._clock_task

    async def drain(self) -> None:
        """Wait for background generation and playback tasks (tests, shutdown)."""
        await self.cache.drain()
        await self.coordinator.drain()
        await self.cache.drain()

    # -- state machine --

    def _duration(self, phase: Phase) -> int:
        if phase is Phase.GET_READY:
            return self.timings.get_ready_seconds
        if phase is Phase.WORKOUT:
            return self.timings.work_seconds
        if phase is Phase.REST:
            return self.timings.rest_seconds
        return 0

    def _enter(self, phase: Phase) -> None:
        session = self.session
        self._cancel_scheduled()
        session.phase = phase
        duration = self._duration(phase)
        self.log.info(
            "Entering %s",
            phase.value,
            extra={"ctx_duration": duration},
        )
        self._emit(
            "phase_changed",
            duration=duration,
            exercise_name=self.current_exercise.name,
            next_exercise=self.next_exercise.name if self.next_exercise else None,
        )
        if phase is Phase.GET_READY:
            self._on_get_ready(session.step, duration)
        elif phase is Phase.WORKOUT:
            self._on_workout(session.step, duration)
        elif phase is Phase.REST:
            self._on_rest(session.step, duration)
        # Started last: a zero duration expires synchronously into the next phase.
        self.timer.start(duration)

    def _on_expired(self) -> None:
        session = self.session
        if session is None or self._closed:
            return
        if session.paused:
            self._violation("timer expired while paused")
            return
        if session.phase is Phase.GET_READY:
            self._enter(Phase.WORKOUT)
        elif session.phase is Phase.WORKOUT:
            if session.step >= session.total_steps - 1:
                self._complete()
            else:
                self._enter(Phase.REST)
        elif session.phase is Phase.REST:
            nxt = session.step + 1
            if nxt >= session.total_steps:
                self._violation(f"rest after final step {session.step}")
                self._complete()
                return
            session.step = clamp_step(nxt, len(self.exercises))
            self._enter(Phase.WORKOUT)
        else:
            self._violation("advance requested past COMPLETE")

    def _on_tick(self, remaining: int) -> None:
        session = self.session
        if session is None or self._closed:
            return
        if session.phase is Phase.WORKOUT:
            session.worked_seconds[session.step] = session.worked_seconds.get(session.step, 0) + 1
        scheduled = self._scheduled
        if (
            scheduled is not None
            and session.phase is Phase.WORKOUT
            and scheduled.step == session.step
            and remaining <= scheduled.fire_at_remaining
        ):
            self._scheduled = None
            self.log.debug("Firing scheduled motivation cue")
            self.coordinator.speak(scheduled.cue)
        self._emit("tick")

    def _complete(self) -> None:
        session = self.session
        self._cancel_scheduled()
        self.timer.stop()
        session.phase = Phase.COMPLETE
        records = [
            CompletionRecord(
                date=self._today(),
                exercise_id=exercise_for_step(self.exercises, i).id,
                actual_duration=session.worked_seconds.get(i, 0),
                step=i,
            )
            for i in range(session.total_steps)
        ]
        self.log.info("Session complete", extra={"ctx_steps": len(records)})
        if self.recorder is not None:
            try:
                self.recorder.record(self.session_id, records)
            except Exception:
                self.log.exception("Completion recorder failed")
        self._emit(
            "completed",
            records=[
                {"date": r.date.isoformat(), "exercise_id": r.exercise_id, "actual_duration": r.actual_duration}
                for r in records
            ],
        )
        self.coordinator.pause_ambient()
        self.cache.clear()

    def _violation(self, message: str) -> None:
        err = InvariantViolation(message)
        self.violations.append(err)
        self.log.error("Invariant violation: %s", err)

    def _cancel_scheduled(self) -> None:
        if self._scheduled is not None:
            self.log.debug("Cancelling scheduled cue for step %s", self._scheduled.step)
        self._scheduled = None

    # -- cue policy --

    def _context(self, category: CueCategory, step: int, time_remaining: int) -> CueContext:
        phase = _CUE_PHASE.get(category) or self.phase or Phase.GET_READY
        return CueContext(
            exercise_name=exercise_for_step(self.exercises, step).name,
            time_remaining=time_remaining,
            current_step=step,
            total_steps=self.total_steps,
            user_name=self.user_name,
            phase=phase.value,
            category=category,
        )

    def _cue(self, category: CueCategory, step: int, time_remaining: int) -> CueRequest:
        exercise = exercise_for_step(self.exercises, step)
        return CueRequest(CueKey(exercise.id, step, category), self._context(category, step, time_remaining))

    def _prepare(self, category: CueCategory, step: int, time_remaining: int) -> None:
        cue = self._cue(category, step, time_remaining)
        self.cache.schedule_pre_generation(cue.key, cue.context)

    def _prepare_workout(self, step: int) -> None:
        work = self.timings.work_seconds
        self._prepare(CueCategory.INSTRUCTION, step, work)
        self._prepare(CueCategory.MOTIVATION, step, self._motivation_remaining())

    def _motivation_remaining(self) -> int:
        return max(0, self.timings.work_seconds - self.timings.motivation_offset_seconds)

    def _ready_cue(self, step: int) -> SpokenLine:
        key = CueKey(exercise_for_step(self.exercises, step).id, step, CueCategory.READY)
        text = ready_line(self._context(CueCategory.READY, step, self.timings.get_ready_seconds))
        return SpokenLine(text, category=CueCategory.READY, key=key)

    def _on_get_ready(self, step: int, duration: int) -> None:
        self.coordinator.speak(self._ready_cue(step))
        self._prepare_workout(step)

    def _on_workout(self, step: int, duration: int) -> None:
        self.coordinator.speak(self._cue(CueCategory.INSTRUCTION, step, duration))
        offset = self.timings.motivation_offset_seconds
        if 0 < offset < duration:
            fire_at = duration - offset
            self._scheduled = _ScheduledCue(step, fire_at, self._cue(CueCategory.MOTIVATION, step, fire_at))
        if step < self.total_steps - 1:
            self._prepare(CueCategory.REST_ANNOUNCEMENT, step, self.timings.rest_seconds)

    def _on_rest(self, step: int, duration: int) -> None:
        self.coordinator.speak(self._cue(CueCategory.REST_ANNOUNCEMENT, step, duration))
        if step + 1 < self.total_steps:
            self._prepare_workout(step + 1)

    def _is_relevant(self, key: CueKey) -> bool:
        session = self.session
        if self._closed:
            return False
        if session is None:
            return True
        if session.phase is Phase.COMPLETE:
            return False
        return key.step >= session.step


def build_session(
    exercises: Sequence[Exercise],
    *,
    text_generator: CoachingTextGenerator,
    synthesizer: SpeechSynthesizer,
    backend: AudioBackend,
    ambient: AmbientAudio | None = None,
    recorder: CompletionRecorder | None = None,
    settings: Settings | None = None,
    user_name: str | None = None,
    session_id: str | None = None,
) -> SessionController:
    """Wire a cache, a coordinator and a controller for one workout session."""
    settings = settings or get_settings()
    cache = CoachingCache(
        text_generator,
        synthesizer,
        ttl_seconds=settings.cue_ttl_seconds,
        timeout_seconds=settings.generation_timeout_seconds,
    )
    coordinator = AudioPlaybackCoordinator(
        cache,
        backend,
        ambient=ambient,
        clips=ClipLibrary(settings.audio_dir) if settings.audio_dir else None,
        adhoc_spacing_seconds=settings.adhoc_cue_spacing_seconds,
        enabled=settings.voice_enabled,
    )
    return SessionController(
        exercises,
        coordinator,
        timings=SessionTimings.from_settings(settings),
        user_name=user_name or settings.user_name,
        recorder=recorder,
        session_id=session_id,
    )
