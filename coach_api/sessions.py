"""In-process registry of live workout sessions.

Each session gets its own controller, cache and coordinator, and a
``WebSocketAudioBackend`` bound to the session's websocket channel. Session
events are forwarded to that channel and lifecycle events to webhooks.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence
from uuid import uuid4

from coach_api.realtime import ConnectionManager, WebSocketAudioBackend
from coach_api.webhooks import dispatch_event
from coach_core.config import Settings, get_settings
from coach_core.services.completions import CompletionRecorder
from coach_core.services.providers import CoachingTextGenerator, SpeechSynthesizer
from coach_core.services.sequencing import Exercise
from coach_core.services.session_controller import SessionController, SessionEvent, build_session

logger = logging.getLogger(__name__)

_WEBHOOK_EVENTS = {"started": "session.started", "completed": "session.completed", "closed": "session.closed"}


def event_payload(event: SessionEvent) -> dict[str, Any]:
    return {
        "session_id": event.session_id,
        "phase": event.phase.value if event.phase else None,
        "step": event.step,
        "remaining": event.remaining,
        "exercise_id": event.exercise_id,
        **event.payload,
    }


class SessionRegistry:
    def __init__(
        self,
        *,
        text_generator: CoachingTextGenerator,
        synthesizer: SpeechSynthesizer,
        recorder: CompletionRecorder | None,
        connections: ConnectionManager,
        settings: Settings | None = None,
        tick_seconds: float = 1.0,
    ):
        self.text_generator = text_generator
        self.synthesizer = synthesizer
        self.recorder = recorder
        self.connections = connections
        self.settings = settings or get_settings()
        self.tick_seconds = tick_seconds
        self._sessions: dict[str, SessionController] = {}
        self._backends: dict[str, WebSocketAudioBackend] = {}
        self._reapers: dict[str, asyncio.Task] = {}
        self._tasks: set[asyncio.Task] = set()

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self, exercises: Sequence[Exercise], user_name: str | None = None) -> SessionController:
        session_id = uuid4().hex
        backend = WebSocketAudioBackend(self.connections, channel=session_id)
        controller = build_session(
            exercises,
            text_generator=self.text_generator,
            synthesizer=self.synthesizer,
            backend=backend,
            recorder=self.recorder,
            settings=self.settings,
            user_name=user_name,
            session_id=session_id,
        )
        self._sessions[controller.session_id] = controller
        self._backends[controller.session_id] = backend
        controller.subscribe(self._forward)
        self._spawn(controller.prepare())
        logger.info("Session created", extra={"ctx_session": controller.session_id, "ctx_exercises": len(exercises)})
        return controller

    def get(self, session_id: str) -> SessionController | None:
        return self._sessions.get(session_id)

    def backend(self, session_id: str) -> WebSocketAudioBackend | None:
        return self._backends.get(session_id)

    async def start(self, session_id: str) -> bool:
        """Start once the get-ready line is voiced, so it plays without delay."""
        controller = self._sessions[session_id]
        if controller.phase is not None:
            return False
        await controller.prepare()
        if not controller.start():
            return False
        if self.tick_seconds > 0:
            controller.start_clock(self.tick_seconds)
        return True

    async def close(self, session_id: str) -> bool:
        reaper = self._reapers.pop(session_id, None)
        if reaper is not None and reaper is not asyncio.current_task():
            reaper.cancel()
        controller = self._sessions.pop(session_id, None)
        self._backends.pop(session_id, None)
        if controller is None:
            return False
        await controller.aclose()
        return True

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            await self.close(session_id)
        await self.drain()

    async def drain(self) -> None:
        """Wait for forwarded events, webhooks and pending reaps."""
        while self._tasks or self._reapers:
            await asyncio.gather(*list(self._tasks), *list(self._reapers.values()), return_exceptions=True)

    def _forward(self, event: SessionEvent) -> None:
        payload = event_payload(event)
        self._spawn(self.connections.broadcast(event.session_id, event.kind, payload))
        hook_event = _WEBHOOK_EVENTS.get(event.kind)
        if hook_event:
            self._spawn(dispatch_event(hook_event, payload))
        if event.kind == "completed":
            self._schedule_reap(event.session_id)

    def _schedule_reap(self, session_id: str) -> None:
        if session_id in self._reapers:
            return
        task = asyncio.get_running_loop().create_task(self._reap(session_id))
        self._reapers[session_id] = task

    async def _reap(self, session_id: str) -> None:
        await asyncio.sleep(self.settings.completed_session_retention_seconds)
        logger.info("Releasing completed session", extra={"ctx_session": session_id})
        await self.close(session_id)

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
