from __future__ import annotations

import asyncio
import base64
import json
import logging
from collections import defaultdict
from typing import Any
from uuid import uuid4

from fastapi import WebSocket

from coach_core.services.providers import AudioBackend, DoneCallback

logger = logging.getLogger(__name__)


class ConnectionManager:
    def __init__(self) -> None:
        self.connections: dict[str, set[WebSocket]] = defaultdict(set)

    async def connect(self, channel: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self.connections[channel].add(websocket)

    def disconnect(self, channel: str, websocket: WebSocket) -> None:
        if channel in self.connections:
            self.connections[channel].discard(websocket)
            if not self.connections[channel]:
                del self.connections[channel]

    async def broadcast(self, channel: str, event: str, payload: dict[str, Any]) -> None:
        if channel not in self.connections:
            return
        msg = json.dumps({"event": event, "payload": payload}, default=str)
        stale: list[WebSocket] = []
        for ws in list(self.connections[channel]):
            try:
                await ws.send_text(msg)
            except Exception:
                stale.append(ws)
        for ws in stale:
            self.disconnect(channel, ws)


class WebSocketAudioBackend(AudioBackend):
    """Plays cues on the browser clients of one session channel.

    ``cue_start`` carries the audio as base64, ``cue_stop`` tells clients to
    cut it. A client reports natural completion with a ``cue_finished``
    message, which is routed to ``finish``.
    """

    def __init__(self, manager: ConnectionManager, channel: str):
        self.manager = manager
        self.channel = channel
        self._pending: dict[str, DoneCallback] = {}
        self._tasks: set[asyncio.Task] = set()

    def start(self, audio: bytes, on_done: DoneCallback) -> str:
        token = uuid4().hex
        self._pending[token] = on_done
        self._send("cue_start", {"token": token, "audio": base64.b64encode(audio).decode("ascii")})
        return token

    def stop(self, token: Any) -> None:
        if self._pending.pop(token, None) is not None:
            self._send("cue_stop", {"token": token})

    def finish(self, token: str, error: str | None = None) -> bool:
        on_done = self._pending.pop(token, None)
        if on_done is None:
            return False
        on_done(RuntimeError(error) if error else None)
        return True

    @property
    def pending(self) -> int:
        return len(self._pending)

    def _send(self, event: str, payload: dict[str, Any]) -> None:
        task = asyncio.get_running_loop().create_task(self.manager.broadcast(self.channel, event, payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


manager = ConnectionManager()
