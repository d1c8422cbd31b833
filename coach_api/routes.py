from __future__ import annotations

import json
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request, WebSocket, WebSocketDisconnect, status

from coach_api.schemas import (
    CompletionOut,
    MessageOut,
    SessionCreate,
    SessionOut,
    VoiceToggle,
    WebhookOut,
    WebhookRegister,
)
from coach_api.sessions import SessionRegistry
from coach_api.webhooks import list_webhooks, register_webhook, unregister_webhook
from coach_core.services.session_controller import SessionController

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1")


def _registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def _controller(request: Request, session_id: str) -> SessionController:
    controller = _registry(request).get(session_id)
    if controller is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return controller


def _conflict(action: str, controller: SessionController) -> HTTPException:
    phase = controller.phase.value if controller.phase else "not-started"
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Cannot {action} session in phase {phase}")


@router.get("/health", tags=["meta"])
def health(request: Request):
    return {"status": "ok", "sessions": len(_registry(request))}


@router.post("/sessions", response_model=SessionOut, status_code=201, tags=["sessions"])
async def create_session(body: SessionCreate, request: Request):
    controller = _registry(request).create([e.to_exercise() for e in body.exercises], user_name=body.user_name)
    return controller.snapshot()


@router.get("/sessions/{session_id}", response_model=SessionOut, tags=["sessions"])
async def get_session(session_id: str, request: Request):
    return _controller(request, session_id).snapshot()


@router.post("/sessions/{session_id}/start", response_model=SessionOut, tags=["sessions"])
async def start_session(session_id: str, request: Request):
    controller = _controller(request, session_id)
    if not await _registry(request).start(session_id):
        raise _conflict("start", controller)
    return controller.snapshot()


@router.post("/sessions/{session_id}/pause", response_model=SessionOut, tags=["sessions"])
async def pause_session(session_id: str, request: Request):
    controller = _controller(request, session_id)
    if not controller.pause():
        raise _conflict("pause", controller)
    return controller.snapshot()


@router.post("/sessions/{session_id}/resume", response_model=SessionOut, tags=["sessions"])
async def resume_session(session_id: str, request: Request):
    controller = _controller(request, session_id)
    if not controller.resume():
        raise _conflict("resume", controller)
    return controller.snapshot()


@router.post("/sessions/{session_id}/skip", response_model=SessionOut, tags=["sessions"])
async def skip_phase(session_id: str, request: Request):
    controller = _controller(request, session_id)
    if not controller.skip():
        raise _conflict("skip", controller)
    return controller.snapshot()


@router.post("/sessions/{session_id}/pep-talk", response_model=SessionOut, tags=["sessions"])
async def pep_talk(session_id: str, request: Request):
    controller = _controller(request, session_id)
    if not controller.request_pep_talk():
        raise _conflict("cheer", controller)
    return controller.snapshot()


@router.post("/sessions/{session_id}/voice", response_model=SessionOut, tags=["sessions"])
async def toggle_voice(session_id: str, body: VoiceToggle, request: Request):
    controller = _controller(request, session_id)
    controller.set_voice_enabled(body.enabled)
    return controller.snapshot()


@router.post("/sessions/{session_id}/close", response_model=MessageOut, tags=["sessions"])
async def close_session(session_id: str, request: Request):
    if not await _registry(request).close(session_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return MessageOut(message="Session closed")


@router.get("/completions", response_model=list[CompletionOut], tags=["history"])
def completions(request: Request, exercise_id: Optional[str] = Query(None)):
    recorder = _registry(request).recorder
    if recorder is None:
        return []
    return [
        CompletionOut(date=r.date.isoformat(), exercise_id=r.exercise_id, actual_duration=r.actual_duration, step=r.step)
        for r in recorder.history(exercise_id)
    ]


@router.websocket("/ws/sessions/{session_id}")
async def session_ws(websocket: WebSocket, session_id: str):
    registry: SessionRegistry = websocket.app.state.sessions
    if session_id not in registry:
        await websocket.close(code=4404)
        return
    await registry.connections.connect(session_id, websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                logger.debug("Ignoring non-JSON websocket message")
                continue
            if not isinstance(message, dict):
                continue
            if message.get("type") == "ping":
                await websocket.send_text(json.dumps({"event": "pong", "payload": {}}))
            elif message.get("type") == "cue_finished":
                backend = registry.backend(session_id)
                if backend is not None:
                    backend.finish(str(message.get("token", "")), message.get("error"))
    except WebSocketDisconnect:
        logger.debug("Websocket disconnected", extra={"ctx_session": session_id})
    finally:
        registry.connections.disconnect(session_id, websocket)


@router.post("/webhooks", response_model=WebhookOut, status_code=201, tags=["webhooks"])
def create_webhook(body: WebhookRegister):
    try:
        hook = register_webhook(body.url, body.events, body.secret)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return WebhookOut(id=hook["id"], url=hook["url"], events=hook["events"], active=hook["active"])


@router.get("/webhooks", response_model=list[WebhookOut], tags=["webhooks"])
def get_webhooks():
    return [WebhookOut(id=h["id"], url=h["url"], events=h["events"], active=h["active"]) for h in list_webhooks()]


@router.delete("/webhooks/{hook_id}", response_model=MessageOut, tags=["webhooks"])
def delete_webhook(hook_id: str):
    if not unregister_webhook(hook_id):
        raise HTTPException(status_code=404, detail="Webhook not found")
    return MessageOut(message="Webhook deleted")
