from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from coach_api.observability import (
    install_request_id_filter,
    monotonic_ms,
    new_request_id,
    request_log_fields,
    reset_request_id,
    set_request_id,
)
from coach_api.realtime import manager
from coach_api.routes import router
from coach_api.sessions import SessionRegistry
from coach_core.config import Settings, get_settings
from coach_core.logging_config import setup_logging
from coach_core.services.completions import CompletionRecorder, SqlCompletionRecorder
from coach_core.services.generators import synthesizer_from_settings, text_generator_from_settings
from coach_core.services.providers import CoachingTextGenerator, SpeechSynthesizer

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def create_app(
    text_generator: CoachingTextGenerator | None = None,
    synthesizer: SpeechSynthesizer | None = None,
    recorder: CompletionRecorder | None = None,
    *,
    settings: Settings | None = None,
    tick_seconds: float = 1.0,
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level)
    install_request_id_filter()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        completion_recorder = recorder
        if completion_recorder is None:
            try:
                completion_recorder = SqlCompletionRecorder()
            except Exception as exc:  # pragma: no cover - depends on runtime infra
                logger.warning("Completion storage unavailable, results will not be recorded: %s", exc)
        app.state.sessions = SessionRegistry(
            text_generator=text_generator or text_generator_from_settings(settings),
            synthesizer=synthesizer or synthesizer_from_settings(settings),
            recorder=completion_recorder,
            connections=manager,
            settings=settings,
            tick_seconds=tick_seconds,
        )
        logger.info(
            "coach_api_started",
            extra={"ctx_env": settings.app_env, "ctx_recorder": type(completion_recorder).__name__},
        )
        try:
            yield
        finally:
            await app.state.sessions.close_all()

    app = FastAPI(title="Interval Coach API", version="1.0.0", lifespan=lifespan)
    app.include_router(router)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_context_and_logging(request: Request, call_next: Callable) -> Response:
        request_id = (request.headers.get(REQUEST_ID_HEADER) or "").strip() or new_request_id()
        token = set_request_id(request_id)
        started_ms = monotonic_ms()
        client_ip = getattr(request.client, "host", None)
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = monotonic_ms() - started_ms
            logger.exception(
                "http_request_error",
                extra=request_log_fields(
                    method=request.method,
                    path=request.url.path,
                    status_code=500,
                    duration_ms=duration_ms,
                    client_ip=client_ip,
                ),
            )
            raise
        else:
            response.headers[REQUEST_ID_HEADER] = request_id
            duration_ms = monotonic_ms() - started_ms
            logger.info(
                "http_request",
                extra=request_log_fields(
                    method=request.method,
                    path=request.url.path,
                    status_code=response.status_code,
                    duration_ms=duration_ms,
                    client_ip=client_ip,
                ),
            )
            return response
        finally:
            reset_request_id(token)

    return app


app = create_app()
