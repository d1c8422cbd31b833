"""Structured JSON logging for workout sessions.

Context travels on records as ``ctx_*`` attributes. ``ctx_session``,
``ctx_phase`` and ``ctx_step`` are lifted to top-level ``session``, ``phase``
and ``step`` keys so one workout can be followed line by line; any other
``ctx_*`` value lands under ``context``.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Callable, MutableMapping

_TOP_LEVEL = {"ctx_session": "session", "ctx_phase": "phase", "ctx_step": "step"}

NOISY_LOGGERS = ("sqlalchemy.engine", "httpx", "httpcore", "uvicorn.access", "asyncio")

# Returns (phase, step) of the running workout, or None before start / after close.
PositionFn = Callable[[], tuple[str, int] | None]


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with session position hoisted."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        context = {k: v for k, v in record.__dict__.items() if k.startswith("ctx_")}
        for attr, key in _TOP_LEVEL.items():
            if attr in context:
                log_entry[key] = context.pop(attr)
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
            }
        if context:
            log_entry["context"] = context
        return json.dumps(log_entry, default=str)


class SessionLogAdapter(logging.LoggerAdapter):
    """Stamps every record with the session id and, when known, its position.

    Explicit ``extra`` values passed by the caller win over the stamped ones.
    """

    def __init__(self, logger: logging.Logger, session_id: str, position: PositionFn | None = None):
        super().__init__(logger, {"ctx_session": session_id})
        self._position = position

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        stamped = dict(self.extra)
        where = self._position() if self._position else None
        if where is not None:
            stamped["ctx_phase"], stamped["ctx_step"] = where
        stamped.update(kwargs.get("extra") or {})
        kwargs["extra"] = stamped
        return msg, kwargs


def setup_logging(level: str = "INFO") -> None:
    """Send JSON lines to stdout. A no-op once the root logger has handlers."""
    root = logging.getLogger()
    if root.handlers:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def session_logger(name: str, session_id: str, position: PositionFn | None = None) -> SessionLogAdapter:
    """Logger for one workout session, see ``SessionLogAdapter``."""
    return SessionLogAdapter(logging.getLogger(name), session_id, position)
