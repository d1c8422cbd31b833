"""Completion records emitted when a coached session reaches COMPLETE."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import Sequence

from sqlalchemy import select

from coach_core.db import init_db, session_scope
from coach_core.models import WorkoutCompletion

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompletionRecord:
    date: date
    exercise_id: str
    actual_duration: int
    step: int = 0


class CompletionRecorder(ABC):
    """Receives one record per step of a finished session."""

    @abstractmethod
    def record(self, session_id: str, records: Sequence[CompletionRecord]) -> None: ...

    def history(self, exercise_id: str | None = None) -> list[CompletionRecord]:
        return []


class MemoryCompletionRecorder(CompletionRecorder):
    def __init__(self) -> None:
        self.sessions: dict[str, list[CompletionRecord]] = {}

    def record(self, session_id: str, records: Sequence[CompletionRecord]) -> None:
        self.sessions.setdefault(session_id, []).extend(records)

    def history(self, exercise_id: str | None = None) -> list[CompletionRecord]:
        rows = [r for records in self.sessions.values() for r in records]
        if exercise_id:
            rows = [r for r in rows if r.exercise_id == exercise_id]
        return sorted(rows, key=lambda r: r.date)


class SqlCompletionRecorder(CompletionRecorder):
    """Stores records in the ``workout_completions`` table."""

    def __init__(self, create_tables: bool = True):
        if create_tables:
            init_db()

    def record(self, session_id: str, records: Sequence[CompletionRecord]) -> None:
        with session_scope() as s:
            existing = set(
                s.execute(select(WorkoutCompletion.step).where(WorkoutCompletion.session_id == session_id)).scalars()
            )
            for rec in records:
                if rec.step in existing:
                    continue
                s.add(
                    WorkoutCompletion(
                        session_id=session_id,
                        step=rec.step,
                        date=rec.date,
                        exercise_id=rec.exercise_id,
                        actual_duration_sec=rec.actual_duration,
                    )
                )
        logger.info("Recorded %d completion rows for session %s", len(records), session_id)

    def history(self, exercise_id: str | None = None) -> list[CompletionRecord]:
        with session_scope() as s:
            stmt = select(WorkoutCompletion).order_by(WorkoutCompletion.date, WorkoutCompletion.session_id, WorkoutCompletion.step)
            if exercise_id:
                stmt = stmt.where(WorkoutCompletion.exercise_id == exercise_id)
            return [
                CompletionRecord(
                    date=row.date,
                    exercise_id=row.exercise_id,
                    actual_duration=row.actual_duration_sec,
                    step=row.step,
                )
                for row in s.execute(stmt).scalars()
            ]
