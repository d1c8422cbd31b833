"""Tests for completion recording in SQL and in memory."""

from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import func, select

from coach_core.db import reset_engine, session_scope
from coach_core.models import WorkoutCompletion
from coach_core.services.completions import CompletionRecord, MemoryCompletionRecorder, SqlCompletionRecorder


@pytest.fixture()
def sqlite_db(monkeypatch, tmp_path):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'completions.db'}")
    reset_engine()
    yield
    reset_engine()


def _records(day=date(2026, 1, 5)):
    return [
        CompletionRecord(date=day, exercise_id="jacks", actual_duration=20, step=0),
        CompletionRecord(date=day, exercise_id="squat", actual_duration=18, step=1),
        CompletionRecord(date=day, exercise_id="jacks", actual_duration=20, step=2),
        CompletionRecord(date=day, exercise_id="squat", actual_duration=20, step=3),
    ]


def test_sql_recorder_stores_rows(sqlite_db):
    recorder = SqlCompletionRecorder()
    recorder.record("s1", _records())
    with session_scope() as s:
        assert s.execute(select(func.count()).select_from(WorkoutCompletion)).scalar_one() == 4
    history = recorder.history()
    assert [r.step for r in history] == [0, 1, 2, 3]
    assert history[1].actual_duration == 18


def test_sql_recorder_is_idempotent_per_session(sqlite_db):
    recorder = SqlCompletionRecorder()
    recorder.record("s1", _records())
    recorder.record("s1", _records())
    assert len(recorder.history()) == 4


def test_sql_history_filters_by_exercise(sqlite_db):
    recorder = SqlCompletionRecorder()
    recorder.record("s1", _records(date(2026, 1, 5)))
    recorder.record("s2", _records(date(2026, 1, 6)))
    squats = recorder.history("squat")
    assert len(squats) == 4
    assert {r.exercise_id for r in squats} == {"squat"}
    assert squats[0].date == date(2026, 1, 5)


def test_memory_recorder_history():
    recorder = MemoryCompletionRecorder()
    recorder.record("s1", _records(date(2026, 1, 6)))
    recorder.record("s2", _records(date(2026, 1, 5))[:1])
    history = recorder.history("jacks")
    assert len(history) == 3
    assert history[0].date == date(2026, 1, 5)
