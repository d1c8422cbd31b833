from __future__ import annotations

import datetime as dt

from sqlalchemy import Date, DateTime, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class WorkoutCompletion(Base):
    """One finished step of a coached workout session."""

    __tablename__ = "workout_completions"
    __table_args__ = (Index("ix_workout_completions_session_step", "session_id", "step", unique=True),)

    id: Mapped[int] = mapped_column(primary_key=True)
    session_id: Mapped[str] = mapped_column(String(64), index=True)
    step: Mapped[int] = mapped_column(Integer)
    date: Mapped[dt.date] = mapped_column(Date, index=True)
    exercise_id: Mapped[str] = mapped_column(String(80), index=True)
    actual_duration_sec: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=dt.datetime.utcnow)
