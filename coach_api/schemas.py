from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field

from coach_core.services.sequencing import Exercise


class ExerciseIn(BaseModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    media_ref: str = ""
    work_seconds: int = Field(default=20, ge=1)
    difficulty: str = "beginner"

    def to_exercise(self) -> Exercise:
        return Exercise(
            id=self.id,
            name=self.name,
            media_ref=self.media_ref,
            work_seconds=self.work_seconds,
            difficulty=self.difficulty,
        )


class SessionCreate(BaseModel):
    exercises: list[ExerciseIn] = Field(min_length=1)
    user_name: Optional[str] = None


class ExerciseOut(BaseModel):
    id: str
    name: str
    media_ref: str = ""


class UpcomingExerciseOut(BaseModel):
    id: str
    name: str


class SessionOut(BaseModel):
    session_id: str
    phase: Optional[str] = None
    step: int
    total_steps: int
    remaining: int
    paused: bool
    closed: bool
    exercise: ExerciseOut
    next_exercise: Optional[UpcomingExerciseOut] = None
    voice: dict[str, Any] = Field(default_factory=dict)


class VoiceToggle(BaseModel):
    enabled: bool


class MessageOut(BaseModel):
    message: str


class WebhookRegister(BaseModel):
    url: str
    events: list[str] = Field(min_length=1)
    secret: Optional[str] = None


class WebhookOut(BaseModel):
    id: str
    url: str
    events: list[str]
    active: bool


class CompletionOut(BaseModel):
    date: str
    exercise_id: str
    actual_duration: int
    step: int
