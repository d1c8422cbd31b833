"""Cue identities, contexts and the static phrase tables.

Every spoken line belongs to a ``CueCategory``. Generated lines are cached
under a ``CueKey``; when generation is unavailable a phrase is drawn from the
category's table and its placeholders are substituted.
"""

from __future__ import annotations

import random
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Union


class CueCategory(str, Enum):
    READY = "ready"
    INSTRUCTION = "instruction"
    MOTIVATION = "motivation"
    REST_ANNOUNCEMENT = "rest-announcement"
    GENERAL = "general"


@dataclass(frozen=True)
class CueKey:
    """Cache slot for one coaching line of one step."""

    exercise_id: str
    step: int
    category: CueCategory

    def __str__(self) -> str:
        return f"{self.exercise_id}:{self.step}:{self.category.value}"


@dataclass(frozen=True)
class CueContext:
    """Everything a text generator may use to write a coaching line."""

    exercise_name: str
    time_remaining: int
    current_step: int
    total_steps: int
    user_name: str
    phase: str
    category: CueCategory


@dataclass(frozen=True)
class CachedCue:
    text: str
    audio: bytes
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class CueRequest:
    """A cue resolved through the cache and the fallback chain."""

    key: CueKey
    context: CueContext


@dataclass(frozen=True)
class SpokenLine:
    """A fixed line; ``audio`` is used as-is when present.

    With a ``key`` the line is looked up in the cue cache first, so audio
    voiced ahead of time plays without a round trip to the speech service.
    """

    text: str
    audio: bytes | None = None
    category: CueCategory = CueCategory.READY
    key: CueKey | None = None


Cue = Union[CueRequest, SpokenLine]


@dataclass(frozen=True)
class ResolvedCue:
    """Outcome of resolving a cue: text always, audio when it could be voiced.

    ``source`` is one of ``cache``, ``generated``, ``static``, ``clip``,
    ``line`` or ``silent``.
    """

    text: str
    audio: bytes | None
    source: str
    category: CueCategory
    key: CueKey | None = None


# Static phrases per category, used when text generation fails.
PHRASES: dict[CueCategory, tuple[str, ...]] = {
    CueCategory.READY: (
        "Get ready, {userName}! Time for {exerciseName}. This is exercise {step} of {totalSteps}. Let's do this!",
        "{userName}, prepare for {exerciseName}! Exercise {step} of {totalSteps}. Focus and breathe!",
        "Ready, {userName}? {exerciseName} is up next. That's {step} out of {totalSteps}. You've got this!",
        "Time to shine, {userName}! {exerciseName} coming up, exercise {step} of {totalSteps}. Let's go!",
        "{userName}, gear up for {exerciseName}! Number {step} of {totalSteps}. Show me what you've got!",
    ),
    CueCategory.INSTRUCTION: (
        "{userName}, focus on proper form and controlled movements for {exerciseName}. "
        "Keep your core engaged and breathe steadily.",
        "Time for proper form, {userName}! Keep good posture through {exerciseName} and move with control.",
        "Let's do {exerciseName} right, {userName}. Focus on the target muscles and keep your breathing steady.",
    ),
    CueCategory.MOTIVATION: (
        "Push it, {userName}! You've got this!",
        "Great form, {userName}! Keep it up!",
        "Stay strong, {userName}! Every rep of {exerciseName} counts!",
        "Feel that burn, {userName}! That's progress happening!",
        "You're crushing it, {userName}! {seconds} seconds to go!",
    ),
    CueCategory.REST_ANNOUNCEMENT: (
        "Great work, {userName}! Time to rest and recover.",
        "Excellent job on {exerciseName}, {userName}! Take this time to breathe and reset.",
        "Well done, {userName}! Use this rest to prepare for what's next.",
    ),
    CueCategory.GENERAL: (
        "Great job, {userName}! Keep pushing yourself!",
        "You're doing amazing, {userName}! Stay focused!",
        "Keep it up, {userName}! You've got this!",
    ),
}

_PLACEHOLDER_RE = re.compile(r"\{[A-Za-z_]+\}")


def substitute(template: str, context: CueContext) -> str:
    """Fill placeholders; any unknown placeholder is removed, never spoken."""
    values = {
        "{userName}": context.user_name,
        "{exerciseName}": context.exercise_name,
        "{seconds}": str(max(0, context.time_remaining)),
        "{step}": str(context.current_step + 1),
        "{totalSteps}": str(context.total_steps),
    }
    text = template
    for placeholder, value in values.items():
        text = text.replace(placeholder, value)
    text = _PLACEHOLDER_RE.sub("", text)
    return re.sub(r"\s{2,}", " ", text).strip()


def static_phrase(context: CueContext, rng: random.Random | None = None) -> str:
    """Random phrase from the category table with placeholders substituted."""
    phrases = PHRASES.get(context.category) or PHRASES[CueCategory.GENERAL]
    chooser = rng or random
    return substitute(chooser.choice(phrases), context)


def ready_line(context: CueContext) -> str:
    """Deterministic get-ready line, rotating through the table by step."""
    phrases = PHRASES[CueCategory.READY]
    return substitute(phrases[context.current_step % len(phrases)], context)
