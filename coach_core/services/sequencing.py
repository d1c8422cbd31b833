"""Exercise sequencing for paired interval workouts.

Consecutive exercises form pair groups (0,1), (2,3), ... and every pair is
worked four times in the order first, second, first, second. A workout of N
exercises therefore has 2*N steps. When N is odd the last pair has no second
exercise and its first exercise fills both of the orphan pair's steps.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

logger = logging.getLogger(__name__)

STEPS_PER_PAIR = 4


@dataclass(frozen=True)
class Exercise:
    """Read-only catalogue entry for one exercise."""

    id: str
    name: str
    media_ref: str = ""
    work_seconds: int = 20
    difficulty: str = "beginner"


def total_steps(exercise_count: int) -> int:
    """Each exercise is worked exactly twice."""
    return max(0, exercise_count) * 2


def clamp_step(step: int, exercise_count: int) -> int:
    """Clamp ``step`` into ``[0, total_steps)``, logging when it was out of range."""
    steps = total_steps(exercise_count)
    if steps == 0:
        raise ValueError("a workout needs at least one exercise")
    if 0 <= step < steps:
        return step
    clamped = min(max(step, 0), steps - 1)
    logger.error(
        "Step index out of range, clamping",
        extra={"ctx_step": step, "ctx_clamped": clamped, "ctx_total_steps": steps},
    )
    return clamped


def exercise_index_for_step(step: int, exercise_count: int) -> int:
    """Return the index of the exercise worked at ``step``."""
    step = clamp_step(step, exercise_count)
    pair_group = step // STEPS_PER_PAIR
    position = step % STEPS_PER_PAIR
    first = pair_group * 2
    second = first + 1

    if first >= exercise_count:
        return exercise_count - 1
    if second >= exercise_count:
        return first
    return first if position in (0, 2) else second


def exercise_for_step(exercises: Sequence[Exercise], step: int) -> Exercise:
    return exercises[exercise_index_for_step(step, len(exercises))]


def next_exercise(exercises: Sequence[Exercise], step: int) -> Exercise | None:
    """Exercise of the step after ``step``, or None when ``step`` is the last one."""
    nxt = step + 1
    if nxt >= total_steps(len(exercises)):
        return None
    return exercise_for_step(exercises, nxt)


def step_sequence(exercises: Sequence[Exercise]) -> list[Exercise]:
    """Full ordered list of exercises, one entry per step."""
    return [exercise_for_step(exercises, i) for i in range(total_steps(len(exercises)))]
