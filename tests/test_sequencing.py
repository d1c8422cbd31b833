"""Tests for paired exercise sequencing."""

from __future__ import annotations

import logging

import pytest

from coach_core.services.sequencing import (
    Exercise,
    clamp_step,
    exercise_for_step,
    exercise_index_for_step,
    next_exercise,
    step_sequence,
    total_steps,
)


def _exercises(*names: str) -> list[Exercise]:
    return [Exercise(id=n.lower(), name=n) for n in names]


def _names(exercises: list[Exercise]) -> list[str]:
    return [e.name for e in step_sequence(exercises)]


def test_total_steps_is_twice_exercise_count():
    assert total_steps(1) == 2
    assert total_steps(3) == 6
    assert total_steps(0) == 0


def test_single_exercise_fills_both_steps():
    assert _names(_exercises("A")) == ["A", "A"]


def test_pair_alternates():
    assert _names(_exercises("A", "B")) == ["A", "B", "A", "B"]


def test_odd_count_orphan_repeats():
    assert _names(_exercises("A", "B", "C")) == ["A", "B", "A", "B", "C", "C"]


def test_two_pairs():
    assert _names(_exercises("A", "B", "C", "D")) == ["A", "B", "A", "B", "C", "D", "C", "D"]


def test_five_exercises():
    assert _names(_exercises("A", "B", "C", "D", "E")) == [
        "A", "B", "A", "B", "C", "D", "C", "D", "E", "E",
    ]


@pytest.mark.parametrize("count", range(1, 9))
def test_every_exercise_worked_exactly_twice(count):
    exercises = _exercises(*[f"E{i}" for i in range(count)])
    names = _names(exercises)
    assert len(names) == 2 * count
    for e in exercises:
        assert names.count(e.name) == 2


@pytest.mark.parametrize("count", range(1, 9))
def test_index_matches_pairing_rule(count):
    for step in range(total_steps(count)):
        pair_group, position = divmod(step, 4)
        first, second = pair_group * 2, pair_group * 2 + 1
        if second >= count:
            expected = first
        else:
            expected = first if position in (0, 2) else second
        assert exercise_index_for_step(step, count) == expected


def test_next_exercise_preview():
    exercises = _exercises("A", "B", "C")
    assert next_exercise(exercises, 0).name == "B"
    assert next_exercise(exercises, 3).name == "C"
    assert next_exercise(exercises, 5) is None


def test_clamp_step_in_range_untouched():
    assert clamp_step(3, 2) == 3


def test_clamp_step_logs_and_clamps(caplog):
    with caplog.at_level(logging.ERROR, logger="coach_core.services.sequencing"):
        assert clamp_step(9, 2) == 3
        assert clamp_step(-1, 2) == 0
    assert "out of range" in caplog.text


def test_clamp_step_requires_exercises():
    with pytest.raises(ValueError):
        clamp_step(0, 0)


def test_exercise_for_out_of_range_step_is_clamped():
    exercises = _exercises("A", "B")
    assert exercise_for_step(exercises, 99).name == "B"
