"""Tests for the pausable phase countdown."""

from __future__ import annotations

import pytest

from coach_core.services.phase_timer import PhaseTimer


def _timer():
    timer = PhaseTimer()
    ticks: list[int] = []
    expired: list[int] = []
    timer.on_tick(ticks.append)
    timer.on_expired(lambda: expired.append(timer.remaining()))
    return timer, ticks, expired


class TestCountdown:
    def test_counts_down_and_expires_once(self):
        timer, ticks, expired = _timer()
        timer.start(3)
        for _ in range(5):
            timer.tick()
        assert ticks == [2, 1, 0]
        assert expired == [0]
        assert timer.is_running is False

    def test_zero_duration_expires_immediately(self):
        timer, ticks, expired = _timer()
        timer.start(0)
        assert expired == [0]
        assert ticks == []

    def test_elapsed_tracks_ticks(self):
        timer, _, _ = _timer()
        timer.start(10)
        timer.tick()
        timer.tick()
        assert timer.elapsed() == 2
        assert timer.remaining() == 8
        assert timer.duration == 10


class TestPause:
    def test_pause_freezes_remaining(self):
        timer, _, _ = _timer()
        timer.start(10)
        timer.tick()
        timer.pause()
        before = timer.remaining()
        timer.tick()
        timer.tick()
        assert timer.remaining() == before
        assert timer.is_paused is True

    def test_pause_then_resume_preserves_remaining(self):
        timer, _, _ = _timer()
        timer.start(10)
        timer.tick()
        remaining = timer.remaining()
        timer.pause()
        timer.resume()
        assert timer.remaining() == remaining
        timer.tick()
        assert timer.remaining() == remaining - 1

    def test_no_expire_while_paused(self):
        timer, _, expired = _timer()
        timer.start(1)
        timer.pause()
        timer.tick()
        assert expired == []
        timer.resume()
        timer.tick()
        assert expired == [0]


class TestStopAndExpire:
    def test_stop_does_not_fire_expired(self):
        timer, _, expired = _timer()
        timer.start(5)
        timer.stop()
        timer.tick()
        assert expired == []

    def test_expire_jumps_to_zero_once(self):
        timer, _, expired = _timer()
        timer.start(5)
        timer.expire()
        timer.expire()
        assert expired == [0]
        assert timer.remaining() == 0

    def test_listener_can_restart_timer(self):
        timer = PhaseTimer()
        phases: list[int] = []

        def next_phase():
            phases.append(len(phases))
            if len(phases) < 3:
                timer.start(2)

        timer.on_expired(next_phase)
        timer.start(1)
        for _ in range(10):
            timer.tick()
        assert phases == [0, 1, 2]


@pytest.mark.asyncio
async def test_run_ticks_until_condition_false():
    timer, ticks, expired = _timer()
    timer.start(3)
    await timer.run(lambda: not expired, interval=0)
    assert ticks == [2, 1, 0]
    assert expired == [0]
