"""Pausable 1 Hz countdown used for every workout phase.

The timer is a logical clock: ``tick()`` removes one second. ``run()`` is the
asyncio driver that ticks once per real second; tests call ``tick()``
directly. No drift compensation is attempted.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

logger = logging.getLogger(__name__)

TICK_SECONDS = 1.0

TickListener = Callable[[int], None]
ExpiredListener = Callable[[], None]


class PhaseTimer:
    def __init__(self) -> None:
        self._duration = 0
        self._remaining = 0
        self._running = False
        self._paused = False
        self._expired = True
        self._tick_listeners: list[TickListener] = []
        self._expired_listeners: list[ExpiredListener] = []

    # -- subscriptions --

    def on_tick(self, listener: TickListener) -> None:
        self._tick_listeners.append(listener)

    def on_expired(self, listener: ExpiredListener) -> None:
        self._expired_listeners.append(listener)

    # -- control --

    def start(self, duration: int) -> None:
        """Start a fresh countdown. A zero duration expires immediately."""
        self._duration = max(0, int(duration))
        self._remaining = self._duration
        self._running = True
        self._paused = False
        self._expired = False
        logger.debug("Timer started", extra={"ctx_duration": self._duration})
        if self._remaining == 0:
            self._fire_expired()

    def pause(self) -> None:
        if self._running and not self._paused:
            self._paused = True
            logger.debug("Timer paused", extra={"ctx_remaining": self._remaining})

    def resume(self) -> None:
        if self._running and self._paused:
            self._paused = False
            logger.debug("Timer resumed", extra={"ctx_remaining": self._remaining})

    def stop(self) -> None:
        """Halt the countdown without firing ``expired``."""
        self._running = False
        self._paused = False

    def expire(self) -> None:
        """Jump straight to zero (used to skip a phase)."""
        if not self._running or self._expired:
            return
        self._remaining = 0
        self._fire_expired()

    def tick(self) -> None:
        """Advance the countdown by one second."""
        if not self._running or self._paused or self._expired:
            return
        self._remaining = max(0, self._remaining - 1)
        for listener in list(self._tick_listeners):
            listener(self._remaining)
        if self._remaining == 0:
            self._fire_expired()

    # -- accessors --

    def remaining(self) -> int:
        return self._remaining

    def elapsed(self) -> int:
        return self._duration - self._remaining

    @property
    def duration(self) -> int:
        return self._duration

    @property
    def is_running(self) -> bool:
        return self._running and not self._paused and not self._expired

    @property
    def is_paused(self) -> bool:
        return self._paused

    def _fire_expired(self) -> None:
        # Flags are set before notifying so a listener may restart the timer.
        self._expired = True
        self._running = False
        for listener in list(self._expired_listeners):
            listener()

    async def run(self, should_continue: Callable[[], bool], interval: float = TICK_SECONDS) -> None:
        """Tick once per ``interval`` seconds while ``should_continue()`` is true."""
        while should_continue():
            await asyncio.sleep(interval)
            if not should_continue():
                break
            self.tick()
