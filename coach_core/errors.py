"""Error taxonomy for the coaching core.

``GenerationFailure`` is recovered through the cue fallback chain,
``PlaybackFailure`` releases the playback handle silently, and
``InvariantViolation`` is logged while the session is clamped back into a
valid state. None of them is allowed to delay a phase transition.
"""

from __future__ import annotations


class CoachError(Exception):
    """Base class for coaching errors."""


class GenerationFailure(CoachError):
    """The text or speech service was unreachable, erroring, or too slow."""

    def __init__(self, stage: str, message: str = "", partial_text: str | None = None):
        self.stage = stage
        # Text already produced when the speech stage is the one that failed.
        self.partial_text = partial_text
        super().__init__(f"{stage} generation failed: {message}" if message else f"{stage} generation failed")


class PlaybackFailure(CoachError):
    """The audio backend could not decode or stream a cue."""


class InvariantViolation(CoachError):
    """Defensive check; should not happen in correct operation."""
