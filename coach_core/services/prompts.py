"""Prompt builders for coaching text generators.

Each builder turns a ``CueContext`` into the instruction sent to a language
model. Concrete text generators pick the builder with ``build_prompt``.
"""

from __future__ import annotations

from typing import Callable

from coach_core.services.cues import CueCategory, CueContext


def instruction_prompt(ctx: CueContext) -> str:
    return (
        f"You are a professional fitness coach. Explain to {ctx.user_name} how to perform the "
        f'"{ctx.exercise_name}" exercise correctly. Focus on proper form, technique, and any important '
        f"safety tips. Keep it concise but informative (2-3 sentences max). Be encouraging and clear. "
        f"This is exercise {ctx.current_step + 1} of {ctx.total_steps}."
    )


def motivation_prompt(ctx: CueContext) -> str:
    return (
        f"You are an energetic fitness coach. Generate a motivational pep talk for {ctx.user_name} who is "
        f'currently doing "{ctx.exercise_name}" with {ctx.time_remaining} seconds remaining. Be encouraging, '
        f"energetic, and supportive. Focus on pushing through, good form, or breathing. "
        f"Keep it brief and punchy (1-2 sentences max)!"
    )


def rest_announcement_prompt(ctx: CueContext) -> str:
    return (
        f"You are a supportive fitness coach. Announce to {ctx.user_name} that it's time to rest after "
        f'completing "{ctx.exercise_name}". Encourage them to breathe, recover, and prepare for the next '
        f"exercise. Keep it calm but motivating (1-2 sentences max)."
    )


def get_ready_prompt(ctx: CueContext) -> str:
    return (
        f"You are an energetic fitness coach. Generate a very short (1-2 sentences max) motivational message "
        f'to get {ctx.user_name} ready for the "{ctx.exercise_name}" exercise. This is exercise '
        f"{ctx.current_step + 1} of {ctx.total_steps}. Be encouraging and positive. Keep it brief and punchy!"
    )


def general_prompt(ctx: CueContext) -> str:
    if ctx.time_remaining > 15:
        stage = "beginning"
    elif ctx.time_remaining > 7:
        stage = "middle"
    else:
        stage = "final push"
    return (
        f"You are an energetic fitness coach. Generate a very short (1-2 sentences max) motivational message "
        f'for {ctx.user_name} who is currently doing "{ctx.exercise_name}" with {ctx.time_remaining} seconds '
        f"remaining. This is the {stage} phase. Be encouraging, energetic, and supportive. "
        f"Focus on form, breathing, or pushing through. Keep it brief!"
    )


PROMPT_BUILDERS: dict[CueCategory, Callable[[CueContext], str]] = {
    CueCategory.READY: get_ready_prompt,
    CueCategory.INSTRUCTION: instruction_prompt,
    CueCategory.MOTIVATION: motivation_prompt,
    CueCategory.REST_ANNOUNCEMENT: rest_announcement_prompt,
    CueCategory.GENERAL: general_prompt,
}


def build_prompt(ctx: CueContext) -> str:
    return PROMPT_BUILDERS.get(ctx.category, general_prompt)(ctx)
