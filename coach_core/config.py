"""Application configuration with environment-specific profiles.

Supports dev, staging, and production environments via APP_ENV.
All values can be overridden by environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


@dataclass(frozen=True)
class Settings:
    """Immutable application settings resolved from environment."""

    database_url: str = "sqlite:///./workouts.db"
    app_env: str = "dev"
    log_level: str = "INFO"

    # Phase durations (seconds)
    get_ready_seconds: int = 10
    work_seconds: int = 20
    rest_seconds: int = 10

    # Cue timing
    motivation_offset_seconds: int = 10
    adhoc_cue_spacing_seconds: float = 8.0
    generation_timeout_seconds: float = 8.0
    cue_ttl_seconds: int = 900

    # Completed sessions stay readable this long before they are released
    completed_session_retention_seconds: float = 60.0

    user_name: str = "Athlete"
    audio_dir: str | None = None
    voice_enabled: bool = True

    # External services (unset means static phrases / silent cues)
    text_api_url: str | None = None
    text_api_key: str | None = None
    text_model: str = "gpt-4o-mini"
    speech_api_url: str | None = None
    speech_api_key: str | None = None
    speech_voice_id: str | None = None

    cors_origins: tuple[str, ...] = ("*",)

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"


@dataclass(frozen=True)
class SessionTimings:
    """Phase durations and cue offsets the session controller runs with."""

    get_ready_seconds: int = 10
    work_seconds: int = 20
    rest_seconds: int = 10
    motivation_offset_seconds: int = 10

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionTimings":
        return cls(
            get_ready_seconds=settings.get_ready_seconds,
            work_seconds=settings.work_seconds,
            rest_seconds=settings.rest_seconds,
            motivation_offset_seconds=settings.motivation_offset_seconds,
        )


# -- Environment profiles --

_ENV_PROFILES: dict[str, dict] = {
    "dev": {
        "log_level": "DEBUG",
        "generation_timeout_seconds": 8.0,
    },
    "staging": {
        "log_level": "INFO",
        "generation_timeout_seconds": 8.0,
    },
    "production": {
        "log_level": "WARNING",
        "generation_timeout_seconds": 5.0,
    },
}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def get_database_url() -> str:
    """Resolve database URL from env var or the local SQLite default."""
    return os.getenv("DATABASE_URL") or "sqlite:///./workouts.db"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build Settings by merging environment profile with env-var overrides."""
    app_env = os.getenv("APP_ENV", "dev")
    profile = _ENV_PROFILES.get(app_env, _ENV_PROFILES["dev"])
    origins = os.getenv("CORS_ORIGINS", "*")

    return Settings(
        database_url=get_database_url(),
        app_env=app_env,
        log_level=os.getenv("LOG_LEVEL", profile.get("log_level", "INFO")),
        get_ready_seconds=int(os.getenv("GET_READY_SECONDS", "10")),
        work_seconds=int(os.getenv("WORK_SECONDS", "20")),
        rest_seconds=int(os.getenv("REST_SECONDS", "10")),
        motivation_offset_seconds=int(os.getenv("MOTIVATION_OFFSET_SECONDS", "10")),
        adhoc_cue_spacing_seconds=float(os.getenv("ADHOC_CUE_SPACING_SECONDS", "8")),
        generation_timeout_seconds=float(
            os.getenv("GENERATION_TIMEOUT_SECONDS", str(profile.get("generation_timeout_seconds", 8.0)))
        ),
        cue_ttl_seconds=int(os.getenv("CUE_TTL_SECONDS", "900")),
        completed_session_retention_seconds=float(os.getenv("COMPLETED_SESSION_RETENTION_SECONDS", "60")),
        user_name=os.getenv("COACH_USER_NAME", "Athlete"),
        audio_dir=os.getenv("AUDIO_DIR") or None,
        voice_enabled=_env_bool("VOICE_ENABLED", True),
        text_api_url=os.getenv("TEXT_API_URL") or None,
        text_api_key=os.getenv("TEXT_API_KEY") or None,
        text_model=os.getenv("TEXT_MODEL", "gpt-4o-mini"),
        speech_api_url=os.getenv("SPEECH_API_URL") or None,
        speech_api_key=os.getenv("SPEECH_API_KEY") or None,
        speech_voice_id=os.getenv("SPEECH_VOICE_ID") or None,
        cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
    )
