"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """ChatIQ configuration. All values come from environment variables."""

    # Identity (authentication is handled upstream; the CLI signs in as this user)
    default_user_id: str = Field(default="local-user")

    # Completion service
    completion_provider: str = Field(default="gemini")
    completion_timeout: float = Field(default=60.0)

    # Gemini
    google_api_key: str = Field(default="")
    gemini_model: str = Field(default="gemini-1.5-flash")
    gemini_api_base: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta/models"
    )

    # Anthropic
    anthropic_api_key: str = Field(default="")
    claude_model: str = Field(default="claude-sonnet-4-5-20250929")

    # Storage
    database_path: Path = Field(default=Path("data/chatiq.db"))
    local_state_dir: Path = Field(default=Path("data/state"))

    # Conversation
    conversation_window_size: int = Field(default=20)
    session_title_length: int = Field(default=35)

    # Query policies
    verification_enabled: bool = Field(default=True)
    verify_keywords: str = Field(
        default="fact,statistic,number,historical,scientific,"
        "medical,technical,figure,data,research"
    )
    blocked_keywords: str = Field(default="")

    # Feedback export
    feedback_export_url: str = Field(default="")
    feedback_export_interval_days: int = Field(default=7)
    feedback_lookback_days: int = Field(default=7)

    # Scheduler
    scheduler_timezone: str = Field(default="UTC")

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    @staticmethod
    def _split(raw: str) -> list[str]:
        return [item.strip().lower() for item in raw.split(",") if item.strip()]

    def get_verify_keywords(self) -> list[str]:
        """Parse VERIFY_KEYWORDS into a lowercase list."""
        return self._split(self.verify_keywords)

    def get_blocked_keywords(self) -> list[str]:
        """Parse BLOCKED_KEYWORDS into a lowercase list (empty disables the filter)."""
        return self._split(self.blocked_keywords)


settings = Settings()
