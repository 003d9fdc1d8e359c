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
    """Deskmate process configuration. All values come from environment variables.

    User-editable preferences (theme, retention policy, API key entered in the
    settings window) live in the configuration store, not here.
    """

    # Storage
    data_dir: Path = Field(default=Path.home() / ".deskmate")

    # Language model
    gemini_api_key: str = Field(default="")
    default_model: str = Field(default="gemini-2.5-flash")
    assistant_name: str = Field(default="Gemini")

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(
        env_file=_env_file(),
        env_file_encoding="utf-8",
        extra="ignore",
    )

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


settings = Settings()
