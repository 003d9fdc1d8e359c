"""ConfigStore: persisted user settings and the retention policy."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from deskmate.config import settings
from deskmate.store.base import BaseStore, coerce_model
from deskmate.store.files import read_json, write_json
from deskmate.store.models import (
    CleanupSchedule,
    PrivacySettings,
    ThemeName,
    UtcDatetime,
    as_utc,
    from_epoch_ms,
    utcnow,
)

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

CONFIG_SCHEMA_VERSION = 2
MIN_STORAGE_SIZE_MB = 10
MIN_KEEP_RECENT_DAYS = 1

CLEANUP_INTERVALS: dict[str, timedelta] = {
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
    "monthly": timedelta(days=30),
}

# Schema v1 used the desktop shell's camelCase keys.
_V1_KEYS = {
    "apiKey": "api_key",
    "theme": "theme",
    "windowSize": "window_size",
    "windowPosition": "window_position",
    "autoHide": "auto_hide",
    "incognitoMode": "incognito_mode",
    "dataRetention": "data_retention_days",
    "autoCleanup": "auto_cleanup_enabled",
    "cleanupSchedule": "cleanup_schedule",
    "maxStorageSize": "max_storage_size_mb",
    "keepRecentDays": "keep_recent_days",
    "selectedModel": "selected_model",
    "modelConfig": "generation",
    "shortcuts": "shortcuts",
    "lastSaved": "last_saved",
}
_V1_ONLY_KEYS = {old for old, new in _V1_KEYS.items() if old != new}


class WindowSize(BaseModel):
    width: int = 700
    height: int = 80


class WindowPosition(BaseModel):
    x: int = 0
    y: int = 0


class GenerationConfig(BaseModel):
    temperature: float = 0.7
    max_tokens: int = 2048


class Shortcuts(BaseModel):
    toggle_window: str = "CommandOrControl+Space"
    new_chat: str = "Control+T"


class ConfigState(BaseModel):
    api_key: str = ""
    theme: ThemeName = "system"
    window_size: WindowSize = Field(default_factory=WindowSize)
    window_position: WindowPosition = Field(default_factory=WindowPosition)
    auto_hide: bool = True
    incognito_mode: bool = False
    data_retention_days: int = 30
    auto_cleanup_enabled: bool = False
    cleanup_schedule: CleanupSchedule = "weekly"
    max_storage_size_mb: int = 100
    keep_recent_days: int = 7
    selected_model: str = Field(default_factory=lambda: settings.default_model)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    shortcuts: Shortcuts = Field(default_factory=Shortcuts)
    last_saved: UtcDatetime = Field(default_factory=utcnow)
    last_cleanup_at: UtcDatetime | None = None


def migrate_config(raw: dict[str, Any]) -> dict[str, Any]:
    """Bring a raw config document up to ``CONFIG_SCHEMA_VERSION``."""
    version = raw.get("schema_version")
    if version is None:
        version = 1 if _V1_ONLY_KEYS.intersection(raw) else CONFIG_SCHEMA_VERSION
    if version == 1:
        data = {new: raw[old] for old, new in _V1_KEYS.items() if old in raw}
        if isinstance(data.get("generation"), dict):
            gen = data["generation"]
            data["generation"] = {
                "temperature": gen.get("temperature", 0.7),
                "max_tokens": gen.get("maxTokens", 2048),
            }
        if isinstance(data.get("shortcuts"), dict):
            keys = data["shortcuts"]
            data["shortcuts"] = {
                "toggle_window": keys.get("toggleWindow", Shortcuts().toggle_window),
                "new_chat": keys.get("newChat", Shortcuts().new_chat),
            }
        if "last_saved" in data:
            data["last_saved"] = from_epoch_ms(data["last_saved"])
        logger.info("Migrated config from schema v1 to v%d", CONFIG_SCHEMA_VERSION)
        return data
    return raw


class ConfigStore(BaseStore[ConfigState]):
    """Durable key/value settings, default-filled on load.

    Also the chat store's policy provider: it answers ``get_privacy_settings()``
    and ``should_run_auto_cleanup()``.
    """

    def __init__(self, data_dir: Path | None = None) -> None:
        super().__init__()
        self._path = (data_dir or settings.data_dir) / "config.json"

    @property
    def path(self) -> Path:
        return self._path

    def default_state(self) -> ConfigState:
        return ConfigState()

    # -- Persistence -----------------------------------------------------------

    async def load(self) -> None:
        try:
            raw = await read_json(self._path)
        except (json.JSONDecodeError, OSError, UnicodeDecodeError):
            logger.warning("Could not read config at %s, using defaults", self._path, exc_info=True)
            return

        if raw is None:
            logger.info("No config file at %s, writing defaults", self._path)
            await self.save()
            return
        if not isinstance(raw, dict):
            logger.warning("Config at %s is not an object, using defaults", self._path)
            return

        self._replace_state(coerce_model(ConfigState, migrate_config(raw), source=str(self._path)))
        logger.info("Configuration loaded from %s", self._path)

    async def save(self) -> None:
        self._set_state(last_saved=utcnow())
        data = self._state.model_dump(mode="json")
        data["schema_version"] = CONFIG_SCHEMA_VERSION
        await write_json(self._path, data)
        logger.debug("Configuration saved to %s", self._path)

    async def _update(self, **changes: Any) -> None:
        self._set_state(**changes)
        await self.save()

    # -- Credentials -----------------------------------------------------------

    def get_api_key(self) -> str:
        """Stored key, falling back to ``GEMINI_API_KEY`` from the environment."""
        return self._state.api_key or settings.gemini_api_key

    async def set_api_key(self, api_key: str) -> None:
        await self._update(api_key=api_key.strip())

    def is_config_valid(self) -> bool:
        return bool(self._state.api_key)

    # -- Appearance / window ---------------------------------------------------

    async def set_theme(self, theme: ThemeName) -> None:
        await self._update(theme=theme)

    async def set_window_size(self, width: int, height: int) -> None:
        await self._update(window_size=WindowSize(width=width, height=height))

    async def set_window_position(self, x: int, y: int) -> None:
        await self._update(window_position=WindowPosition(x=x, y=y))

    async def set_auto_hide(self, enabled: bool) -> None:
        await self._update(auto_hide=enabled)

    async def set_shortcuts(self, **shortcuts: str) -> None:
        merged = {**self._state.shortcuts.model_dump(), **shortcuts}
        await self._update(shortcuts=Shortcuts.model_validate(merged))

    async def set_model_config(
        self,
        model: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> None:
        changes: dict[str, Any] = {"selected_model": model}
        gen_updates = {
            k: v for k, v in (("temperature", temperature), ("max_tokens", max_tokens)) if v is not None
        }
        if gen_updates:
            changes["generation"] = self._state.generation.model_copy(update=gen_updates)
        await self._update(**changes)

    # -- Privacy / retention ---------------------------------------------------

    async def set_incognito_mode(self, enabled: bool) -> None:
        await self._update(incognito_mode=enabled)

    async def set_data_retention(self, days: int) -> None:
        await self._update(data_retention_days=days)

    async def set_auto_cleanup(self, enabled: bool, schedule: CleanupSchedule | None = None) -> None:
        changes: dict[str, Any] = {"auto_cleanup_enabled": enabled}
        if schedule:
            if schedule not in CLEANUP_INTERVALS:
                msg = f"Unknown cleanup schedule: {schedule!r}"
                raise ValueError(msg)
            changes["cleanup_schedule"] = schedule
        await self._update(**changes)

    async def set_max_storage_size(self, size_mb: int) -> None:
        await self._update(max_storage_size_mb=max(MIN_STORAGE_SIZE_MB, size_mb))

    async def set_keep_recent_days(self, days: int) -> None:
        await self._update(keep_recent_days=max(MIN_KEEP_RECENT_DAYS, days))

    def get_privacy_settings(self) -> PrivacySettings:
        s = self._state
        return PrivacySettings(
            incognito_mode=s.incognito_mode,
            data_retention_days=s.data_retention_days,
            auto_cleanup_enabled=s.auto_cleanup_enabled,
            cleanup_schedule=s.cleanup_schedule,
            max_storage_size_mb=s.max_storage_size_mb,
            keep_recent_days=s.keep_recent_days,
        )

    def should_run_auto_cleanup(self, now: datetime | None = None) -> bool:
        """True when auto-cleanup is on and the schedule interval has elapsed.

        Elapsed time is measured from the last recorded cleanup.  Until one
        has been recorded, the last save time is used instead.
        """
        s = self._state
        if not s.auto_cleanup_enabled:
            return False
        since = s.last_cleanup_at or s.last_saved
        return (now or utcnow()) - since > CLEANUP_INTERVALS[s.cleanup_schedule]

    async def record_cleanup(self, when: datetime | None = None) -> None:
        await self._update(last_cleanup_at=as_utc(when) if when else utcnow())

    # -- Bulk ------------------------------------------------------------------

    async def reset_to_defaults(self) -> None:
        self.reset()
        await self.save()

    def export_config(self) -> ConfigState:
        return self.get_state()

    async def import_config(self, config: dict[str, Any]) -> None:
        """Replace the configuration with *config*, default-filling gaps."""
        imported = coerce_model(ConfigState, migrate_config(dict(config)), source="import")
        self._replace_state(imported)
        await self.save()
