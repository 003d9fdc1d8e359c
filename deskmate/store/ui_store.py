"""UIStore: theme, colour and display preferences."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field

from deskmate.config import settings
from deskmate.store.base import BaseStore, coerce_model
from deskmate.store.files import read_json, write_json
from deskmate.store.models import ThemeName, snake_case

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

ResolvedTheme = Literal["light", "dark"]

MIN_FONT_SIZE = 12
MAX_FONT_SIZE = 24

# Never written to disk.
TRANSIENT_FIELDS = frozenset({"is_minimized", "is_settings_open", "is_processing"})


class ColorScheme(BaseModel):
    primary: str
    secondary: str
    accent: str
    background: str
    surface: str
    text: str
    text_secondary: str
    border: str
    success: str
    warning: str
    error: str


BUILTIN_PRESETS: dict[str, ColorScheme] = {
    "default": ColorScheme(
        primary="#6366f1", secondary="#818cf8", accent="#a855f7", background="#ffffff",
        surface="#f8fafc", text="#1e293b", text_secondary="#64748b", border="#e2e8f0",
        success="#10b981", warning="#f59e0b", error="#ef4444",
    ),
    "dark": ColorScheme(
        primary="#6366f1", secondary="#818cf8", accent="#a855f7", background="#0f172a",
        surface="#1e293b", text="#f1f5f9", text_secondary="#94a3b8", border="#334155",
        success="#10b981", warning="#f59e0b", error="#ef4444",
    ),
    "ocean": ColorScheme(
        primary="#0891b2", secondary="#06b6d4", accent="#0284c7", background="#ffffff",
        surface="#f0f9ff", text="#0c4a6e", text_secondary="#0369a1", border="#bae6fd",
        success="#059669", warning="#d97706", error="#dc2626",
    ),
    "forest": ColorScheme(
        primary="#16a34a", secondary="#22c55e", accent="#15803d", background="#ffffff",
        surface="#f0fdf4", text="#14532d", text_secondary="#166534", border="#bbf7d0",
        success="#059669", warning="#ca8a04", error="#dc2626",
    ),
    "sunset": ColorScheme(
        primary="#ea580c", secondary="#f97316", accent="#c2410c", background="#ffffff",
        surface="#fff7ed", text="#9a3412", text_secondary="#c2410c", border="#fed7aa",
        success="#16a34a", warning="#eab308", error="#dc2626",
    ),
}


class WindowState(BaseModel):
    is_expanded: bool = False
    width: int = 700
    height: int = 80
    x: int = 0
    y: int = 0


class Animations(BaseModel):
    enabled: bool = True
    duration: int = 300
    easing: str = "ease-in-out"


class Transparency(BaseModel):
    enabled: bool = True
    level: int = Field(default=85, ge=0, le=100)


class UIState(BaseModel):
    theme: ThemeName = "system"
    current_theme: ResolvedTheme = "light"
    is_minimized: bool = False
    is_settings_open: bool = False
    is_processing: bool = False
    window_state: WindowState = Field(default_factory=WindowState)
    colors: ColorScheme = Field(default_factory=lambda: BUILTIN_PRESETS["default"].model_copy())
    color_presets: dict[str, ColorScheme] = Field(default_factory=lambda: dict(BUILTIN_PRESETS))
    selected_color_preset: str = "default"
    custom_colors: bool = False
    animations: Animations = Field(default_factory=Animations)
    transparency: Transparency = Field(default_factory=Transparency)
    font_size: int = 14
    font_family: str = "system-ui, -apple-system, sans-serif"
    compact_mode: bool = False
    show_timestamps: bool = True
    show_message_count: bool = False
    auto_scroll: bool = True


def _light_theme() -> ResolvedTheme:
    return "light"


def _with_builtin_presets(raw: dict[str, Any]) -> dict[str, Any]:
    presets = raw.get("color_presets")
    merged: dict[str, Any] = dict(BUILTIN_PRESETS)
    if isinstance(presets, dict):
        merged.update(presets)
    return {**raw, "color_presets": merged}


def _snake_keys(value: Any) -> Any:
    if not isinstance(value, dict):
        return value
    return {snake_case(key): item for key, item in value.items()}


def migrate_ui(raw: dict[str, Any]) -> dict[str, Any]:
    """Upgrade a camelCase preferences document to field names.

    Preset names are user data and keep their spelling; only the colour
    keys inside each preset are renamed.
    """
    if not any(key != snake_case(key) for key in raw):
        return raw
    migrated = {snake_case(key): _snake_keys(value) for key, value in raw.items() if key != "colorPresets"}
    presets = raw.get("colorPresets")
    if isinstance(presets, dict):
        migrated["color_presets"] = {name: _snake_keys(scheme) for name, scheme in presets.items()}
    return migrated


def _persisted(raw: dict[str, Any]) -> dict[str, Any]:
    migrated = migrate_ui(raw)
    return _with_builtin_presets({k: v for k, v in migrated.items() if k not in TRANSIENT_FIELDS})


class UIStore(BaseStore[UIState]):
    """Display preferences.  Transient window flags are never persisted.

    *detect_system_theme* resolves the ``"system"`` theme; the desktop shell
    passes the OS query, everything else gets light.
    """

    def __init__(
        self,
        data_dir: Path | None = None,
        detect_system_theme: Callable[[], ResolvedTheme] | None = None,
    ) -> None:
        super().__init__()
        self._path = (data_dir or settings.data_dir) / "ui-preferences" / "ui-preferences.json"
        self._detect_system_theme = detect_system_theme or _light_theme
        if self._state.theme == "system":
            self._set_state(current_theme=self._detect_system_theme())

    @property
    def path(self) -> Path:
        return self._path

    def default_state(self) -> UIState:
        return UIState()

    # -- Persistence -----------------------------------------------------------

    async def load(self) -> None:
        try:
            raw = await read_json(self._path)
        except (json.JSONDecodeError, OSError, UnicodeDecodeError):
            logger.warning("Could not read UI preferences at %s", self._path, exc_info=True)
            return
        if raw is None:
            logger.info("No UI preferences at %s, using defaults", self._path)
            return
        if not isinstance(raw, dict):
            logger.warning("UI preferences at %s are not an object, ignoring them", self._path)
            return

        loaded = coerce_model(UIState, _persisted(raw), source=str(self._path))
        self._set_state(**self._persistent_fields(loaded))
        logger.info("UI preferences loaded")

    def _persistent_fields(self, state: UIState) -> dict[str, Any]:
        fields = {name: getattr(state, name) for name in UIState.model_fields if name not in TRANSIENT_FIELDS}
        if state.theme == "system":
            fields["current_theme"] = self._detect_system_theme()
        return fields

    async def save(self) -> None:
        await write_json(self._path, self.export_ui_config())
        logger.debug("UI preferences saved")

    async def _update(self, **changes: Any) -> None:
        self._set_state(**changes)
        await self.save()

    def export_ui_config(self) -> dict[str, Any]:
        return self._state.model_dump(mode="json", exclude=set(TRANSIENT_FIELDS))

    async def import_ui_config(self, config: dict[str, Any]) -> None:
        """Replace preferences with *config*; transient flags are left alone."""
        imported = coerce_model(UIState, _persisted(config), source="import")
        self._set_state(**self._persistent_fields(imported))
        await self.save()

    async def reset_to_defaults(self) -> None:
        self._set_state(**self._persistent_fields(self.default_state()))
        await self.save()

    # -- Theme and colours -----------------------------------------------------

    async def set_theme(self, theme: ThemeName) -> None:
        resolved: ResolvedTheme = self._detect_system_theme() if theme == "system" else theme
        changes: dict[str, Any] = {"theme": theme, "current_theme": resolved}

        if not self._state.custom_colors:
            presets = self._state.color_presets
            if resolved == "dark" and self._state.selected_color_preset == "default":
                changes.update(selected_color_preset="dark", colors=presets["dark"])
            elif resolved == "light" and self._state.selected_color_preset == "dark":
                changes.update(selected_color_preset="default", colors=presets["default"])

        await self._update(**changes)

    async def set_color_preset(self, name: str) -> bool:
        preset = self._state.color_presets.get(name)
        if preset is None:
            return False
        await self._update(selected_color_preset=name, colors=preset, custom_colors=False)
        return True

    async def set_custom_colors(self, **colors: str) -> None:
        merged = ColorScheme.model_validate({**self._state.colors.model_dump(), **colors})
        await self._update(colors=merged, custom_colors=True, selected_color_preset="custom")

    async def create_color_preset(self, name: str, colors: ColorScheme) -> None:
        preset = colors.model_copy()
        await self._update(
            color_presets={**self._state.color_presets, name: preset},
            selected_color_preset=name,
            colors=preset,
            custom_colors=False,
        )

    async def delete_color_preset(self, name: str) -> bool:
        """Delete a user preset.  Built-in and unknown presets return False."""
        if name in BUILTIN_PRESETS or name not in self._state.color_presets:
            return False
        changes: dict[str, Any] = {
            "color_presets": {k: v for k, v in self._state.color_presets.items() if k != name}
        }
        if self._state.selected_color_preset == name:
            changes.update(
                selected_color_preset="default",
                colors=self._state.color_presets["default"],
                custom_colors=False,
            )
        await self._update(**changes)
        return True

    # -- Window and transient flags --------------------------------------------

    def set_window_state(self, **window: Any) -> None:
        merged = WindowState.model_validate({**self._state.window_state.model_dump(), **window})
        self._set_state(window_state=merged)

    def set_processing(self, is_processing: bool) -> None:
        self._set_state(is_processing=is_processing)

    def set_settings_open(self, is_open: bool) -> None:
        self._set_state(is_settings_open=is_open)

    def set_minimized(self, is_minimized: bool) -> None:
        self._set_state(is_minimized=is_minimized)

    # -- Display preferences ---------------------------------------------------

    async def set_animations(self, **animations: Any) -> None:
        merged = Animations.model_validate({**self._state.animations.model_dump(), **animations})
        await self._update(animations=merged)

    async def set_transparency(self, **transparency: Any) -> None:
        merged = Transparency.model_validate({**self._state.transparency.model_dump(), **transparency})
        await self._update(transparency=merged)

    async def set_font_size(self, font_size: int) -> None:
        await self._update(font_size=max(MIN_FONT_SIZE, min(MAX_FONT_SIZE, font_size)))

    async def set_font_family(self, font_family: str) -> None:
        await self._update(font_family=font_family)

    async def set_compact_mode(self, enabled: bool) -> None:
        await self._update(compact_mode=enabled)

    async def set_show_timestamps(self, enabled: bool) -> None:
        await self._update(show_timestamps=enabled)

    async def set_show_message_count(self, enabled: bool) -> None:
        await self._update(show_message_count=enabled)

    async def set_auto_scroll(self, enabled: bool) -> None:
        await self._update(auto_scroll=enabled)

    def get_css_variables(self) -> dict[str, str]:
        s = self._state
        c = s.colors
        return {
            "--color-primary": c.primary,
            "--color-secondary": c.secondary,
            "--color-accent": c.accent,
            "--color-background": c.background,
            "--color-surface": c.surface,
            "--color-text": c.text,
            "--color-text-secondary": c.text_secondary,
            "--color-border": c.border,
            "--color-success": c.success,
            "--color-warning": c.warning,
            "--color-error": c.error,
            "--animation-duration": f"{s.animations.duration}ms",
            "--animation-easing": s.animations.easing,
            "--transparency-level": f"{s.transparency.level}%",
            "--font-size": f"{s.font_size}px",
            "--font-family": s.font_family,
        }
