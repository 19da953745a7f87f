"""Settings access helpers for JSON-based configuration.

Two layers live here: `JsonSettings` reads the application config file
(storage location, logging, defaults), and the `settings_*` helpers convert
the user's `Settings` to and from the camelCase records kept in storage.
"""

from __future__ import annotations

from dataclasses import fields
import json
from pathlib import Path
from typing import Any

from loguru import logger

from core.models import Settings

VALID_UI_SCALES = ("small", "medium", "large")
VALID_DENSITIES = ("compact", "comfortable", "spacious")

# Settings field -> storage key
SETTINGS_KEYS: dict[str, str] = {
    "download_directory": "downloadDirectory",
    "ungrouped_directory": "ungroupedDirectory",
    "filename_template": "filenameTemplate",
    "auto_rename": "autoRename",
    "confirm_download": "confirmDownload",
    "list_thumbnail_size": "listThumbnailSize",
    "grid_thumbnail_size": "gridThumbnailSize",
    "show_dimensions": "showDimensions",
    "show_filetype": "showFiletype",
    "clear_on_download": "clearOnDownload",
    "remember_groups": "rememberGroups",
    "theme": "theme",
    "ui_scale": "uiScale",
    "density": "density",
    "download_concurrency": "downloadConcurrency",
    "parallel_downloads": "parallelDownloads",
}


class JsonSettings:
    """Lightweight JSON settings reader with dotted-key access."""

    def __init__(self, settings_path: str | Path) -> None:
        self._path = Path(settings_path)
        if not self._path.exists():
            raise FileNotFoundError(f"settings.json not found: {self._path}")
        with self._path.open("r", encoding="utf-8") as f:
            self._data = json.load(f)

    def get(self, key: str, default: Any | None = None) -> Any:
        """Return value for dotted `key`, or `default` if not present."""
        parts = key.split(".")
        node: Any = self._data
        for part in parts:
            if isinstance(node, dict) and part in node:
                node = node[part]
            else:
                return default
        return node

    def default_settings(self) -> Settings:
        """User settings seeded from the `defaults` section."""
        raw = self.get("defaults", {})
        return settings_from_dict(raw if isinstance(raw, dict) else {})


def settings_to_dict(settings: Settings) -> dict[str, Any]:
    """Storage record for `settings` (camelCase keys)."""
    return {SETTINGS_KEYS[f.name]: getattr(settings, f.name) for f in fields(Settings)}


def settings_from_dict(raw: dict[str, Any], base: Settings | None = None) -> Settings:
    """Build `Settings` from a storage record.

    Unknown keys are ignored; values of the wrong type and invalid choices keep
    the value from `base` (defaults when omitted).
    """
    result = base or Settings()
    values: dict[str, Any] = {}
    for f in fields(Settings):
        key = SETTINGS_KEYS[f.name]
        if key not in raw:
            continue
        current = getattr(result, f.name)
        value = raw[key]
        if isinstance(current, bool):
            ok = isinstance(value, bool)
        elif isinstance(current, int):
            ok = isinstance(value, int) and not isinstance(value, bool) and value > 0
        else:
            ok = isinstance(value, str)
        if ok:
            values[f.name] = value
        else:
            logger.warning("Ignoring invalid setting {}={!r}", key, value)

    if values.get("ui_scale", result.ui_scale) not in VALID_UI_SCALES:
        logger.warning("Ignoring invalid uiScale {!r}", values.pop("ui_scale", None))
    if values.get("density", result.density) not in VALID_DENSITIES:
        logger.warning("Ignoring invalid density {!r}", values.pop("density", None))

    merged = {f.name: getattr(result, f.name) for f in fields(Settings)}
    merged.update(values)
    return Settings(**merged)
