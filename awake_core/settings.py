"""
JSON-backed settings for the keep-awake runtime.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from awake_core import logger as app_logger

_LOGGER = app_logger.get_logger()

DEFAULT_POLL_INTERVAL_MS = 2000
SETTINGS_FILE_NAME = "settings.json"


class SettingsError(ValueError):
    """Raised when the settings file content is not a usable settings record."""


@dataclass(eq=True)
class Settings:
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS

    def __post_init__(self) -> None:
        if isinstance(self.poll_interval_ms, bool) or not isinstance(self.poll_interval_ms, int):
            raise SettingsError(f"Poll interval must be an integer, got {self.poll_interval_ms!r}.")
        if self.poll_interval_ms <= 0:
            raise SettingsError(f"Poll interval must be positive, got {self.poll_interval_ms}.")

    def to_dict(self) -> dict:
        return {"checkInterval": self.poll_interval_ms}

    @classmethod
    def from_dict(cls, data: Any) -> "Settings":
        if not isinstance(data, dict):
            raise SettingsError("Settings root must be a JSON object.")
        if "checkInterval" not in data:
            raise SettingsError("Settings are missing 'checkInterval'.")
        return cls(poll_interval_ms=data["checkInterval"])


class SettingsStore:
    """Loads and persists Settings, substituting defaults for missing or corrupt files."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path is not None else app_logger.app_data_dir() / SETTINGS_FILE_NAME

    def load(self) -> Settings:
        try:
            contents = self.path.read_text(encoding="utf-8")
            return Settings.from_dict(json.loads(contents))
        except FileNotFoundError:
            _LOGGER.info("No settings file at {}; writing defaults.", self.path)
            return self._reset_to_default()
        except OSError as exc:
            _LOGGER.warning("Unable to read settings {}: {}. Using defaults.", self.path, exc)
            return self._reset_to_default()
        except (UnicodeDecodeError, RecursionError, json.JSONDecodeError, SettingsError) as exc:
            _LOGGER.warning("Settings file {} is invalid ({}). Restoring defaults.", self.path, exc)
            return self._reset_to_default()

    def save(self, settings: Settings) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(settings.to_dict(), indent=2), encoding="utf-8")
        except OSError as exc:
            _LOGGER.error("Failed to persist settings to {}: {}", self.path, exc)

    def _reset_to_default(self) -> Settings:
        settings = Settings()
        self.save(settings)
        return settings
