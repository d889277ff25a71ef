"""Configuration management for Clutter Notes."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

_CONFIG_VERSION = 1

DATABASE_FILENAME = "clutter.db"


def _default_config_path() -> Path:
    """Get default config file path following XDG spec."""
    config_home = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return config_home / "clutter-notes" / "config.json"


class Config:
    """Application configuration with persistence."""

    def __init__(self, config_path: Path | None = None) -> None:
        self._path = config_path or _default_config_path()
        self._data: dict[str, Any] = self._load()

    def _load(self) -> dict[str, Any]:
        """Load config from disk or return defaults."""
        if not self._path.exists():
            return self._defaults()
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
                if not isinstance(data, dict) or data.get("version") != _CONFIG_VERSION:
                    return self._defaults()
                return {**self._defaults(), **data}
        except (OSError, json.JSONDecodeError):
            return self._defaults()

    def _defaults(self) -> dict[str, Any]:
        """Return default configuration."""
        return {
            "version": _CONFIG_VERSION,
            "storage_folder": os.getenv("CLUTTER_STORAGE_FOLDER", ""),
            "api_host": os.getenv("CLUTTER_HOST", "127.0.0.1"),
            "api_port": int(os.getenv("CLUTTER_PORT", "8765")),
            "log_level": os.getenv("CLUTTER_LOG_LEVEL", "INFO").upper(),
        }

    def save(self) -> None:
        """Persist config to disk."""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2)
        except OSError:
            pass  # best effort, next run uses defaults

    @property
    def path(self) -> Path:
        return self._path

    # -- Getters --

    @property
    def storage_folder(self) -> str:
        return str(self._data.get("storage_folder") or "")

    @property
    def database_path(self) -> str | None:
        """Database file inside the storage folder, or None if none is chosen."""
        if not self.storage_folder:
            return None
        return str(Path(self.storage_folder).expanduser() / DATABASE_FILENAME)

    @property
    def api_host(self) -> str:
        return str(self._data.get("api_host", "127.0.0.1"))

    @property
    def api_port(self) -> int:
        return int(self._data.get("api_port", 8765))

    @property
    def log_level(self) -> str:
        return str(self._data.get("log_level", "INFO"))

    # -- Setters --

    def set_storage_folder(self, value: str) -> None:
        self._data["storage_folder"] = value.strip()

    def set_api_host(self, value: str) -> None:
        self._data["api_host"] = value.strip()

    def set_api_port(self, value: int) -> None:
        self._data["api_port"] = min(65535, max(1, int(value)))

    def set_log_level(self, value: str) -> None:
        self._data["log_level"] = value.strip().upper()
