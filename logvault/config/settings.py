"""Application settings.

Settings are read from a JSON file (``config/config.json`` by default)::

    {
        "logs_folder_path": "~/game/logs",
        "allow_backups": true,
        "allow_progressive_backups": false,
        "backups_per_file": 3
    }

Missing keys fall back to defaults. ``SettingsStore`` holds the live
values and notifies subscribers whenever one changes.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Callable

from logvault.backup.backup_config import (
    ALLOWED_BACKUPS_PER_FILE,
    ALTERNATE_ROOT_NAME,
    DEFAULT_IO_ATTEMPTS,
    ENABLED_BY_DEFAULT,
    MAX_BACKUPS_PER_FILE,
    MIN_BACKUPS_PER_FILE,
    PRIMARY_ROOT_NAME,
    SUPPORTED_EXTENSIONS,
)
from logvault.backup.errors import SettingsError

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DEFAULT_CONFIG_PATH = str(PROJECT_ROOT / "config" / "config.json")


@dataclass(frozen=True)
class Settings:
    logs_folder_path: str = "logs"
    lists_path: str = "data"
    history_db_path: str = "data/backup_history.db"
    allow_backups: bool = False
    allow_progressive_backups: bool = False
    backups_per_file: int = ALLOWED_BACKUPS_PER_FILE
    enabled_by_default: list[str] = field(default_factory=lambda: list(ENABLED_BY_DEFAULT))
    file_extensions: list[str] = field(default_factory=lambda: list(SUPPORTED_EXTENSIONS))
    primary_root_name: str = PRIMARY_ROOT_NAME
    alternate_root_name: str = ALTERNATE_ROOT_NAME
    io_attempts: int = DEFAULT_IO_ATTEMPTS

    def to_dict(self) -> dict:
        return asdict(self)


# Field name -> expected Python type, taken from the dataclass itself
FIELD_TYPES: dict[str, type] = {
    f.name: (list if str(f.type).startswith("list") else f.type)
    for f in fields(Settings)
}


@dataclass(frozen=True)
class SettingChange:
    """Notification sent to subscribers when a setting changes."""
    key: str
    old: object
    new: object


def resolve_path(path_str: str) -> str:
    return str(Path(os.path.expanduser(os.path.expandvars(path_str))).resolve())


def _coerce(key: str, value):
    expected = FIELD_TYPES[key]

    if expected is bool:
        if not isinstance(value, bool):
            raise SettingsError(f"{key} must be true or false")
        return value

    if expected is int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise SettingsError(f"{key} must be an integer")
        if key == "backups_per_file" and not (
                MIN_BACKUPS_PER_FILE <= value <= MAX_BACKUPS_PER_FILE):
            raise SettingsError(
                f"backups_per_file must be between {MIN_BACKUPS_PER_FILE} "
                f"and {MAX_BACKUPS_PER_FILE}")
        if key == "io_attempts" and value < 1:
            raise SettingsError("io_attempts must be at least 1")
        return value

    if expected is list:
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise SettingsError(f"{key} must be a list of strings")
        if key == "file_extensions":
            return [v if v.startswith(".") else f".{v}" for v in value]
        return list(value)

    if not isinstance(value, str) or not value:
        raise SettingsError(f"{key} must be a non-empty string")
    return value


def settings_from_dict(data: dict, base: Settings | None = None) -> Settings:
    """Build settings from a mapping, validating every known key."""
    values = {}
    for key, value in data.items():
        if key not in FIELD_TYPES:
            logger.warning("Ignoring unknown setting: %s", key)
            continue
        values[key] = _coerce(key, value)
    return replace(base or Settings(), **values)


def load_settings(config_path: str | None = None) -> Settings:
    path = Path(config_path or DEFAULT_CONFIG_PATH)
    if not path.is_file():
        logger.info("No config file at %s, using defaults", path)
        return Settings()
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as exc:
        raise SettingsError(f"Invalid config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise SettingsError(f"Config file {path} must contain a JSON object")
    return settings_from_dict(data)


def save_settings(settings: Settings, config_path: str):
    path = Path(config_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(settings.to_dict(), indent=4))


Listener = Callable[[SettingChange], None]


class SettingsStore:
    """Live settings with change notification.

    Listeners are called synchronously, in subscription order, once per
    changed key. A listener that raises is logged and the rest still run.
    """

    def __init__(self, settings: Settings | None = None, config_path: str | None = None):
        self.config_path = config_path
        self._settings = settings or Settings()
        self._listeners: list[Listener] = []

    @classmethod
    def from_file(cls, config_path: str | None = None) -> "SettingsStore":
        path = config_path or DEFAULT_CONFIG_PATH
        return cls(load_settings(path), config_path=path)

    @property
    def settings(self) -> Settings:
        return self._settings

    def subscribe(self, listener: Listener):
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener):
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def update(self, changes: dict, persist: bool = True) -> list[SettingChange]:
        """Validate and apply ``changes``; returns what actually changed."""
        updated = settings_from_dict(changes, base=self._settings)
        old = self._settings
        self._settings = updated

        notifications = [
            SettingChange(key, getattr(old, key), getattr(updated, key))
            for key in FIELD_TYPES
            if getattr(old, key) != getattr(updated, key)
        ]

        if notifications and persist and self.config_path:
            try:
                save_settings(updated, self.config_path)
            except OSError as exc:
                logger.error("Failed to save settings to %s: %s", self.config_path, exc)

        for change in notifications:
            logger.info("Setting changed: %s = %r", change.key, change.new)
            for listener in list(self._listeners):
                try:
                    listener(change)
                except Exception:
                    logger.exception("Settings listener failed for %s", change.key)
        return notifications
