"""
Persistent settings manager for the co-driver.
Stores tuning overrides and user preferences in a JSON file that persists
across drives.

Settings file location:
    ~/.tramo_settings.json

Tuning sections mirror config.py ("lookahead", "curves", "zones",
"planner"); each key is the field name of the matching config dataclass,
e.g. {"zones": {"danger_angle": 55}}.

If the settings file is corrupt (invalid JSON), it will be deleted and
defaults will be used. A warning is logged on startup in this case.
"""

import dataclasses
import json
import logging
import os
import threading
from typing import Any, Dict, Optional

logger = logging.getLogger('tramo.settings')

SETTINGS_FILE = os.path.expanduser("~/.tramo_settings.json")


class SettingsManager:
    """
    Manages persistent user settings.

    Settings are loaded from JSON on startup and saved when changed.
    Thread-safe for concurrent access.
    """

    _instance: Optional['SettingsManager'] = None
    _lock = threading.Lock()

    def __new__(cls):
        """Singleton - only one settings manager instance."""
        with cls._lock:
            if cls._instance is None:
                instance = super().__new__(cls)
                instance._initialised = False
                cls._instance = instance
        return cls._instance

    def __init__(self):
        if self._initialised:
            return

        self._settings = {}
        self._file_path = SETTINGS_FILE
        self._save_lock = threading.Lock()
        self._load()
        self._initialised = True

    def _load(self):
        """Load settings from JSON file."""
        try:
            if os.path.exists(self._file_path):
                with open(self._file_path, 'r', encoding='utf-8') as f:
                    self._settings = json.load(f)
                logger.info("Settings loaded from %s", self._file_path)
            else:
                logger.debug("No settings file found, using defaults")
                self._settings = {}
        except json.JSONDecodeError as e:
            logger.warning(
                "Corrupt settings file deleted, using defaults: %s", e
            )
            self._delete_corrupt_file()
            self._settings = {}
        except OSError as e:
            logger.warning("Could not load settings: %s", e)
            self._settings = {}

    def _delete_corrupt_file(self):
        try:
            if os.path.exists(self._file_path):
                os.remove(self._file_path)
                logger.info("Removed corrupt settings file: %s", self._file_path)
        except OSError as e:
            logger.error("Failed to remove corrupt settings file: %s", e)

    def _save(self):
        """Save settings to JSON file atomically."""
        with self._save_lock:
            temp_path = self._file_path + '.tmp'
            try:
                # Write to temp file first, then rename
                with open(temp_path, 'w', encoding='utf-8') as f:
                    json.dump(self._settings, f, indent=2)
                os.replace(temp_path, self._file_path)
            except (OSError, TypeError) as e:
                logger.warning("Could not save settings: %s", e)
                try:
                    if os.path.exists(temp_path):
                        os.remove(temp_path)
                except OSError:
                    pass

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a setting value.

        Args:
            key: Setting key (dot notation for nested, e.g. "zones.danger_angle")
            default: Default value if setting not found

        Returns:
            Setting value or default
        """
        keys = key.split('.')
        value = self._settings

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any, save: bool = True):
        """
        Set a setting value.

        Args:
            key: Setting key (dot notation for nested)
            value: Value to set
            save: Whether to save to file immediately (default True)
        """
        keys = key.split('.')
        settings = self._settings

        for k in keys[:-1]:
            if not isinstance(settings.get(k), dict):
                settings[k] = {}
            settings = settings[k]

        settings[keys[-1]] = value

        if save:
            self._save()

    def get_all(self) -> dict:
        """Get all settings as a dictionary."""
        return self._settings.copy()

    def reset(self):
        """Reset all settings to defaults (empty)."""
        self._settings = {}
        self._save()


def get_settings() -> SettingsManager:
    """Get the settings manager singleton."""
    return SettingsManager()


_TRUE_STRINGS = frozenset(("true", "1", "yes", "on"))
_FALSE_STRINGS = frozenset(("false", "0", "no", "off"))


def parse_bool(value: Any) -> bool:
    """
    Read a boolean from a settings value.

    JSON booleans pass through; strings like "false" or "off" from a
    hand-edited file are read for what they say. Raises ValueError for
    anything else.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    raise ValueError(f"not a boolean: {value!r}")


def section_overrides(settings: SettingsManager, section: str, config_cls) -> Dict[str, Any]:
    """
    Collect overrides for a config dataclass from one settings section.

    Only keys naming a field of config_cls are returned; values are coerced
    to the type of the field's default so a hand-edited "50" still works.
    Unknown keys and values that fail to convert are logged and skipped.
    """
    raw = settings.get(section, {})
    if not isinstance(raw, dict):
        logger.warning("Settings section '%s' is not a mapping, ignoring", section)
        return {}

    fields = {f.name: f for f in dataclasses.fields(config_cls)}
    overrides = {}
    for key, value in raw.items():
        f = fields.get(key)
        if f is None:
            logger.warning("Unknown setting %s.%s ignored", section, key)
            continue
        default = f.default
        try:
            if isinstance(default, bool):
                overrides[key] = parse_bool(value)
            elif isinstance(default, (int, float)):
                overrides[key] = type(default)(value)
            else:
                overrides[key] = value
        except (TypeError, ValueError):
            logger.warning("Invalid value for %s.%s: %r", section, key, value)
    return overrides
