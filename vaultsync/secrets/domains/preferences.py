"""Persistent user preferences for vaultsync.

Stored as JSON in the XDG config directory:
~/.config/vaultsync/preferences.json
"""
import json
from pathlib import Path
from typing import Any, Dict, Optional
import logging

logger = logging.getLogger(__name__)

APP_NAME = "vaultsync"
PREFERENCES_DIR = Path.home() / ".config" / APP_NAME
PREFERENCES_FILE = PREFERENCES_DIR / "preferences.json"

CONFIG_PATH = "config_path"


def _load() -> Dict[str, Any]:
    """Read preferences, treating a missing or unreadable file as empty."""
    if not PREFERENCES_FILE.exists():
        return {}

    try:
        with open(PREFERENCES_FILE, "r") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Failed to read preferences file {PREFERENCES_FILE}: {e}")
        return {}

    if not isinstance(data, dict):
        logger.error(f"Ignoring preferences file {PREFERENCES_FILE}: expected a JSON object")
        return {}
    return data


def _save(preferences: Dict[str, Any]) -> None:
    PREFERENCES_DIR.mkdir(parents=True, exist_ok=True)
    with open(PREFERENCES_FILE, "w") as f:
        json.dump(preferences, f, indent=2, sort_keys=True)


def get_preference(key: str) -> Optional[str]:
    return _load().get(key)


def set_preference(key: str, value: str) -> None:
    preferences = _load()
    preferences[key] = value
    _save(preferences)
    logger.info(f"Preference '{key}' set to: {value}")


def clear_preference(key: str) -> bool:
    """
    Remove a preference.

    Returns:
        True if the preference existed
    """
    preferences = _load()
    if preferences.pop(key, None) is None:
        logger.debug(f"Preference '{key}' not found, nothing to clear")
        return False
    _save(preferences)
    logger.info(f"Preference '{key}' cleared")
    return True


def get_all_preferences() -> Dict[str, Any]:
    return _load()
