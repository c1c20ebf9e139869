"""
User Preferences Manager for Restyle
Remembers the last activated base/style selection and sampling overrides.
"""

import json
from pathlib import Path
from typing import Any

from restyle.config import SAMPLING_DEFAULTS


# Valid ranges for user sampling overrides
_SAMPLING_RANGES = {
    'temperature': (0.0, 2.0),
    'top_k': (0, 200),
    'top_p': (0.0, 1.0),
    'min_p': (0.0, 1.0),
    'repeat_penalty': (0.5, 2.0),
    'max_tokens': (1, 8192),
}


class UserPreferencesManager:
    """
    Manages user preferences stored in preferences.json.

    A missing or corrupted file yields the default structure; save failures
    are logged and never raised.
    """

    def __init__(self, preferences_file: Path):
        """
        Initialize the preferences manager.

        Args:
            preferences_file: Path to preferences.json
        """
        self.preferences_file = Path(preferences_file)
        self._preferences = self._load_preferences()

    def _load_preferences(self) -> dict[str, Any]:
        default_structure = {
            "last_selection": {"base_repo": None, "style_repo": None},
            "sampling": {},
        }

        try:
            if self.preferences_file.exists():
                with open(self.preferences_file, encoding='utf-8') as f:
                    prefs = json.load(f)
                if not isinstance(prefs, dict):
                    return default_structure
                prefs.setdefault("last_selection", {"base_repo": None, "style_repo": None})
                prefs.setdefault("sampling", {})
                return prefs
            return default_structure
        except (OSError, json.JSONDecodeError):
            return default_structure

    def _save_preferences(self) -> None:
        try:
            self.preferences_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.preferences_file, 'w', encoding='utf-8') as f:
                json.dump(self._preferences, f, indent=2)
        except OSError as e:
            from restyle.logging_config import debug_log
            debug_log(f"[PREFS] Could not save user preferences: {e}")

    def get_last_selection(self) -> tuple[str | None, str | None]:
        """(base_repo, style_repo) of the last successful activation."""
        selection = self._preferences.get("last_selection") or {}
        return selection.get("base_repo"), selection.get("style_repo")

    def set_last_selection(self, base_repo: str | None, style_repo: str | None) -> None:
        self._preferences["last_selection"] = {"base_repo": base_repo, "style_repo": style_repo}
        self._save_preferences()

    def get_sampling_overrides(self) -> dict[str, Any]:
        return dict(self._preferences.get("sampling") or {})

    def set_sampling_override(self, key: str, value) -> None:
        """
        Store one sampling override.

        Raises:
            ValueError: If key is not a sampling parameter or value is out of range.
        """
        if key not in SAMPLING_DEFAULTS:
            raise ValueError(f"Unknown sampling parameter: {key}")
        low, high = _SAMPLING_RANGES[key]
        if not isinstance(value, (int, float)) or isinstance(value, bool) or not low <= value <= high:
            raise ValueError(f"{key} must be {low}-{high}, got {value}")
        self._preferences.setdefault("sampling", {})[key] = value
        self._save_preferences()

    def clear_sampling_overrides(self) -> None:
        self._preferences["sampling"] = {}
        self._save_preferences()

    def get(self, key: str, default: Any = None) -> Any:
        return self._preferences.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._preferences[key] = value
        self._save_preferences()


# Global instance
_user_prefs = None


def get_user_preferences(preferences_file: Path = None) -> UserPreferencesManager:
    """
    Get the global UserPreferencesManager instance (singleton pattern).

    Args:
        preferences_file: Optional path to preferences file (only used on first call)
    """
    global _user_prefs

    if _user_prefs is None:
        if preferences_file is None:
            from restyle.config import PREFERENCES_FILE
            preferences_file = PREFERENCES_FILE

        _user_prefs = UserPreferencesManager(preferences_file)

    return _user_prefs
