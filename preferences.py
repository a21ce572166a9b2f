import logging
from pathlib import Path

from pydantic import ValidationError

import config
from models import GroupingPreferences

log = logging.getLogger(__name__)

DEFAULT_GROUPING_PREFERENCES = GroupingPreferences()

MIN_TIME_WINDOW = 1000
MAX_TIME_WINDOW = 15000

PRESETS = {
    "aggressive": {"time_window": 15000, "min_events_to_group": 2, "max_group_size": 50},
    "normal": {"time_window": 10000, "min_events_to_group": 2, "max_group_size": 20},
    "minimal": {"time_window": 5000, "min_events_to_group": 3, "max_group_size": 10},
}


def load_grouping_preferences(path: Path | None = None) -> GroupingPreferences:
    """Stored preferences layered over the defaults; defaults on any error."""
    path = path or config.PREFERENCES_PATH
    if not path.exists():
        return DEFAULT_GROUPING_PREFERENCES.model_copy()
    try:
        # unset fields fall back to the model defaults
        return GroupingPreferences.model_validate_json(path.read_text())
    except (OSError, ValidationError) as exc:
        log.warning("Failed to load grouping preferences from %s: %s", path, exc)
        return DEFAULT_GROUPING_PREFERENCES.model_copy()


def save_grouping_preferences(prefs: GroupingPreferences, path: Path | None = None) -> None:
    path = path or config.PREFERENCES_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(prefs.model_dump_json(by_alias=True, indent=2))


def clamp_time_window(milliseconds: int) -> int:
    return max(MIN_TIME_WINDOW, min(MAX_TIME_WINDOW, milliseconds))


def apply_preset(prefs: GroupingPreferences, name: str) -> GroupingPreferences:
    if name not in PRESETS:
        raise ValueError(f"Unknown grouping preset: {name}")
    return prefs.model_copy(update={"enabled": True, **PRESETS[name]})
