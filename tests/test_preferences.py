import json

import pytest

import preferences
from models import GroupingPreferences


def test_defaults_when_nothing_stored(prefs_path):
    assert preferences.load_grouping_preferences() == GroupingPreferences(
        enabled=True,
        time_window=10000,
        min_events_to_group=2,
        group_by_tool=True,
        group_by_session=True,
        group_by_event_type=True,
        max_group_size=20,
    )


def test_stored_values_override_defaults(prefs_path):
    prefs_path.write_text(json.dumps({"timeWindow": 5000, "groupByTool": False}))
    prefs = preferences.load_grouping_preferences()
    assert prefs.time_window == 5000
    assert prefs.group_by_tool is False
    assert prefs.max_group_size == 20


@pytest.mark.parametrize("content", ["{not json", "[1, 2]", '{"maxGroupSize": 0}'])
def test_malformed_file_falls_back_to_defaults(prefs_path, content, caplog):
    prefs_path.write_text(content)
    assert preferences.load_grouping_preferences() == preferences.DEFAULT_GROUPING_PREFERENCES
    assert "Failed to load grouping preferences" in caplog.text


def test_save_round_trips_in_camel_case(prefs_path):
    preferences.save_grouping_preferences(GroupingPreferences(min_events_to_group=4))
    assert json.loads(prefs_path.read_text())["minEventsToGroup"] == 4
    assert preferences.load_grouping_preferences().min_events_to_group == 4


@pytest.mark.parametrize("value, clamped", [(10, 1000), (7000, 7000), (60000, 15000)])
def test_clamp_time_window(value, clamped):
    assert preferences.clamp_time_window(value) == clamped


def test_presets():
    base = GroupingPreferences(enabled=False, group_by_tool=False)
    minimal = preferences.apply_preset(base, "minimal")
    assert (minimal.time_window, minimal.min_events_to_group, minimal.max_group_size) == (5000, 3, 10)
    assert minimal.enabled is True
    assert minimal.group_by_tool is False
    assert preferences.apply_preset(base, "aggressive").max_group_size == 50


def test_unknown_preset():
    with pytest.raises(ValueError, match="Unknown grouping preset"):
        preferences.apply_preset(GroupingPreferences(), "extreme")
