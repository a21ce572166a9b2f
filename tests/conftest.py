"""Shared fixtures for the hook monitor test suite."""

from datetime import datetime, timedelta, timezone

import pytest

import config
import db
from grouping import GroupingSession
from models import GroupingPreferences, HookEvent, TokenCounts, UsageBlock, UsageEntry

BASE_MS = 1_700_000_000_000
NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_event(timestamp, tool=None, command=None, file_path=None, session="s1", app="app",
               event_type="PreToolUse", summary=None, event_id=None):
    payload = {}
    if tool:
        payload["tool_name"] = tool
    tool_input = {}
    if command:
        tool_input["command"] = command
    if file_path:
        tool_input["file_path"] = file_path
    if tool_input:
        payload["tool_input"] = tool_input
    return HookEvent(
        id=event_id if event_id is not None else timestamp,
        source_app=app,
        session_id=session,
        hook_event_type=event_type,
        payload=payload,
        summary=summary,
        timestamp=timestamp,
    )


def make_block(minutes_span=60, entries=2, counts=None, cost=3.0, active=True, gap=False,
               start=None, end=None):
    start = start or NOW - timedelta(hours=1)
    step = timedelta(minutes=minutes_span / max(entries - 1, 1))
    block_entries = [UsageEntry(timestamp=start + step * i) for i in range(entries)]
    return UsageBlock(
        id=start.isoformat(),
        start_time=start,
        end_time=end or start + timedelta(hours=5),
        is_active=active,
        is_gap=gap,
        entries=block_entries,
        token_counts=counts or TokenCounts(
            input_tokens=1000,
            output_tokens=2000,
            cache_creation_input_tokens=3000,
            cache_read_input_tokens=4000,
        ),
        cost_usd=cost,
    )


@pytest.fixture
def prefs():
    return GroupingPreferences(
        time_window=10000,
        min_events_to_group=2,
        max_group_size=20,
        group_by_session=True,
        group_by_tool=True,
        group_by_event_type=True,
    )


@pytest.fixture
def session():
    return GroupingSession()


@pytest.fixture
def tmp_db(tmp_path, monkeypatch):
    path = tmp_path / "events.db"
    monkeypatch.setattr(db, "DB_PATH", path)
    return path


@pytest.fixture
def prefs_path(tmp_path, monkeypatch):
    path = tmp_path / "grouping-preferences.json"
    monkeypatch.setattr(config, "PREFERENCES_PATH", path)
    return path


@pytest.fixture
def projects_dir(tmp_path, monkeypatch):
    path = tmp_path / "projects"
    path.mkdir()
    monkeypatch.setattr(config, "CLAUDE_PROJECTS_DIR", path)
    return path
