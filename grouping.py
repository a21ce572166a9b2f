"""Sliding-window grouping of hook events for the dashboard feed.

A grouping pass turns the current event list into a newest-first mix of raw
events and ``GroupedEvent`` records. Group objects are rebuilt on every pass;
what survives between passes lives in a ``GroupingSession``: the stable id
handed out per group key and the last change seen for that id.
"""
import logging
import math
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Union

from pydantic import ValidationError

from models import (
    ChangeType,
    EventGroup,
    GroupedEvent,
    GroupingCriteria,
    GroupingPreferences,
    GroupingStats,
    GroupMeta,
    HookEvent,
    ToolPayload,
)

log = logging.getLogger(__name__)

CHIP_MAX_LENGTH = 40
UPDATED_WINDOW_MS = 2000

_READ_RE = re.compile(r"^read\s+(.+)$", re.IGNORECASE)
_WRITE_RE = re.compile(r"^write\s+(?:to\s+)?(.+)$", re.IGNORECASE)

FeedItem = Union[HookEvent, GroupedEvent]


class GroupingSession:
    """Group identity and change state for one monitoring session."""

    def __init__(self):
        self._lock = threading.RLock()
        self._counter = 0
        self._ids: dict[str, str] = {}
        self._state: dict[str, tuple[int, int]] = {}  # id -> (count, last update ms)

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def stable_id(self, group_key: str) -> str:
        with self._lock:
            if group_key not in self._ids:
                self._counter += 1
                self._ids[group_key] = f"group-{self._counter}"
            return self._ids[group_key]

    def record_change(self, group_id: str, count: int, timestamp: int) -> None:
        with self._lock:
            self._state[group_id] = (count, timestamp)

    def get_group_change_type(self, group_id: str, now: float | None = None) -> ChangeType:
        with self._lock:
            state = self._state.get(group_id)
        if state is None:
            return "new"
        now = time.time() * 1000 if now is None else now
        if now - state[1] < UPDATED_WINDOW_MS:
            return "updated"
        return "unchanged"


@dataclass
class GroupingResult:
    items: list[FeedItem] = field(default_factory=list)
    stats: GroupingStats = field(default_factory=GroupingStats)


def _tool_payload(event: HookEvent) -> ToolPayload | None:
    try:
        return ToolPayload.model_validate(event.payload)
    except ValidationError:
        return None


def _tool_name(event: HookEvent) -> str | None:
    payload = _tool_payload(event)
    return payload.tool_name if payload and payload.tool_name else None


def _truncate(text: str) -> str:
    if len(text) > CHIP_MAX_LENGTH:
        return text[:CHIP_MAX_LENGTH] + "..."
    return text


def generate_group_key(event: HookEvent, prefs: GroupingPreferences) -> str:
    parts = []
    if prefs.group_by_session:
        parts.append(event.session_id)
    parts.append(event.source_app)
    if prefs.group_by_event_type:
        parts.append(event.hook_event_type)
    if prefs.group_by_tool:
        tool_name = _tool_name(event)
        if tool_name:
            parts.append(tool_name)
    return "|".join(parts)


def extract_chip(event: HookEvent) -> str | None:
    """Short label for an event: file name, command, or summary snippet."""
    payload = _tool_payload(event)
    tool_input = payload.tool_input if payload else None

    if tool_input and tool_input.file_path:
        return tool_input.file_path.split("/")[-1] or tool_input.file_path
    if tool_input and tool_input.command:
        return _truncate(tool_input.command)

    if event.summary:
        match = _READ_RE.match(event.summary) or _WRITE_RE.match(event.summary)
        if match:
            return match.group(1).strip()
        return _truncate(event.summary)

    return None


def generate_group_summary(group: EventGroup) -> str:
    tool_name = group.criteria.tool_name
    if not tool_name:
        return f"{group.criteria.event_type} operations"

    tool = tool_name.lower()
    if tool == "read":
        file_count = sum(1 for e in group.events if "." in (extract_chip(e) or ""))
        if file_count:
            return f"Read {file_count} file{'' if file_count == 1 else 's'}"
        return f"{tool_name} operations"
    if tool == "write":
        return "Write operations"
    if tool in ("edit", "multiedit"):
        return "Edit operations"
    if tool == "bash":
        return "Command executions"
    if tool == "task":
        return "Agent tasks"
    return f"{tool_name} operations"


def _open_group(event: HookEvent, group_id: str) -> EventGroup:
    timestamp = event.timestamp or 0
    chip = extract_chip(event)
    return EventGroup(
        id=group_id,
        criteria=GroupingCriteria(
            session_id=event.session_id,
            source_app=event.source_app,
            event_type=event.hook_event_type,
            tool_name=_tool_name(event),
        ),
        events=[event],
        start_time=timestamp,
        end_time=timestamp,
        last_updated=timestamp,
        count=1,
        chips=[chip] if chip else [],
    )


def create_grouped_event(group: EventGroup) -> GroupedEvent:
    base = group.events[0]
    meta = GroupMeta(
        count=group.count,
        time_range=(group.start_time, group.end_time),
        key=group.id,
        tool=group.criteria.tool_name,
        chips=list(dict.fromkeys(group.chips)),
        children=list(group.events),
        summary=generate_group_summary(group),
    )
    fields = base.model_dump(exclude={"timestamp"})
    return GroupedEvent(**fields, timestamp=group.end_time, group_meta=meta)


def _finalize(group: EventGroup, prefs: GroupingPreferences) -> list[FeedItem]:
    if group.count >= prefs.min_events_to_group:
        return [create_grouped_event(group)]
    return list(group.events)


def _display_time(item: FeedItem) -> int:
    if isinstance(item, GroupedEvent):
        return item.group_meta.time_range[1]
    return item.timestamp or 0


def group_events(
    events: list[HookEvent],
    prefs: GroupingPreferences,
    session: GroupingSession,
) -> GroupingResult:
    """Run one grouping pass over ``events``.

    Events sharing a group key stay together while each one arrives within
    ``prefs.time_window`` ms of the group's last event and the group is
    below ``prefs.max_group_size``. Groups smaller than
    ``prefs.min_events_to_group`` are emitted as their individual events.
    """
    if not prefs.enabled:
        items = list(events)
        return GroupingResult(items=items, stats=grouping_stats(len(events), items))

    result: list[FeedItem] = []
    active: dict[str, EventGroup] = {}

    with session.lock:
        for event in sorted(events, key=lambda e: e.timestamp or 0):
            key = generate_group_key(event, prefs)
            timestamp = event.timestamp or 0
            existing = active.get(key)

            if (
                existing is not None
                and timestamp - existing.end_time <= prefs.time_window
                and existing.count < prefs.max_group_size
            ):
                existing.events.append(event)
                existing.end_time = timestamp
                existing.last_updated = timestamp
                existing.count += 1
                session.record_change(existing.id, existing.count, timestamp)

                chip = extract_chip(event)
                if chip and chip not in existing.chips:
                    existing.chips.append(chip)
                continue

            if existing is not None:
                result.extend(_finalize(existing, prefs))

            group = _open_group(event, session.stable_id(key))
            session.record_change(group.id, 1, timestamp)
            active[key] = group

    for group in active.values():
        result.extend(_finalize(group, prefs))

    result.sort(key=_display_time, reverse=True)
    log.debug("Grouped %d events into %d feed items", len(events), len(result))
    return GroupingResult(items=result, stats=grouping_stats(len(events), result))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def grouping_stats(total_events: int, items: list[FeedItem]) -> GroupingStats:
    groups = [item for item in items if isinstance(item, GroupedEvent)]
    processed = len(items)
    reduction = _round_half_up((1 - processed / total_events) * 100) if total_events else 0
    average = _round_half_up(sum(g.group_meta.count for g in groups) / len(groups)) if groups else 0
    return GroupingStats(
        total_events=total_events,
        processed_events=processed,
        grouped_count=len(groups),
        individual_count=processed - len(groups),
        reduction_percentage=reduction,
        average_group_size=average,
    )
