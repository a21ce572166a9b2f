import json
import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from pathlib import Path

import config
from models import (
    CostMode,
    DailyUsage,
    ModelBreakdown,
    SortOrder,
    TokenCounts,
    UsageBlock,
    UsageEntry,
)

log = logging.getLogger(__name__)

SYNTHETIC_MODEL = "<synthetic>"

# $ per million tokens, matched by substring, longest key first
PRICING = {
    "claude-opus-4":     {"input": 15.0, "output": 75.0, "cache_write": 18.75, "cache_read": 1.50},
    "claude-opus":       {"input": 15.0, "output": 75.0, "cache_write": 18.75, "cache_read": 1.50},
    "claude-sonnet-4":   {"input": 3.0,  "output": 15.0, "cache_write": 3.75,  "cache_read": 0.30},
    "claude-3-7-sonnet": {"input": 3.0,  "output": 15.0, "cache_write": 3.75,  "cache_read": 0.30},
    "claude-3-5-sonnet": {"input": 3.0,  "output": 15.0, "cache_write": 3.75,  "cache_read": 0.30},
    "claude-sonnet":     {"input": 3.0,  "output": 15.0, "cache_write": 3.75,  "cache_read": 0.30},
    "claude-3-5-haiku":  {"input": 0.80, "output": 4.0,  "cache_write": 1.00,  "cache_read": 0.08},
    "claude-haiku":      {"input": 0.80, "output": 4.0,  "cache_write": 1.00,  "cache_read": 0.08},
}


def _get_pricing(model: str | None) -> dict[str, float] | None:
    name = (model or "").lower()
    for key in sorted(PRICING, key=len, reverse=True):
        if key in name:
            return PRICING[key]
    return None


def calculate_cost(usage: TokenCounts, model: str | None) -> float:
    pricing = _get_pricing(model)
    if pricing is None:
        return 0.0
    return (
        usage.input_tokens * pricing["input"]
        + usage.output_tokens * pricing["output"]
        + usage.cache_creation_input_tokens * pricing["cache_write"]
        + usage.cache_read_input_tokens * pricing["cache_read"]
    ) / 1_000_000


def _parse_entry(data: dict, project: str, mode: CostMode) -> UsageEntry | None:
    message = data.get("message")
    if not isinstance(message, dict):
        return None
    usage = message.get("usage")
    if not isinstance(usage, dict) or "input_tokens" not in usage or "output_tokens" not in usage:
        return None
    ts_str = data.get("timestamp")
    if not ts_str:
        return None

    ts = datetime.fromisoformat(ts_str.replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)

    counts = TokenCounts(
        input_tokens=usage.get("input_tokens", 0) or 0,
        output_tokens=usage.get("output_tokens", 0) or 0,
        cache_creation_input_tokens=usage.get("cache_creation_input_tokens", 0) or 0,
        cache_read_input_tokens=usage.get("cache_read_input_tokens", 0) or 0,
    )
    model = message.get("model")
    recorded = data.get("costUSD")

    if mode == "display":
        cost = recorded or 0.0
    elif mode == "calculate" or recorded is None:
        cost = calculate_cost(counts, model)
    else:
        cost = recorded

    return UsageEntry(
        timestamp=ts,
        usage=counts,
        cost_usd=cost,
        model=model,
        message_id=message.get("id"),
        request_id=data.get("requestId"),
        project=project,
    )


def load_usage_entries(mode: CostMode = "auto", projects_dir: Path | None = None) -> list[UsageEntry]:
    """Read every assistant usage record from Claude Code session transcripts."""
    projects_dir = projects_dir or config.CLAUDE_PROJECTS_DIR
    if not projects_dir.exists():
        return []

    entries: list[UsageEntry] = []
    seen: set[str] = set()

    for fp in sorted(projects_dir.rglob("*.jsonl")):
        if "tool-results" in str(fp):
            continue
        project = fp.relative_to(projects_dir).parts[0]
        try:
            lines = fp.read_text(errors="replace").splitlines()
        except OSError as exc:
            log.debug("Skipping unreadable transcript %s: %s", fp, exc)
            continue

        for line in lines:
            if '"usage"' not in line:
                continue
            try:
                entry = _parse_entry(json.loads(line), project, mode)
            except (json.JSONDecodeError, ValueError, TypeError, AttributeError):
                continue
            if entry is None:
                continue

            # Resumed sessions repeat earlier messages in new files
            if entry.message_id and entry.request_id:
                key = f"{entry.message_id}:{entry.request_id}"
                if key in seen:
                    continue
                seen.add(key)
            entries.append(entry)

    entries.sort(key=lambda e: e.timestamp)
    return entries


def _floor_to_hour(ts: datetime) -> datetime:
    return ts.astimezone(timezone.utc).replace(minute=0, second=0, microsecond=0)


def _create_block(start: datetime, entries: list[UsageEntry], now: datetime, duration: timedelta) -> UsageBlock:
    end = start + duration
    actual_end = entries[-1].timestamp
    counts = TokenCounts()
    cost = 0.0
    models: list[str] = []
    for entry in entries:
        counts.input_tokens += entry.usage.input_tokens
        counts.output_tokens += entry.usage.output_tokens
        counts.cache_creation_input_tokens += entry.usage.cache_creation_input_tokens
        counts.cache_read_input_tokens += entry.usage.cache_read_input_tokens
        cost += entry.cost_usd
        if entry.model and entry.model != SYNTHETIC_MODEL and entry.model not in models:
            models.append(entry.model)

    return UsageBlock(
        id=start.isoformat(),
        start_time=start,
        end_time=end,
        actual_end_time=actual_end,
        is_active=(now - actual_end) < duration and now < end,
        entries=entries,
        token_counts=counts,
        cost_usd=cost,
        models=models,
    )


def _create_gap_block(last_activity: datetime, next_activity: datetime, duration: timedelta) -> UsageBlock | None:
    if next_activity - last_activity <= duration:
        return None
    gap_start = last_activity + duration
    return UsageBlock(
        id=f"gap-{gap_start.isoformat()}",
        start_time=gap_start,
        end_time=next_activity,
        is_active=False,
        is_gap=True,
    )


def identify_session_blocks(
    entries: list[UsageEntry],
    now: datetime | None = None,
    duration_hours: float = config.SESSION_DURATION_HOURS,
) -> list[UsageBlock]:
    """Partition time-sorted entries into fixed-length billing blocks.

    A block opens at the hour its first entry falls in. The next entry
    starts a new block once it lands more than one block length after the
    block start or after the previous entry; idle stretches longer than a
    block become gap blocks.
    """
    if not entries:
        return []

    now = now or datetime.now(timezone.utc)
    duration = timedelta(hours=duration_hours)
    blocks: list[UsageBlock] = []
    block_start: datetime | None = None
    current: list[UsageEntry] = []

    for entry in entries:
        ts = entry.timestamp
        if block_start is None:
            block_start = _floor_to_hour(ts)
            current = [entry]
            continue

        since_start = ts - block_start
        since_last = ts - current[-1].timestamp
        if since_start > duration or since_last > duration:
            blocks.append(_create_block(block_start, current, now, duration))
            if since_last > duration:
                gap = _create_gap_block(current[-1].timestamp, ts, duration)
                if gap is not None:
                    blocks.append(gap)
            block_start = _floor_to_hour(ts)
            current = [entry]
        else:
            current.append(entry)

    blocks.append(_create_block(block_start, current, now, duration))
    return blocks


def load_session_blocks(
    mode: CostMode = "auto",
    order: SortOrder = "desc",
    projects_dir: Path | None = None,
    now: datetime | None = None,
) -> list[UsageBlock]:
    blocks = identify_session_blocks(load_usage_entries(mode, projects_dir), now=now)
    return sorted(blocks, key=lambda b: b.start_time, reverse=(order == "desc"))


def load_daily_usage(
    since: str | None = None,
    until: str | None = None,
    project: str | None = None,
    breakdown: bool = False,
    mode: CostMode = "auto",
    projects_dir: Path | None = None,
) -> list[DailyUsage]:
    """Aggregate usage per local calendar day. ``since``/``until`` are YYYYMMDD."""
    days: dict[str, DailyUsage] = {}
    per_model: dict[str, dict[str, ModelBreakdown]] = defaultdict(dict)

    for entry in load_usage_entries(mode, projects_dir):
        if project and entry.project != project:
            continue
        date_str = entry.timestamp.astimezone().strftime("%Y-%m-%d")
        compact = date_str.replace("-", "")
        if since and compact < since:
            continue
        if until and compact > until:
            continue

        day = days.setdefault(date_str, DailyUsage(date=date_str))
        usage = entry.usage
        day.input_tokens += usage.input_tokens
        day.output_tokens += usage.output_tokens
        day.cache_creation_tokens += usage.cache_creation_input_tokens
        day.cache_read_tokens += usage.cache_read_input_tokens
        day.total_cost += entry.cost_usd

        model = entry.model
        if not model or model == SYNTHETIC_MODEL:
            continue
        if model not in day.models_used:
            day.models_used.append(model)
        acc = per_model[date_str].setdefault(model, ModelBreakdown(model_name=model))
        acc.input_tokens += usage.input_tokens
        acc.output_tokens += usage.output_tokens
        acc.cache_creation_tokens += usage.cache_creation_input_tokens
        acc.cache_read_tokens += usage.cache_read_input_tokens
        acc.cost += entry.cost_usd

    for date_str, day in days.items():
        day.total_tokens = (
            day.input_tokens + day.output_tokens + day.cache_creation_tokens + day.cache_read_tokens
        )
        if breakdown:
            day.model_breakdowns = sorted(per_model[date_str].values(), key=lambda m: m.cost, reverse=True)

    return sorted(days.values(), key=lambda d: d.date)
