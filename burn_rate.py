"""Burn rate and end-of-block projection for 5-hour billing blocks.

Everything here is a pure function of a ``UsageBlock`` snapshot. A ``None``
result means "not applicable" (idle, gap or finished block), never failure.
"""
import math
from datetime import datetime, timezone

import config
from models import BurnRate, ProjectedUsage, TokenCounts, UsageBlock

BLOCK_DURATION_MS = config.SESSION_DURATION_HOURS * 60 * 60 * 1000

# tokens per minute
ACTIVITY_THRESHOLDS = {
    "Low": 1000,
    "Medium": 10000,
    "High": 50000,
}


def round_half_up(value: float, ndigits: int = 0) -> float:
    scale = 10 ** ndigits
    return math.floor(value * scale + 0.5) / scale


def get_total_tokens(counts: TokenCounts) -> int:
    return (
        counts.input_tokens
        + counts.output_tokens
        + counts.cache_creation_input_tokens
        + counts.cache_read_input_tokens
    )


def calculate_burn_rate(block: UsageBlock) -> BurnRate | None:
    """Tokens/minute and cost/hour between the first and last entry."""
    if not block.entries or block.is_gap:
        return None

    first = block.entries[0].timestamp
    last = block.entries[-1].timestamp
    duration_minutes = (last - first).total_seconds() / 60
    if duration_minutes <= 0:
        return None

    counts = block.token_counts
    # Cache tokens are left out of the indicator rate so cache-heavy sessions
    # keep the same activity thresholds.
    non_cache_tokens = counts.input_tokens + counts.output_tokens

    return BurnRate(
        tokens_per_minute=get_total_tokens(counts) / duration_minutes,
        tokens_per_minute_for_indicator=non_cache_tokens / duration_minutes,
        cost_per_hour=(block.cost_usd / duration_minutes) * 60,
    )


def project_block_usage(block: UsageBlock, now: datetime | None = None) -> ProjectedUsage | None:
    """Linear forecast of the block's totals at its nominal end.

    The observed burn rate is extended over the remaining minutes of the
    block. Future changes in pace are not modelled, so callers should
    present the numbers as an estimate.
    """
    if not block.is_active or block.is_gap:
        return None

    burn_rate = calculate_burn_rate(block)
    if burn_rate is None:
        return None

    now = now or datetime.now(timezone.utc)
    remaining_minutes = max(0.0, (block.end_time - now).total_seconds() / 60)

    total_tokens = get_total_tokens(block.token_counts) + burn_rate.tokens_per_minute * remaining_minutes
    total_cost = block.cost_usd + (burn_rate.cost_per_hour / 60) * remaining_minutes

    return ProjectedUsage(
        total_tokens=int(round_half_up(total_tokens)),
        total_cost=round_half_up(total_cost, 2),
        remaining_minutes=int(round_half_up(remaining_minutes)),
    )


def get_activity_level(tokens_per_minute: float) -> str:
    if tokens_per_minute <= 0:
        return "Idle"
    if tokens_per_minute < ACTIVITY_THRESHOLDS["Low"]:
        return "Low"
    if tokens_per_minute < ACTIVITY_THRESHOLDS["Medium"]:
        return "Medium"
    if tokens_per_minute < ACTIVITY_THRESHOLDS["High"]:
        return "High"
    return "Very High"


def calculate_block_percentage(
    start_time: datetime | None, is_active: bool, now: datetime | None = None
) -> int:
    """Share of the 5-hour block that has elapsed, 0-100."""
    if not is_active or start_time is None:
        return 0
    now = now or datetime.now(timezone.utc)
    elapsed_ms = (now - start_time).total_seconds() * 1000
    return max(0, min(100, int(round_half_up(elapsed_ms / BLOCK_DURATION_MS * 100))))
