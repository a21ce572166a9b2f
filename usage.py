import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

import config
from burn_rate import (
    calculate_block_percentage,
    calculate_burn_rate,
    get_activity_level,
    get_total_tokens,
    project_block_usage,
)
from collectors import claude
from models import ApiResponse, CostMode, EnrichedBlock, SortOrder, UsageBlock

log = logging.getLogger(__name__)

BlockLoader = Callable[..., list[UsageBlock]]


def _resolve_token_limit(token_limit: int | str | None, blocks: list[UsageBlock]) -> int | None:
    if token_limit is None:
        return None
    if token_limit != "max":
        return int(token_limit)
    # "max" means the heaviest block seen so far
    finished = [
        get_total_tokens(b.token_counts)
        for b in blocks
        if not b.is_gap and not b.is_active
    ]
    return max(finished) if finished else None


def enrich_block(block: UsageBlock, now: datetime | None = None) -> EnrichedBlock:
    """Attach totals and, for the active block only, burn rate and projection."""
    burn_rate = calculate_burn_rate(block) if block.is_active else None
    projection = project_block_usage(block, now) if block.is_active else None
    return EnrichedBlock(
        **block.model_dump(),
        total_tokens=get_total_tokens(block.token_counts),
        burn_rate=burn_rate,
        projection=projection,
        activity_level=get_activity_level(burn_rate.tokens_per_minute_for_indicator if burn_rate else 0),
        block_percentage=calculate_block_percentage(block.start_time, block.is_active, now),
    )


def get_blocks_usage(
    active: bool = False,
    recent: bool = False,
    mode: CostMode = "auto",
    order: SortOrder = "desc",
    token_limit: int | str | None = None,
    loader: BlockLoader | None = None,
    now: datetime | None = None,
) -> ApiResponse:
    loader = loader or claude.load_session_blocks
    now = now or datetime.now(timezone.utc)
    try:
        blocks = loader(mode=mode, order=order)
    except Exception as exc:
        log.exception("Error loading blocks usage")
        return ApiResponse(success=False, error=str(exc) or "Failed to load blocks usage data")

    limit = _resolve_token_limit(token_limit, blocks)

    if active:
        blocks = [b for b in blocks if b.is_active]
    if recent:
        cutoff = now - timedelta(days=config.RECENT_DAYS)
        blocks = [b for b in blocks if b.is_active or b.start_time >= cutoff]
    if limit is not None:
        blocks = [b for b in blocks if get_total_tokens(b.token_counts) <= limit]

    return ApiResponse(success=True, data=[enrich_block(b, now) for b in blocks])


def get_live_block_data(loader: BlockLoader | None = None, now: datetime | None = None) -> ApiResponse:
    """The single active billing block, or ``data=None`` when idle."""
    result = get_blocks_usage(active=True, loader=loader, now=now)
    if not result.success:
        return result

    blocks: list[EnrichedBlock] = result.data
    if not blocks:
        return ApiResponse(success=True, data=None, message="No active session block")
    if len(blocks) > 1:
        log.warning(
            "Usage loader reported %d active blocks (%s); using %s",
            len(blocks),
            ", ".join(b.id for b in blocks),
            blocks[0].id,
        )
    return ApiResponse(success=True, data=blocks[0])


def get_daily_usage(
    since: str | None = None,
    until: str | None = None,
    project: str | None = None,
    breakdown: bool = False,
    mode: CostMode = "auto",
    loader: Callable | None = None,
) -> ApiResponse:
    loader = loader or claude.load_daily_usage
    try:
        data = loader(since=since, until=until, project=project, breakdown=breakdown, mode=mode)
    except Exception as exc:
        log.exception("Error loading daily usage")
        return ApiResponse(success=False, error=str(exc) or "Failed to load daily usage data")
    return ApiResponse(success=True, data=data)
