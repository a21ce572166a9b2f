from datetime import datetime, timezone
from typing import Annotated, Any, Literal

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidatorFunctionWrapHandler,
    field_validator,
)
from pydantic.alias_generators import to_camel

HookEventType = Literal[
    "PreToolUse",
    "PostToolUse",
    "Notification",
    "Stop",
    "SubagentStop",
    "PreCompact",
    "UserPromptSubmit",
]
AnimationType = Literal["enter", "exit", "update", "pulse", "highlight"]
ChangeType = Literal["new", "updated", "unchanged"]
CostMode = Literal["auto", "calculate", "display"]
SortOrder = Literal["asc", "desc"]


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# Naive timestamps are read as UTC.
UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class CamelModel(BaseModel):
    """Base for models that travel to the dashboard with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- hook events ---------------------------------------------------------


class HookEvent(BaseModel):
    id: int | None = None
    source_app: str
    session_id: str
    hook_event_type: str
    payload: dict[str, Any] = {}
    chat: list[Any] | None = None
    summary: str | None = None
    timestamp: int | None = None  # ms since epoch


class HookEventCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source_app: str = Field(min_length=1, max_length=100, pattern=r"^[a-zA-Z0-9_-]+$")
    session_id: str = Field(min_length=1, max_length=50, pattern=r"^[a-zA-Z0-9-]+$")
    hook_event_type: HookEventType
    payload: dict[str, Any]
    chat: list[Any] | None = Field(default=None, max_length=1000)
    summary: str | None = Field(default=None, max_length=1000)
    timestamp: int | None = Field(default=None, gt=0)


class ToolInput(BaseModel):
    model_config = ConfigDict(extra="allow")

    file_path: str | None = None
    command: str | None = None

    @field_validator("file_path", "command", mode="wrap")
    @classmethod
    def _drop_malformed(cls, value: Any, handler: ValidatorFunctionWrapHandler) -> Any:
        try:
            return handler(value)
        except ValidationError:
            return None


class ToolPayload(BaseModel):
    """The part of a hook payload that chips and group keys read."""

    model_config = ConfigDict(extra="allow")

    tool_name: str | None = None
    tool_input: ToolInput | None = None

    # A malformed field only blanks itself, so tool_name survives a bad tool_input.
    @field_validator("tool_name", "tool_input", mode="wrap")
    @classmethod
    def _drop_malformed(cls, value: Any, handler: ValidatorFunctionWrapHandler) -> Any:
        try:
            return handler(value)
        except ValidationError:
            return None


class HistoricalEvents(BaseModel):
    events: list[HookEvent] = []
    has_more: bool = False
    earliest_timestamp: str | None = None  # ISO


class FilterOptions(BaseModel):
    source_apps: list[str] = []
    session_ids: list[str] = []
    hook_event_types: list[str] = []


# --- grouping ------------------------------------------------------------


class GroupingPreferences(CamelModel):
    enabled: bool = True
    time_window: int = Field(default=10000, ge=0)  # ms
    min_events_to_group: int = Field(default=2, ge=1)
    group_by_tool: bool = True
    group_by_session: bool = True
    group_by_event_type: bool = True
    max_group_size: int = Field(default=20, ge=1)


class GroupingCriteria(CamelModel):
    session_id: str
    source_app: str
    event_type: str
    tool_name: str | None = None


class EventGroup(CamelModel):
    id: str
    criteria: GroupingCriteria
    events: list[HookEvent] = []
    start_time: int
    end_time: int
    last_updated: int
    count: int = 0
    summary: str | None = None
    chips: list[str] = []


class GroupMeta(CamelModel):
    group: Literal["aggregate"] = "aggregate"
    count: int
    time_range: tuple[int, int]
    key: str
    tool: str | None = None
    chips: list[str] = []
    children: list[HookEvent] = []
    summary: str | None = None


class GroupedEvent(HookEvent):
    model_config = ConfigDict(populate_by_name=True)

    is_group: Literal[True] = Field(default=True, alias="isGroup")
    group_meta: GroupMeta = Field(alias="groupMeta")


class GroupingStats(CamelModel):
    total_events: int = 0
    processed_events: int = 0
    grouped_count: int = 0
    individual_count: int = 0
    reduction_percentage: int = 0
    average_group_size: int = 0


# --- token usage ---------------------------------------------------------


class TokenCounts(CamelModel):
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0


class UsageEntry(CamelModel):
    timestamp: UtcDatetime
    usage: TokenCounts = TokenCounts()
    cost_usd: float = Field(default=0.0, alias="costUSD")
    model: str | None = None
    message_id: str | None = None
    request_id: str | None = None
    project: str | None = None


class UsageBlock(CamelModel):
    id: str
    start_time: UtcDatetime
    end_time: UtcDatetime
    actual_end_time: UtcDatetime | None = None
    is_active: bool = False
    is_gap: bool = False
    entries: list[UsageEntry] = []
    token_counts: TokenCounts = TokenCounts()
    cost_usd: float = Field(default=0.0, alias="costUSD")
    models: list[str] = []


class BurnRate(CamelModel):
    tokens_per_minute: float
    tokens_per_minute_for_indicator: float
    cost_per_hour: float


class ProjectedUsage(CamelModel):
    total_tokens: int
    total_cost: float
    remaining_minutes: int


class EnrichedBlock(UsageBlock):
    total_tokens: int = 0
    burn_rate: BurnRate | None = None
    projection: ProjectedUsage | None = None
    activity_level: str = "Idle"
    block_percentage: int = 0


class ModelBreakdown(CamelModel):
    model_name: str
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0
    cost: float = 0.0


class DailyUsage(CamelModel):
    date: str  # YYYY-MM-DD, local time
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    models_used: list[str] = []
    model_breakdowns: list[ModelBreakdown] = []


class ApiResponse(BaseModel):
    success: bool
    data: Any = None
    error: str | None = None
    message: str | None = None


# --- animation -----------------------------------------------------------


class AnimationState(CamelModel):
    type: AnimationType
    is_active: bool = True
    timestamp: float  # ms since epoch
