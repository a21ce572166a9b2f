import logging
from datetime import datetime, timezone

import uvicorn
from fastapi import Body, FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError

import config
import db
import grouping
import preferences
import usage
import ws
from animations import AnimationTracker
from models import (
    ApiResponse,
    CostMode,
    FilterOptions,
    GroupedEvent,
    GroupingPreferences,
    HistoricalEvents,
    HookEvent,
    HookEventCreate,
    SortOrder,
)

log = logging.getLogger(__name__)

app = FastAPI(title=config.APP_NAME)


@app.on_event("startup")
async def startup():
    db.init()
    app.state.grouping_session = grouping.GroupingSession()
    app.state.animations = AnimationTracker()
    app.state.animations.start()
    log.info("Database ready at %s", db.DB_PATH)
    log.info("POST events to /api/events, WebSocket at /stream, usage under /api/usage")


@app.on_event("shutdown")
async def shutdown():
    ws.stop_token_updates()
    app.state.animations.destroy()


# --- events --------------------------------------------------------------


@app.post("/api/events", response_model=HookEvent)
async def create_event(body: dict = Body(...)):
    try:
        event = HookEventCreate.model_validate(body)
    except ValidationError as exc:
        raise HTTPException(400, exc.errors()[0]["msg"])

    saved = db.insert_event(HookEvent(**event.model_dump()))
    await ws.broadcast_event(saved)
    return saved


@app.get("/api/events/recent", response_model=list[HookEvent])
def recent_events(limit: int = Query(100, ge=1, le=1000)):
    return db.get_recent_events(limit)


@app.get("/api/events/historical", response_model=HistoricalEvents)
def historical_events(before: str | None = None, limit: int = Query(50, ge=1, le=1000)):
    if not before:
        raise HTTPException(400, "Missing required parameter: before (ISO timestamp)")
    try:
        before_dt = datetime.fromisoformat(before.replace("Z", "+00:00"))
    except ValueError:
        raise HTTPException(400, "Invalid timestamp format. Use ISO 8601 format.")
    if before_dt.tzinfo is None:
        before_dt = before_dt.replace(tzinfo=timezone.utc)
    return db.get_historical_events(int(before_dt.timestamp() * 1000), limit)


@app.get("/api/events/filter-options", response_model=FilterOptions)
def filter_options():
    return db.get_filter_options()


@app.get("/api/events/grouped")
def grouped_events(request: Request, limit: int = Query(200, ge=1, le=1000)):
    session: grouping.GroupingSession = request.app.state.grouping_session
    tracker: AnimationTracker = request.app.state.animations

    events = db.get_recent_events(limit)
    result = grouping.group_events(events, preferences.load_grouping_preferences(), session)

    animations = {}
    for item in result.items:
        item_id = item.group_meta.key if isinstance(item, GroupedEvent) else str(item.id)
        kind = tracker.process_event_animation(item_id, session.get_group_change_type(item_id))
        if kind:
            animations[item_id] = kind

    return {
        "events": jsonable_encoder(result.items),
        "stats": jsonable_encoder(result.stats),
        "animations": animations,
    }


# --- token usage ---------------------------------------------------------


def _parse_token_limit(token_limit: str | None) -> int | str | None:
    if not token_limit:
        return None
    if token_limit == "max":
        return "max"
    try:
        return int(token_limit)
    except ValueError:
        raise HTTPException(400, "tokenLimit must be an integer or 'max'")


@app.get("/api/usage/blocks", response_model=ApiResponse)
def usage_blocks(
    active: bool = False,
    recent: bool = False,
    mode: CostMode = "auto",
    order: SortOrder = "desc",
    token_limit: str | None = Query(None, alias="tokenLimit"),
):
    return usage.get_blocks_usage(
        active=active,
        recent=recent,
        mode=mode,
        order=order,
        token_limit=_parse_token_limit(token_limit),
    )


@app.get("/api/usage/daily", response_model=ApiResponse)
def usage_daily(
    since: str | None = None,
    until: str | None = None,
    project: str | None = None,
    breakdown: bool = False,
    mode: CostMode = "auto",
):
    return usage.get_daily_usage(since=since, until=until, project=project, breakdown=breakdown, mode=mode)


@app.get("/api/usage/live", response_model=ApiResponse)
def usage_live():
    return usage.get_live_block_data()


# --- grouping preferences ------------------------------------------------


@app.get("/api/preferences/grouping", response_model=GroupingPreferences)
def get_grouping_preferences():
    return preferences.load_grouping_preferences()


@app.put("/api/preferences/grouping", response_model=GroupingPreferences)
def put_grouping_preferences(prefs: GroupingPreferences):
    prefs = prefs.model_copy(update={"time_window": preferences.clamp_time_window(prefs.time_window)})
    preferences.save_grouping_preferences(prefs)
    return prefs


@app.post("/api/preferences/grouping/preset/{name}", response_model=GroupingPreferences)
def apply_grouping_preset(name: str):
    try:
        prefs = preferences.apply_preset(preferences.load_grouping_preferences(), name)
    except ValueError as exc:
        raise HTTPException(404, str(exc))
    preferences.save_grouping_preferences(prefs)
    return prefs


@app.post("/api/preferences/grouping/reset", response_model=GroupingPreferences)
def reset_grouping_preferences():
    prefs = preferences.DEFAULT_GROUPING_PREFERENCES.model_copy()
    preferences.save_grouping_preferences(prefs)
    return prefs


# --- live stream ---------------------------------------------------------


@app.websocket("/stream")
async def stream(websocket: WebSocket):
    await websocket.accept()
    log.info("WebSocket client connected")
    ws.add_client(websocket)
    try:
        await websocket.send_text(ws.encode("initial", db.get_recent_events(config.INITIAL_EVENT_COUNT)))
        live = await run_in_threadpool(usage.get_live_block_data)
        if live.success and live.data:
            await websocket.send_text(ws.encode("tokenUsage", live.data))
        while True:
            message = await websocket.receive_text()
            log.debug("Received message: %s", message)
    except WebSocketDisconnect:
        log.info("WebSocket client disconnected")
    finally:
        ws.remove_client(websocket)


def main():
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(app, host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    main()
