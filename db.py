import json
import sqlite3
import time
from contextlib import closing
from datetime import datetime, timezone

import config
from models import FilterOptions, HistoricalEvents, HookEvent

DB_PATH = config.DB_PATH

_COLUMNS = "id, source_app, session_id, hook_event_type, payload, chat, summary, timestamp"


def _get_conn() -> sqlite3.Connection:
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(DB_PATH))
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.execute("""
        CREATE TABLE IF NOT EXISTS events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            source_app TEXT NOT NULL,
            session_id TEXT NOT NULL,
            hook_event_type TEXT NOT NULL,
            payload TEXT NOT NULL,
            chat TEXT,
            summary TEXT,
            timestamp INTEGER NOT NULL
        )
    """)
    for column in ("source_app", "session_id", "hook_event_type", "timestamp"):
        conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{column} ON events({column})")
    conn.commit()
    return conn


def _row_to_event(row: tuple) -> HookEvent:
    return HookEvent(
        id=row[0],
        source_app=row[1],
        session_id=row[2],
        hook_event_type=row[3],
        payload=json.loads(row[4]),
        chat=json.loads(row[5]) if row[5] else None,
        summary=row[6] or None,
        timestamp=row[7],
    )


def init() -> None:
    _get_conn().close()


def insert_event(event: HookEvent) -> HookEvent:
    timestamp = event.timestamp or int(time.time() * 1000)
    with closing(_get_conn()) as conn:
        cur = conn.execute(
            "INSERT INTO events (source_app, session_id, hook_event_type, payload, chat, summary, timestamp) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                event.source_app,
                event.session_id,
                event.hook_event_type,
                json.dumps(event.payload),
                json.dumps(event.chat) if event.chat else None,
                event.summary or None,
                timestamp,
            ),
        )
        conn.commit()
    return event.model_copy(update={"id": cur.lastrowid, "timestamp": timestamp})


def get_recent_events(limit: int = 100) -> list[HookEvent]:
    """Newest ``limit`` events, returned oldest first."""
    with closing(_get_conn()) as conn:
        rows = conn.execute(
            f"SELECT {_COLUMNS} FROM events ORDER BY timestamp DESC LIMIT ?", (limit,)
        ).fetchall()
    return [_row_to_event(row) for row in reversed(rows)]


def get_historical_events(before_ms: int, limit: int = 50) -> HistoricalEvents:
    with closing(_get_conn()) as conn:
        rows = conn.execute(
            f"SELECT {_COLUMNS} FROM events WHERE timestamp < ? ORDER BY timestamp DESC LIMIT ?",
            (before_ms, limit),
        ).fetchall()
        events = [_row_to_event(row) for row in reversed(rows)]

        has_more = False
        earliest = None
        if events:
            oldest = events[0].timestamp
            earliest = datetime.fromtimestamp(oldest / 1000, tz=timezone.utc).isoformat()
            (older,) = conn.execute(
                "SELECT COUNT(*) FROM events WHERE timestamp < ?", (oldest,)
            ).fetchone()
            has_more = older > 0
    return HistoricalEvents(events=events, has_more=has_more, earliest_timestamp=earliest)


def get_filter_options() -> FilterOptions:
    with closing(_get_conn()) as conn:
        source_apps = conn.execute("SELECT DISTINCT source_app FROM events ORDER BY source_app").fetchall()
        session_ids = conn.execute(
            "SELECT DISTINCT session_id FROM events ORDER BY session_id DESC LIMIT 100"
        ).fetchall()
        event_types = conn.execute(
            "SELECT DISTINCT hook_event_type FROM events ORDER BY hook_event_type"
        ).fetchall()
    return FilterOptions(
        source_apps=[r[0] for r in source_apps],
        session_ids=[r[0] for r in session_ids],
        hook_event_types=[r[0] for r in event_types],
    )
