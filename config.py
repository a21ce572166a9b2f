import os
from pathlib import Path

APP_NAME = "Hook Monitor"
DATA_DIR = Path(os.environ.get("HOOK_MONITOR_DATA_DIR", Path.home() / ".hook-monitor"))
DB_PATH = Path(os.environ.get("HOOK_MONITOR_DB_PATH", DATA_DIR / "events.db"))
PREFERENCES_PATH = Path(
    os.environ.get("HOOK_MONITOR_PREFERENCES_PATH", DATA_DIR / "grouping-preferences.json")
)
CLAUDE_PROJECTS_DIR = Path(
    os.environ.get("CLAUDE_PROJECTS_DIR", Path.home() / ".claude" / "projects")
)

# Billing blocks
SESSION_DURATION_HOURS = 5
RECENT_DAYS = 3  # window for ?recent=true block queries

# Live broadcast
TOKEN_UPDATE_INTERVAL = float(os.environ.get("HOOK_MONITOR_TOKEN_INTERVAL", "30"))
INITIAL_EVENT_COUNT = 200

# Server
HOST = os.environ.get("HOOK_MONITOR_HOST", "127.0.0.1")
PORT = int(os.environ.get("HOOK_MONITOR_PORT", "4000"))
LOG_LEVEL = os.environ.get("HOOK_MONITOR_LOG_LEVEL", "INFO")
