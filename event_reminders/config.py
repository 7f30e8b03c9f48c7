"""Configuration for the event reminder engine."""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

_APP_DIR = Path(os.getenv("LOCALAPPDATA", ".")) / "event-reminders"

# Sweep - coarse periodic discovery of soon-due tasks
SWEEP_INTERVAL_MINUTES = int(os.getenv("SWEEP_INTERVAL_MINUTES", "30"))
SWEEP_WINDOW_MINUTES = int(os.getenv("SWEEP_WINDOW_MINUTES", "30"))
# How far back a sweep looks for tasks that fell due while the process was down
SWEEP_LOOKBACK_MINUTES = int(os.getenv("SWEEP_LOOKBACK_MINUTES", "30"))

# Retention of completed/failed/cancelled task rows (weekly, Sunday 2am UTC)
RETENTION_DAYS = int(os.getenv("RETENTION_DAYS", "30"))
RETENTION_DAY_OF_WEEK = os.getenv("RETENTION_DAY_OF_WEEK", "sun")
RETENTION_HOUR = int(os.getenv("RETENTION_HOUR", "2"))

# Task store: "sqlite" (local file) or "supabase"
TASK_STORE_BACKEND = os.getenv("TASK_STORE_BACKEND", "sqlite").strip().lower()
TASK_STORE_DB = os.getenv("TASK_STORE_DB", str(_APP_DIR / "data" / "reminder_tasks.db"))

# Notification inbox: "sqlite" (local file) or "supabase"
NOTIFICATION_BACKEND = os.getenv("NOTIFICATION_BACKEND", "sqlite").strip().lower()
NOTIFICATION_DB = os.getenv("NOTIFICATION_DB", str(_APP_DIR / "data" / "notifications.db"))

# Supabase
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")
SUPABASE_TIMEOUT_SECONDS = float(os.getenv("SUPABASE_TIMEOUT_SECONDS", "10"))

# Logging
LOG_DIR = Path(os.getenv("LOG_DIR", str(_APP_DIR / "logs")))
LOG_DIR.mkdir(parents=True, exist_ok=True)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
