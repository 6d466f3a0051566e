"""Dustbin constants: filesystem layout, timeouts, and limits."""

from __future__ import annotations

from enum import IntEnum

# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------


class ExitCode(IntEnum):
    SUCCESS = 0
    ERROR = 1
    CONFIG_ERROR = 2
    ENV_ERROR = 3
    LEDGER_ERROR = 4
    PERMISSION_ERROR = 5
    DEPENDENCY_MISSING = 7


# ---------------------------------------------------------------------------
# Filesystem layout
# ---------------------------------------------------------------------------

APP_DIR_NAME = "dustbin"
CONFIG_FILENAME = "config.toml"
DB_FILENAME = "dustbin.db"
PID_FILENAME = "dustbin.pid"

# ---------------------------------------------------------------------------
# Monitor supervision
# ---------------------------------------------------------------------------

INITIAL_BACKOFF_SECONDS = 2.0
MAX_BACKOFF_SECONDS = 60.0
STABLE_RUN_SECONDS = 60.0  # uptime after which a crash no longer escalates backoff
STOP_GRACE_SECONDS = 5.0  # SIGTERM -> SIGKILL escalation window
EVENT_QUEUE_SIZE = 4096  # bounded hand-off between reader task and main loop
HEARTBEAT_SECONDS = 3600.0

# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------

SQLITE_BUSY_TIMEOUT_MS = 5000
TRACKING_SINCE_KEY = "tracking_since"

# ---------------------------------------------------------------------------
# Platform tools
# ---------------------------------------------------------------------------

TOOL_TIMEOUT_SECONDS = 30.0
OWNER_QUERY_CHUNK = 50

# Exec targets never worth counting (interpreters every script goes through)
SKIP_EXEC_PATHS = ("/bin/sh", "/bin/bash", "/bin/zsh", "/usr/bin/env")
