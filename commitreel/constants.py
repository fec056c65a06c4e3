"""Constants used across commitreel.

This module defines shared constants to ensure consistency.
"""

# Store addressing
CHECKPOINT_URI_PREFIX = "mv2://checkpoint/"
FILE_URI_PREFIX = "mv2://file/"
CHECKPOINT_LABEL = "checkpoint"
FILE_SNAPSHOT_LABEL = "file-snapshot"

# Recording defaults (user-configurable via commitreel.yml / CLI)
DEFAULT_TAPE_PATH = "commitreel.tape.db"
DEFAULT_POLL_INTERVAL_S = 5.0
DEFAULT_DEBOUNCE_S = 4.0
DEFAULT_WEB_HOST = "0.0.0.0"
DEFAULT_WEB_PORT = 23404

# Paths skipped when enumerating or watching the workspace (substring match)
DEFAULT_IGNORES: tuple[str, ...] = (
    ".git",
    ".repl-tape",
    ".commitreel",
    "node_modules",
    ".cache",
    ".npm",
    ".mv2",
    ".env",
    ".env.local",
    ".env.production",
    ".env.development",
)

# Run sandbox internals (not user-configurable)
STATE_DIR_NAME = ".commitreel"
RUN_DIR_NAME = "run"
LOG_BUFFER_CAPACITY = 1000
PREVIEW_HOST = "0.0.0.0"
STOP_GRACE_S = 5.0  # Seconds to wait for SIGTERM before SIGKILL
