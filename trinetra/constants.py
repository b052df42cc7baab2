"""Constants used across Trinetra.

This module defines shared constants to ensure consistency.
"""

# Every tmux session created by Trinetra carries this prefix so that sessions
# we own can be told apart from ones a user created by hand.
TMUX_SESSION_PREFIX = "ccp_"

# Pane addressing
PANE_KEY_SEPARATOR = "."
TARGET_SEPARATOR = ":"
# tmux resolves -t by prefix and pattern unless the session name starts with "="
EXACT_MATCH_PREFIX = "="
DEFAULT_PANE_KEY = "0.0"

# Internal configuration (not user-configurable)
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3001
DEFAULT_DATA_DIR = "./data"
DATABASE_FILENAME = "ccp.sqlite"
LOGS_DIRNAME = "logs"

# Polling
DEFAULT_POLL_INTERVAL_S = 1.0
DEFAULT_SNAPSHOT_LINES = 500  # Subscription snapshot depth
DEFAULT_CAPTURE_LINES = 2000  # One-shot snapshot depth
MAX_CAPTURE_LINES = 50000
DEFAULT_MAX_CONSECUTIVE_FAILURES = 5

# Phase detection window
PHASE_WINDOW_LINES = 50
WAITING_WINDOW_LINES = 5

# tmux subprocess timeouts (seconds)
SUBPROCESS_TIMEOUT_DEFAULT = 5.0
SUBPROCESS_TIMEOUT_QUICK = 2.0

# Delay between preamble commands so each one starts before the next is typed
PREAMBLE_COMMAND_DELAY_S = 0.1

# tmux stderr fragments meaning "nothing to report" rather than a real failure
TMUX_NO_SERVER_MARKERS = (
    "no server running",
    "no sessions",
    "error connecting",
    "no such file or directory",
)

# tmux stderr fragments meaning the addressed session/window/pane is gone
TMUX_NOT_FOUND_MARKERS = (
    "can't find session",
    "can't find window",
    "can't find pane",
    "session not found",
    "window not found",
    "pane not found",
)
