import os
from pathlib import Path

"""Global constants and path definitions for git-autosync.

This module defines the filesystem layout (XDG state directory for runtime
data, a dot-directory in the user's home for configuration), application
identifiers, timing defaults and the remote endpoints used by the agent.
"""

# --- Identity ---
APP_NAME = "git-autosync"
"""str: The human-readable application name."""

APP_LABEL = "com.gitautosync.agent"
"""str: The reverse-DNS style application identifier."""

USER_AGENT = "GitAutoSync/2.0"
"""str: User-Agent header sent to the GitHub API."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

STATE_DIR = _BASE_STATE / "git-autosync"
"""Path: The directory for runtime state data (logs, pid, status snapshot)."""

# Ensure state directory exists immediately upon module import.
STATE_DIR.mkdir(parents=True, exist_ok=True)

LOG_FILE = STATE_DIR / "daemon.log"
"""Path: The file path for the daemon process logs."""

PID_FILE = STATE_DIR / "daemon.pid"
"""Path: The file path storing the daemon's process ID."""

STATUS_FILE = STATE_DIR / "status.json"
"""Path: The last status snapshot published by the running daemon."""

# --- Configuration Paths ---
CONFIG_DIR: Path = Path.home() / ".gitautosync"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.json"
"""Path: The main configuration file path."""

CONFIG_VERSION = 1
"""int: Schema version written into new configuration files."""

# --- Git / GitHub ---
DEFAULT_BRANCH = "main"
"""str: The only branch the agent commits to and pushes."""

REMOTE_NAME = "origin"

GITHUB_HOST = "github.com"
GITHUB_API_URL = "https://api.github.com"
PROBE_URL = "https://github.com"

MAX_REPO_NAME_LENGTH = 100

DEFAULT_IGNORES = [
    "**/node_modules/**",
    "**/.git/**",
    "**/.vscode/**",
    "**/.idea/**",
    "**/dist/**",
    "**/build/**",
    "**/.next/**",
    "**/.cache/**",
    "**/*.tmp",
    "**/*.temp",
    "**/.env",
    "**/.env.*",
    "**/logs/**",
    "**/*.log",
    "**/coverage/**",
    "**/__pycache__/**",
    "**/*.pyc",
    "**/target/**",
    "**/bin/**",
    "**/obj/**",
]
"""list[str]: Patterns written to .gitignore when no list is configured."""

# --- Timing (seconds) ---
SCAN_INTERVAL = 30
CHECK_INTERVAL = 5
DEBOUNCE_WINDOW = 3
PROCESS_INTERVAL = 10
NETWORK_INTERVAL = 10
STATUS_INTERVAL = 2

PROBE_TIMEOUT = 5.0
API_TIMEOUT = 10.0
CREATE_TIMEOUT = 15.0
