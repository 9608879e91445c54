"""Utility functions for wahook."""

import os
from datetime import UTC, datetime
from pathlib import Path

BROADCAST_STATUS_JID = "status@broadcast"


def ensure_dir(path: Path) -> Path:
    """Ensure a directory exists, creating it if necessary."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_path() -> Path:
    """Get the wahook data directory.

    Respects WAHOOK_HOME environment variable; falls back to ~/.wahook.
    """
    home = os.environ.get("WAHOOK_HOME", "").strip()
    if home:
        return ensure_dir(Path(home).expanduser())
    return ensure_dir(Path.home() / ".wahook")


def get_run_path() -> Path:
    """Get the PID run directory (~/.wahook/run)."""
    return ensure_dir(get_data_path() / "run")


def get_logs_path() -> Path:
    """Get the logs directory (~/.wahook/logs)."""
    return ensure_dir(get_data_path() / "logs")


def format_chat_id(to: str) -> str:
    """Normalize a phone number or chat id to the bridge's chat id format."""
    value = (to or "").strip()
    if not value:
        return ""
    if "@" in value:
        return value
    return f"{value}@c.us"


def is_broadcast_status(chat_id: str) -> bool:
    return chat_id == BROADCAST_STATUS_JID


def utc_timestamp() -> str:
    return datetime.now(UTC).isoformat()
