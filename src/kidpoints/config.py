"""Configuration constants for the KidPoints core."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_path(name: str) -> Optional[Path]:
    raw = os.environ.get(name, "").strip()
    return Path(raw) if raw else None


SQLITE_FILE_NAME = os.environ.get("KIDPOINTS_SQLITE", "kidpoints.db")
DATABASE_URL = os.environ.get("KIDPOINTS_DATABASE_URL", f"sqlite:///{SQLITE_FILE_NAME}")
SQL_ECHO = _env_bool("KIDPOINTS_SQL_ECHO")
EVENT_LOG_PATH = _env_path("KIDPOINTS_EVENT_LOG")
LEADERBOARD_LIMIT = _env_int("KIDPOINTS_LEADERBOARD_LIMIT", 10)

__all__ = [
    "SQLITE_FILE_NAME",
    "DATABASE_URL",
    "SQL_ECHO",
    "EVENT_LOG_PATH",
    "LEADERBOARD_LIMIT",
]
