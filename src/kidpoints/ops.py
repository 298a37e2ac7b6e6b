"""Operational utilities for KidPoints."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Optional

from .models import utcnow


class StructuredLogger:
    """Write JSON lines log entries for admin inspection."""

    def __init__(self, *, path: Path | None = None, keep: int = 1000) -> None:
        self.path = path
        self._keep = keep
        self._entries: list[dict] = []
        self._lock = threading.Lock()

    def log(self, event_type: str, **fields: object) -> dict:
        entry = {"timestamp": utcnow().isoformat(), "event": event_type, **fields}
        line = json.dumps(entry, default=_json_default)
        with self._lock:
            if self._keep > 0:
                self._entries.append(entry)
                del self._entries[: -self._keep]
            if self.path:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
        return entry

    def tail(self, limit: int = 50, *, event: Optional[str] = None) -> tuple[dict, ...]:
        with self._lock:
            entries = list(self._entries)
        if event is not None:
            entries = [entry for entry in entries if entry["event"] == event]
        return tuple(entries[-limit:])


def _json_default(value: object) -> object:
    enum_value = getattr(value, "value", None)
    if enum_value is not None:
        return enum_value
    isoformat = getattr(value, "isoformat", None)
    if callable(isoformat):
        return isoformat()
    return str(value)


__all__ = ["StructuredLogger"]
