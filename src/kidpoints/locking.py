"""Locking helpers guarding per-child balances and per-reward stock."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator

from sqlalchemy import update


def lock_for_update(statement):
    """
    Apply row-level locking for check-then-write sequences.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, other databases honour it.
    """
    return statement.with_for_update()


def compare_and_set(session, key_column, key, allowed, status) -> bool:
    """Move the row at ``key`` to ``status`` only while its stored status is in ``allowed``.

    Returns False when another transaction changed the status first.
    """
    model = key_column.class_
    result = session.connection().execute(
        update(model)
        .where(key_column == key, model.status.in_(list(allowed)))
        .values(status=status)
    )
    return result.rowcount == 1


def child_key(child_id: str) -> str:
    return f"child:{child_id}"


def reward_key(reward_id: str) -> str:
    return f"reward:{reward_id}"


class KeyedLocks:
    """Process-wide registry of named locks, acquired in sorted order."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        """Hold every lock in ``keys`` for the duration of the block."""

        ordered = sorted({key for key in keys if key})
        acquired: list[threading.Lock] = []
        try:
            for key in ordered:
                lock = self._lock_for(key)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


__all__ = ["KeyedLocks", "child_key", "compare_and_set", "lock_for_update", "reward_key"]
