"""Append-only log of applied patches consumed by remote observers."""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Callable, Deque, List, Tuple

from .snapshot.patch import AppliedPatchSet

__all__ = ["AppliedPatchQueue", "DEFAULT_MAX_HISTORY", "Subscriber"]

LOGGER = logging.getLogger(__name__)
DEFAULT_MAX_HISTORY = 256

Subscriber = Callable[[int, AppliedPatchSet], None]


class AppliedPatchQueue:
    """Cursor-addressed history of :class:`AppliedPatchSet` records.

    Every pushed record gets the next cursor value, starting at ``1``. A
    client that has seen everything up to cursor ``n`` asks for
    ``since(n)`` to catch up. Only the newest ``max_history`` records are
    retained; a client that fell further behind receives what is left.
    """

    def __init__(self, max_history: int = DEFAULT_MAX_HISTORY) -> None:
        if max_history < 1:
            raise ValueError("max_history must be at least 1")
        self.max_history = max_history
        self._entries: Deque[Tuple[int, AppliedPatchSet]] = deque(maxlen=max_history)
        self._cursor = 0
        self._subscribers: List[Subscriber] = []
        self._changed = threading.Condition()

    @property
    def cursor(self) -> int:
        with self._changed:
            return self._cursor

    def push(self, applied: AppliedPatchSet) -> int:
        """Append a record and notify subscribers; returns its cursor."""
        cursor = self.record(applied)
        self.notify_subscribers(cursor, applied)
        return cursor

    def record(self, applied: AppliedPatchSet) -> int:
        """Append a record and wake waiters without calling subscribers."""
        with self._changed:
            self._cursor += 1
            cursor = self._cursor
            self._entries.append((cursor, applied))
            self._changed.notify_all()
        return cursor

    def notify_subscribers(self, cursor: int, applied: AppliedPatchSet) -> None:
        with self._changed:
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(cursor, applied)
            except Exception:
                LOGGER.exception("Applied patch subscriber %r failed at cursor %d", callback, cursor)

    def since(self, cursor: int) -> Tuple[int, List[AppliedPatchSet]]:
        """Return the current cursor and every retained record newer than ``cursor``."""
        with self._changed:
            return self._cursor, [applied for position, applied in self._entries if position > cursor]

    def wait(self, cursor: int, timeout: float | None = None) -> Tuple[int, List[AppliedPatchSet]]:
        """Block until something newer than ``cursor`` exists or ``timeout`` passes."""
        with self._changed:
            self._changed.wait_for(lambda: self._cursor > cursor, timeout=timeout)
            return self._cursor, [applied for position, applied in self._entries if position > cursor]

    def subscribe(self, callback: Subscriber) -> None:
        with self._changed:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._changed:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def __len__(self) -> int:
        with self._changed:
            return len(self._entries)
