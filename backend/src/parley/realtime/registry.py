"""Live mapping from user id to the connection currently serving them."""

from __future__ import annotations

import threading
from typing import Generic, TypeVar

from app.monitoring.metrics import realtime_connections

C = TypeVar("C")

_SCOPE = "direct"


class ConnectionRegistry(Generic[C]):
    """Tracks at most one authenticated connection per user.

    A newer registration for the same user replaces the older one
    (last writer wins). Removal is conditional on identity, so a
    disconnect from a connection that has already been replaced cannot
    erase the entry of its successor.
    """

    def __init__(self) -> None:
        self._connections: dict[int, C] = {}
        self._lock = threading.Lock()

    def register(self, user_id: int, connection: C) -> C | None:
        """Map *user_id* to *connection*; returns the connection it displaced, if any."""

        with self._lock:
            previous = self._connections.get(user_id)
            self._connections[user_id] = connection
            if previous is None:
                realtime_connections.labels(_SCOPE).inc()
            return previous if previous is not connection else None

    def unregister(self, user_id: int, connection: C) -> bool:
        """Drop the entry only if *connection* is still the current one."""

        with self._lock:
            if self._connections.get(user_id) is not connection:
                return False
            del self._connections[user_id]
            realtime_connections.labels(_SCOPE).dec()
            return True

    def lookup(self, user_id: int) -> C | None:
        with self._lock:
            return self._connections.get(user_id)

    def entries(self) -> list[tuple[int, C]]:
        with self._lock:
            return list(self._connections.items())

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    def __contains__(self, user_id: object) -> bool:
        with self._lock:
            return user_id in self._connections
