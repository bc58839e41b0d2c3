"""Online/offline bookkeeping and ``status_change`` fan-out."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from fastapi.websockets import WebSocket

from app.monitoring.metrics import realtime_events_total, realtime_persistence_failures_total
from app.repository import MessengerRepository, utcnow

from .protocol import STATUS_CHANGE, status_change_event
from .registry import ConnectionRegistry
from .sockets import safe_send_json

logger = logging.getLogger(__name__)


class PresenceCoordinator:
    """Persists presence transitions and tells every other live user about them.

    Persistence and broadcast are independent: a failing write is logged and
    the broadcast still goes out, and a peer that cannot be reached does not
    stop delivery to the rest.
    """

    def __init__(
        self,
        registry: ConnectionRegistry[WebSocket],
        repository: MessengerRepository,
        *,
        clock: Callable[[], datetime] = utcnow,
        log: logging.Logger | None = None,
    ) -> None:
        self._registry = registry
        self._repository = repository
        self._clock = clock
        self._log = log or logger

    async def connected(self, user_id: int) -> int:
        await self._persist(user_id, True)
        return await self._broadcast(user_id, True)

    async def disconnected(self, user_id: int) -> int:
        await self._persist(user_id, False)
        return await self._broadcast(user_id, False)

    async def _persist(self, user_id: int, is_online: bool) -> None:
        try:
            updated = await self._repository.set_user_presence(user_id, is_online, self._clock())
        except Exception:
            realtime_persistence_failures_total.labels("set_user_presence").inc()
            self._log.exception(
                "Failed to persist presence for user %s (online=%s)", user_id, is_online
            )
            return
        if updated is None:
            self._log.debug("Presence update for unknown user %s ignored", user_id)

    async def _broadcast(self, user_id: int, is_online: bool) -> int:
        """Send ``status_change`` to every live entry except ``user_id``; returns deliveries."""

        event = status_change_event(user_id, is_online)
        delivered = 0
        for peer_id, connection in self._registry.entries():
            if peer_id == user_id:
                continue
            if await safe_send_json(connection, event):
                delivered += 1
        realtime_events_total.labels(STATUS_CHANGE, "out", "broadcast").inc(delivered)
        return delivered


__all__ = ["PresenceCoordinator"]
