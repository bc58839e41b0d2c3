"""Wiring of the realtime objects that the application shares per process."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastapi.websockets import WebSocket

from app.config import Settings, get_settings
from app.repository import MessengerRepository

from .presence import PresenceCoordinator
from .registry import ConnectionRegistry
from .router import EventRouter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RealtimeServices:
    repository: MessengerRepository
    registry: ConnectionRegistry[WebSocket]
    presence: PresenceCoordinator
    router: EventRouter


def build_realtime(
    repository: MessengerRepository, settings: Settings | None = None
) -> RealtimeServices:
    settings = settings or get_settings()
    log = logging.getLogger("parley.realtime")
    registry: ConnectionRegistry[WebSocket] = ConnectionRegistry()
    presence = PresenceCoordinator(registry, repository, log=log)
    router = EventRouter(
        registry,
        repository,
        presence,
        close_displaced=settings.realtime_close_displaced_connections,
        max_content_length=settings.chat_message_max_length,
        log=log,
    )
    return RealtimeServices(repository=repository, registry=registry, presence=presence, router=router)


def install_services(state: Any, services: RealtimeServices) -> RealtimeServices:
    """Expose ``services`` on an application ``state`` object."""

    state.repository = services.repository
    state.realtime = services
    logger.debug("Realtime services installed (%s)", type(services.repository).__name__)
    return services


__all__ = ["RealtimeServices", "build_realtime", "install_services"]
