"""Realtime presence and message delivery over websockets."""

from .presence import PresenceCoordinator  # noqa: F401
from .registry import ConnectionRegistry  # noqa: F401
from .router import ConnectionSession, EventRouter, PersistResult  # noqa: F401
from .services import RealtimeServices, build_realtime, install_services  # noqa: F401
from .sockets import safe_send_json  # noqa: F401

__all__ = [
    "ConnectionRegistry",
    "ConnectionSession",
    "EventRouter",
    "PersistResult",
    "PresenceCoordinator",
    "RealtimeServices",
    "build_realtime",
    "install_services",
    "safe_send_json",
]
