"""Decoder and dispatcher for the live websocket protocol."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Generic, TypeVar

from fastapi.websockets import WebSocket

from app.monitoring.metrics import realtime_events_total, realtime_persistence_failures_total
from app.repository import MessengerRepository, UserNotFoundError
from app.schemas import MessageRead

from .presence import PresenceCoordinator
from .protocol import (
    AUTHENTICATE,
    MESSAGE,
    MESSAGE_SENT,
    READ_RECEIPT,
    TYPING,
    AuthenticatePayload,
    InboundEnvelope,
    ProtocolError,
    ReadReceiptPayload,
    SendMessagePayload,
    TypingPayload,
    decode_envelope,
    message_event,
    parse_payload,
    read_receipt_event,
    typing_event,
)
from .registry import ConnectionRegistry
from .sockets import close_quietly, safe_send_json

logger = logging.getLogger(__name__)

T = TypeVar("T")

DISPLACED_CLOSE_CODE = 4000
DISPLACED_CLOSE_REASON = "Superseded by a newer connection"


@dataclass
class ConnectionSession:
    """State of one live connection; ``user_id`` is set once it authenticates."""

    connection: WebSocket
    user_id: int | None = None
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None


@dataclass(frozen=True)
class PersistResult(Generic[T]):
    """Outcome of a repository write triggered by a live event."""

    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


Handler = Callable[[ConnectionSession, Any], Awaitable[None]]


class EventRouter:
    """Routes inbound frames to handlers and fans results out to live peers.

    The router owns no global state: the registry, repository and presence
    coordinator are injected. Every failure on the live path is contained
    here, so callers only need to feed frames in and call :meth:`close` when
    the transport goes away.
    """

    def __init__(
        self,
        registry: ConnectionRegistry[WebSocket],
        repository: MessengerRepository,
        presence: PresenceCoordinator,
        *,
        close_displaced: bool = True,
        max_content_length: int | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self._registry = registry
        self._repository = repository
        self._presence = presence
        self._close_displaced = close_displaced
        self._payload_context = {"max_content_length": max_content_length}
        self._log = log or logger
        self._handlers: Dict[str, Handler] = {
            AUTHENTICATE: self._handle_authenticate,
            MESSAGE: self._handle_message,
            READ_RECEIPT: self._handle_read_receipt,
            TYPING: self._handle_typing,
        }

    @property
    def registry(self) -> ConnectionRegistry[WebSocket]:
        return self._registry

    def open(self, connection: WebSocket) -> ConnectionSession:
        return ConnectionSession(connection=connection)

    async def handle_text(self, session: ConnectionSession, raw: str | bytes) -> None:
        try:
            envelope = decode_envelope(raw)
        except ProtocolError as exc:
            self._drop("invalid", str(exc))
            return
        await self.dispatch(session, envelope)

    async def dispatch(self, session: ConnectionSession, envelope: InboundEnvelope) -> None:
        if not session.authenticated and envelope.type != AUTHENTICATE:
            self._drop(envelope.type, "connection is not authenticated")
            return
        if session.authenticated and envelope.type == AUTHENTICATE:
            self._drop(envelope.type, f"connection already authenticated as {session.user_id}")
            return
        try:
            payload = parse_payload(envelope, context=self._payload_context)
        except ProtocolError as exc:
            self._drop(envelope.type, str(exc))
            return
        realtime_events_total.labels(envelope.type, "in", "accepted").inc()
        await self._handlers[envelope.type](session, payload)

    async def close(self, session: ConnectionSession) -> None:
        """Forget ``session``; presence goes offline only if it was still the current entry."""

        user_id = session.user_id
        if user_id is None:
            return
        if not self._registry.unregister(user_id, session.connection):
            self._log.debug("Stale disconnect for user %s ignored", user_id)
            return
        await self._presence.disconnected(user_id)

    async def deliver_message(
        self, message: MessageRead, *, origin: WebSocket | None = None
    ) -> None:
        """Push ``message`` to its receiver and confirm it to the sender.

        ``origin`` is the sender connection that produced the message; when it
        is omitted the sender's current registry entry is used instead.
        """

        receiver = self._registry.lookup(message.receiver_id)
        if receiver is not None and await safe_send_json(receiver, message_event(message)):
            realtime_events_total.labels(MESSAGE, "out", "delivered").inc()

        sender = origin if origin is not None else self._registry.lookup(message.sender_id)
        if sender is not None and await safe_send_json(
            sender, message_event(message, confirmation=True)
        ):
            realtime_events_total.labels(MESSAGE_SENT, "out", "delivered").inc()

    async def deliver_read_receipt(self, message: MessageRead) -> None:
        sender = self._registry.lookup(message.sender_id)
        if sender is not None and await safe_send_json(sender, read_receipt_event(message)):
            realtime_events_total.labels(READ_RECEIPT, "out", "delivered").inc()

    async def _handle_authenticate(
        self, session: ConnectionSession, payload: AuthenticatePayload
    ) -> None:
        session.user_id = payload.user_id
        displaced = self._registry.register(payload.user_id, session.connection)
        if displaced is not None:
            self._log.info("User %s reconnected; replacing previous connection", payload.user_id)
            if self._close_displaced:
                await close_quietly(displaced, DISPLACED_CLOSE_CODE, DISPLACED_CLOSE_REASON)
        await self._presence.connected(payload.user_id)

    async def _handle_message(
        self, session: ConnectionSession, payload: SendMessagePayload
    ) -> None:
        result = await self._persist(
            "create_message",
            self._repository.create_message(session.user_id, payload.receiver_id, payload.content),
        )
        if not result.ok:
            return
        await self.deliver_message(result.value, origin=session.connection)

    async def _handle_read_receipt(
        self, session: ConnectionSession, payload: ReadReceiptPayload
    ) -> None:
        result = await self._persist(
            "mark_message_read", self._repository.mark_message_read(payload.message_id)
        )
        if not result.ok:
            return
        mark = result.value
        if mark is None:
            self._log.debug("Read receipt for unknown message %s ignored", payload.message_id)
            return
        if not mark.changed:
            self._log.debug("Message %s was already read", payload.message_id)
            return
        await self.deliver_read_receipt(mark.message)

    async def _handle_typing(self, session: ConnectionSession, payload: TypingPayload) -> None:
        receiver = self._registry.lookup(payload.receiver_id)
        if receiver is None:
            return
        if await safe_send_json(receiver, typing_event(session.user_id, payload.is_typing)):
            realtime_events_total.labels(TYPING, "out", "delivered").inc()

    async def _persist(self, operation: str, write: Awaitable[T]) -> PersistResult[T]:
        """Run a repository write that survives cancellation of the calling handler."""

        try:
            value = await asyncio.shield(write)
        except UserNotFoundError as exc:
            self._log.debug("%s skipped: %s", operation, exc)
            return PersistResult(error=exc)
        except Exception as exc:
            realtime_persistence_failures_total.labels(operation).inc()
            self._log.exception("Realtime %s failed", operation)
            return PersistResult(error=exc)
        return PersistResult(value=value)

    def _drop(self, topic: str, reason: str) -> None:
        realtime_events_total.labels(topic, "in", "dropped").inc()
        self._log.debug("Dropping inbound frame: %s", reason)


__all__ = [
    "ConnectionSession",
    "DISPLACED_CLOSE_CODE",
    "DISPLACED_CLOSE_REASON",
    "EventRouter",
    "PersistResult",
]
