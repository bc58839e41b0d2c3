"""Client-side view that merges live pushes with polled snapshots.

Pushed events are treated as hints: they update the local view right away so
the UI feels live, and mark the affected views stale. :meth:`DeliveryReconciler.refresh`
then re-derives those views from the request/response API, which stays the
source of truth. The merge tolerates pushes that were missed, duplicated or
that arrive before the matching row is visible to a poll.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Mapping, Protocol, Sequence, Set

from pydantic import ValidationError

from app.repository import message_sort_key
from app.schemas import CamelModel, ConversationRead, MessageRead, UserRead

logger = logging.getLogger(__name__)

CONTACTS = "contacts"
CONVERSATIONS = "conversations"


def messages_view(contact_id: int) -> str:
    return f"messages:{contact_id}"


class SnapshotSource(Protocol):
    async def fetch_contacts(self) -> Sequence[UserRead]: ...

    async def fetch_messages(self, contact_id: int) -> Sequence[MessageRead]: ...

    async def fetch_conversations(self) -> Sequence[ConversationRead]: ...


class _ReadReceipt(CamelModel):
    message_id: int
    read_at: datetime | None = None


class _Typing(CamelModel):
    sender_id: int
    is_typing: bool


class _StatusChange(CamelModel):
    user_id: int
    is_online: bool


def _keep_read(local: MessageRead | None, pulled: MessageRead) -> MessageRead:
    """Never let an older snapshot flip a message back to unread."""

    if local is None or not local.is_read or pulled.is_read:
        return pulled
    return pulled.model_copy(update={"is_read": True, "read_at": local.read_at})


class DeliveryReconciler:
    """Local copy of contacts, conversations and message histories for one user."""

    def __init__(self, user_id: int, source: SnapshotSource) -> None:
        self.user_id = user_id
        self._source = source
        self._contacts: List[UserRead] = []
        self._conversations: List[ConversationRead] = []
        self._messages: Dict[int, Dict[int, MessageRead]] = {}
        self._typing: Set[int] = set()
        self._stale: Set[str] = {CONTACTS, CONVERSATIONS}

    @property
    def contacts(self) -> List[UserRead]:
        return list(self._contacts)

    @property
    def conversations(self) -> List[ConversationRead]:
        return list(self._conversations)

    @property
    def typing_users(self) -> FrozenSet[int]:
        return frozenset(self._typing)

    @property
    def stale(self) -> FrozenSet[str]:
        return frozenset(self._stale)

    def messages_with(self, contact_id: int) -> List[MessageRead]:
        return sorted(self._messages.get(contact_id, {}).values(), key=message_sort_key)

    def watch(self, contact_id: int) -> None:
        """Start tracking the history with ``contact_id``; it is loaded on the next refresh."""

        self._messages.setdefault(contact_id, {})
        self._stale.add(messages_view(contact_id))

    def apply(self, event: Mapping[str, Any]) -> None:
        """Fold one pushed ``{type, payload}`` envelope into the local view."""

        event_type = event.get("type")
        payload = event.get("payload")
        if not isinstance(payload, Mapping):
            logger.debug("Ignoring pushed event without payload: %r", event_type)
            return
        try:
            if event_type in ("message", "message_sent"):
                self._apply_message(MessageRead.model_validate(payload))
            elif event_type == "read_receipt":
                self._apply_read_receipt(_ReadReceipt.model_validate(payload))
            elif event_type == "typing":
                self._apply_typing(_Typing.model_validate(payload))
            elif event_type == "status_change":
                self._apply_status(_StatusChange.model_validate(payload))
            else:
                logger.debug("Ignoring pushed event of unknown type %r", event_type)
        except ValidationError as exc:
            logger.debug("Ignoring malformed %s event: %s", event_type, exc)

    async def refresh(self) -> FrozenSet[str]:
        """Re-fetch every stale view; returns the views that were refreshed.

        Fetch errors propagate and leave the failing view (and those not yet
        reached) marked stale.
        """

        refreshed: Set[str] = set()
        if CONTACTS in self._stale:
            self._contacts = list(await self._source.fetch_contacts())
            self._stale.discard(CONTACTS)
            refreshed.add(CONTACTS)
        for contact_id in sorted(self._messages):
            view = messages_view(contact_id)
            if view not in self._stale:
                continue
            pulled = await self._source.fetch_messages(contact_id)
            self._merge_messages(contact_id, pulled)
            self._stale.discard(view)
            refreshed.add(view)
        if CONVERSATIONS in self._stale:
            pulled_conversations = await self._source.fetch_conversations()
            self._merge_conversations(pulled_conversations)
            self._stale.discard(CONVERSATIONS)
            refreshed.add(CONVERSATIONS)
        return frozenset(refreshed)

    def _peer_of(self, message: MessageRead) -> int:
        return message.receiver_id if message.sender_id == self.user_id else message.sender_id

    def _apply_message(self, message: MessageRead) -> None:
        peer = self._peer_of(message)
        history = self._messages.setdefault(peer, {})
        history[message.id] = _keep_read(history.get(message.id), message)
        if message.sender_id != self.user_id:
            self._typing.discard(message.sender_id)
        self._stale.update({messages_view(peer), CONVERSATIONS})

    def _apply_read_receipt(self, receipt: _ReadReceipt) -> None:
        for history in self._messages.values():
            message = history.get(receipt.message_id)
            if message is not None and not message.is_read:
                history[receipt.message_id] = message.model_copy(
                    update={"is_read": True, "read_at": receipt.read_at}
                )
        self._stale.update(messages_view(contact_id) for contact_id in self._messages)
        self._stale.add(CONVERSATIONS)

    def _apply_typing(self, typing: _Typing) -> None:
        if typing.is_typing:
            self._typing.add(typing.sender_id)
        else:
            self._typing.discard(typing.sender_id)

    def _apply_status(self, status: _StatusChange) -> None:
        self._contacts = [
            contact.model_copy(update={"is_online": status.is_online})
            if contact.id == status.user_id
            else contact
            for contact in self._contacts
        ]
        if not status.is_online:
            self._typing.discard(status.user_id)
        self._stale.update({CONTACTS, CONVERSATIONS})

    def _merge_messages(self, contact_id: int, pulled: Sequence[MessageRead]) -> None:
        local = self._messages.get(contact_id, {})
        merged = {message.id: _keep_read(local.get(message.id), message) for message in pulled}
        for message_id, message in local.items():
            merged.setdefault(message_id, message)
        self._messages[contact_id] = merged

    def _merge_conversations(self, pulled: Sequence[ConversationRead]) -> None:
        conversations: List[ConversationRead] = []
        for conversation in pulled:
            history = self._messages.get(conversation.contact.id, {})
            last = _keep_read(history.get(conversation.last_message.id), conversation.last_message)
            newest_local = max(history.values(), key=message_sort_key, default=None)
            if newest_local is not None and message_sort_key(newest_local) > message_sort_key(last):
                last = newest_local
            conversations.append(conversation.model_copy(update={"last_message": last}))
        conversations.sort(key=lambda item: message_sort_key(item.last_message), reverse=True)
        self._conversations = conversations


__all__ = [
    "CONTACTS",
    "CONVERSATIONS",
    "DeliveryReconciler",
    "SnapshotSource",
    "messages_view",
]
