"""Process-local repository used for tests and as a fallback store."""

from __future__ import annotations

import itertools
import threading
from datetime import datetime
from typing import Callable

from app.repository.base import (
    DuplicateUsernameError,
    InvalidContactError,
    MessengerRepository,
    ReadMark,
    UserNotFoundError,
    message_sort_key,
    utcnow,
)
from app.schemas import (
    ContactRead,
    ConversationRead,
    MessageRead,
    UserCreateData,
    UserCredentials,
    UserRead,
)


class InMemoryRepository(MessengerRepository):
    """Keeps every record in dictionaries guarded by a lock.

    Stored models are never handed out directly; callers receive copies so
    the read flag and presence fields can only change through this class.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._users: dict[int, UserRead] = {}
        self._passwords: dict[int, str] = {}
        self._contacts: dict[int, ContactRead] = {}
        self._messages: dict[int, MessageRead] = {}
        self._user_ids = itertools.count(1)
        self._contact_ids = itertools.count(1)
        self._message_ids = itertools.count(1)
        self._lock = threading.Lock()

    # Users -----------------------------------------------------------------

    async def find_user(self, user_id: int) -> UserRead | None:
        with self._lock:
            user = self._users.get(user_id)
            return user.model_copy() if user else None

    async def find_user_by_username(self, username: str) -> UserRead | None:
        with self._lock:
            user = self._by_username(username)
            return user.model_copy() if user else None

    async def get_credentials(self, username: str) -> UserCredentials | None:
        with self._lock:
            user = self._by_username(username)
            if user is None:
                return None
            return UserCredentials(user=user.model_copy(), hashed_password=self._passwords[user.id])

    async def create_user(self, data: UserCreateData) -> UserRead:
        with self._lock:
            if self._by_username(data.username) is not None:
                raise DuplicateUsernameError(data.username)
            user = UserRead(
                id=next(self._user_ids),
                username=data.username,
                display_name=data.display_name,
                avatar=data.avatar,
                is_online=False,
                last_seen=None,
            )
            self._users[user.id] = user
            self._passwords[user.id] = data.hashed_password
            return user.model_copy()

    async def set_user_presence(
        self, user_id: int, is_online: bool, last_seen: datetime
    ) -> UserRead | None:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            updated = user.model_copy(update={"is_online": is_online, "last_seen": last_seen})
            self._users[user_id] = updated
            return updated.model_copy()

    def _by_username(self, username: str) -> UserRead | None:
        return next((user for user in self._users.values() if user.username == username), None)

    def _require_user(self, user_id: int) -> UserRead:
        user = self._users.get(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    # Contacts --------------------------------------------------------------

    async def list_contacts(self, user_id: int) -> list[UserRead]:
        with self._lock:
            edges = sorted(
                (edge for edge in self._contacts.values() if edge.user_id == user_id),
                key=lambda edge: edge.id,
            )
            return [
                self._users[edge.contact_id].model_copy()
                for edge in edges
                if edge.contact_id in self._users
            ]

    async def add_contact(self, owner_id: int, contact_id: int) -> ContactRead:
        if owner_id == contact_id:
            raise InvalidContactError("Cannot add yourself as a contact")
        with self._lock:
            self._require_user(owner_id)
            self._require_user(contact_id)
            existing = self._find_edge(owner_id, contact_id)
            if existing is not None:
                return existing.model_copy()
            edge = ContactRead(id=next(self._contact_ids), user_id=owner_id, contact_id=contact_id)
            self._contacts[edge.id] = edge
            return edge.model_copy()

    async def remove_contact(self, owner_id: int, contact_id: int) -> bool:
        with self._lock:
            edge = self._find_edge(owner_id, contact_id)
            if edge is None:
                return False
            del self._contacts[edge.id]
            return True

    def _find_edge(self, owner_id: int, contact_id: int) -> ContactRead | None:
        return next(
            (
                edge
                for edge in self._contacts.values()
                if edge.user_id == owner_id and edge.contact_id == contact_id
            ),
            None,
        )

    # Messages --------------------------------------------------------------

    async def list_messages(self, user_id: int, contact_id: int) -> list[MessageRead]:
        with self._lock:
            return [message.model_copy() for message in self._between(user_id, contact_id)]

    async def create_message(self, sender_id: int, receiver_id: int, content: str) -> MessageRead:
        with self._lock:
            self._require_user(sender_id)
            self._require_user(receiver_id)
            message = MessageRead(
                id=next(self._message_ids),
                sender_id=sender_id,
                receiver_id=receiver_id,
                content=content,
                sent_at=self._clock(),
                is_read=False,
            )
            self._messages[message.id] = message
            return message.model_copy()

    async def get_message(self, message_id: int) -> MessageRead | None:
        with self._lock:
            message = self._messages.get(message_id)
            return message.model_copy() if message else None

    async def mark_message_read(self, message_id: int) -> ReadMark | None:
        with self._lock:
            message = self._messages.get(message_id)
            if message is None:
                return None
            changed = not message.is_read
            if changed:
                message = message.model_copy(update={"is_read": True, "read_at": self._clock()})
                self._messages[message_id] = message
            return ReadMark(message=message.model_copy(), changed=changed)

    async def list_recent_conversations(self, user_id: int) -> list[ConversationRead]:
        with self._lock:
            edges = sorted(
                (edge for edge in self._contacts.values() if edge.user_id == user_id),
                key=lambda edge: edge.id,
            )
            conversations: list[ConversationRead] = []
            for edge in edges:
                contact = self._users.get(edge.contact_id)
                history = self._between(user_id, edge.contact_id)
                if contact is None or not history:
                    continue
                conversations.append(
                    ConversationRead(contact=contact.model_copy(), last_message=history[-1].model_copy())
                )
        conversations.sort(key=lambda item: message_sort_key(item.last_message), reverse=True)
        return conversations

    def _between(self, user_id: int, contact_id: int) -> list[MessageRead]:
        pair = {(user_id, contact_id), (contact_id, user_id)}
        selected = [
            message
            for message in self._messages.values()
            if (message.sender_id, message.receiver_id) in pair
        ]
        selected.sort(key=message_sort_key)
        return selected
