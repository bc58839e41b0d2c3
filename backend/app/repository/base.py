"""Storage contract consumed by the realtime core and the HTTP API."""

from __future__ import annotations

import abc
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Sequence

from app.schemas import (
    ContactRead,
    ConversationRead,
    MessageRead,
    UserCreateData,
    UserCredentials,
    UserRead,
)


class RepositoryError(Exception):
    """Base class for storage errors surfaced to callers."""


class UserNotFoundError(RepositoryError):
    """Raised when an operation references a user that does not exist."""

    def __init__(self, user_id: int) -> None:
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


class DuplicateUsernameError(RepositoryError):
    """Raised when creating a user whose username is already taken."""

    def __init__(self, username: str) -> None:
        super().__init__(f"Username {username!r} is already taken")
        self.username = username


class InvalidContactError(RepositoryError):
    """Raised for contact edges that may not exist, e.g. a user adding themselves."""


@dataclass(frozen=True)
class ReadMark:
    """Outcome of :meth:`MessengerRepository.mark_message_read`.

    ``changed`` is true only for the call that flipped the read flag.
    """

    message: MessageRead
    changed: bool


class MessengerRepository(abc.ABC):
    """Durable CRUD over users, contacts and messages.

    Implementations must behave identically for every operation, including
    ordering and idempotency. All returned objects are detached snapshots;
    mutating them never changes stored state.
    """

    @abc.abstractmethod
    async def find_user(self, user_id: int) -> UserRead | None:
        """Return the user with ``user_id`` if it exists."""

    @abc.abstractmethod
    async def find_user_by_username(self, username: str) -> UserRead | None:
        """Return the user registered under ``username`` if it exists."""

    @abc.abstractmethod
    async def get_credentials(self, username: str) -> UserCredentials | None:
        """Return the user and their password hash for login checks."""

    @abc.abstractmethod
    async def create_user(self, data: UserCreateData) -> UserRead:
        """Create a user; new users start offline."""

    @abc.abstractmethod
    async def set_user_presence(
        self, user_id: int, is_online: bool, last_seen: datetime
    ) -> UserRead | None:
        """Persist presence and last-seen; ``None`` when the user is unknown."""

    @abc.abstractmethod
    async def list_contacts(self, user_id: int) -> Sequence[UserRead]:
        """Users that ``user_id`` keeps as contacts, in the order they were added."""

    @abc.abstractmethod
    async def add_contact(self, owner_id: int, contact_id: int) -> ContactRead:
        """Create the ``owner_id -> contact_id`` edge, returning the existing one if present."""

    @abc.abstractmethod
    async def remove_contact(self, owner_id: int, contact_id: int) -> bool:
        """Delete the edge; ``True`` only when an edge was actually removed."""

    @abc.abstractmethod
    async def list_messages(self, user_id: int, contact_id: int) -> Sequence[MessageRead]:
        """Messages exchanged by the pair in either direction, oldest first."""

    @abc.abstractmethod
    async def create_message(self, sender_id: int, receiver_id: int, content: str) -> MessageRead:
        """Persist a new unread message stamped with the current server time."""

    @abc.abstractmethod
    async def get_message(self, message_id: int) -> MessageRead | None:
        """Return a single message by id."""

    @abc.abstractmethod
    async def mark_message_read(self, message_id: int) -> ReadMark | None:
        """Flip the read flag; already-read messages come back unchanged with ``changed=False``."""

    @abc.abstractmethod
    async def list_recent_conversations(self, user_id: int) -> Sequence[ConversationRead]:
        """Latest message per contact with history, newest conversation first."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def message_sort_key(message: MessageRead) -> tuple[datetime, int]:
    return (message.sent_at, message.id)
