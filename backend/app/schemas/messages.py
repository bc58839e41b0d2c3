"""Schemas related to contacts, messages and conversations."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field, StrictInt, constr

from app.schemas.base import CamelModel
from app.schemas.users import UserRead


class ContactRead(CamelModel):
    """Directed contact edge owned by ``user_id``."""

    id: int
    user_id: int
    contact_id: int


class ContactCreated(ContactRead):
    """Contact edge returned together with the added user."""

    contact_details: UserRead


class ContactCreate(CamelModel):
    """Payload for adding a contact by username."""

    username: str | None = Field(default=None, description="Username of the user to add")


class MessageRead(CamelModel):
    """Serialized representation of a persisted message."""

    id: int
    sender_id: int
    receiver_id: int
    content: str
    sent_at: datetime
    is_read: bool = False
    read_at: datetime | None = None


class MessageCreate(CamelModel):
    """Payload for sending a message through the request/response API."""

    receiver_id: StrictInt
    content: constr(strip_whitespace=True, min_length=1)


class ConversationRead(CamelModel):
    """Most recent message exchanged with one contact."""

    contact: UserRead
    last_message: MessageRead
