"""SQLAlchemy-backed repository for the durable networked store."""

from __future__ import annotations

import threading
from contextlib import nullcontext
from datetime import datetime, timezone
from typing import Any, Callable, TypeVar

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from app.models import Contact, Message, User
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

T = TypeVar("T")


def _as_utc(value: datetime | None) -> datetime | None:
    """Drivers hand back naive datetimes; everything is stored in UTC."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _serialize_user(user: User) -> UserRead:
    return UserRead(
        id=user.id,
        username=user.username,
        display_name=user.display_name,
        avatar=user.avatar,
        is_online=bool(user.is_online),
        last_seen=_as_utc(user.last_seen),
    )


def _serialize_contact(contact: Contact) -> ContactRead:
    return ContactRead(id=contact.id, user_id=contact.user_id, contact_id=contact.contact_id)


def _serialize_message(message: Message) -> MessageRead:
    return MessageRead(
        id=message.id,
        sender_id=message.sender_id,
        receiver_id=message.receiver_id,
        content=message.content,
        sent_at=_as_utc(message.sent_at),
        is_read=bool(message.is_read),
        read_at=_as_utc(message.read_at),
    )


def _pair_clause(user_id: int, contact_id: int):
    return or_(
        and_(Message.sender_id == user_id, Message.receiver_id == contact_id),
        and_(Message.sender_id == contact_id, Message.receiver_id == user_id),
    )


class SQLRepository(MessengerRepository):
    """Repository that opens one short-lived session per operation.

    Sessions run on the threadpool so a slow query suspends only the awaiting
    handler. SQLite connections are shared through a single pooled handle, so
    operations against SQLite are serialised.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        bind = session_factory.kw.get("bind")
        self._lock = (
            threading.Lock() if bind is not None and bind.dialect.name == "sqlite" else None
        )

    async def _run(self, operation: Callable[..., T], *args: Any) -> T:
        return await run_in_threadpool(self._locked, operation, *args)

    def _locked(self, operation: Callable[..., T], *args: Any) -> T:
        with self._lock or nullcontext():
            return operation(*args)

    # Users -----------------------------------------------------------------

    async def find_user(self, user_id: int) -> UserRead | None:
        return await self._run(self._find_user, user_id)

    def _find_user(self, user_id: int) -> UserRead | None:
        with self._session_factory() as db:
            user = db.get(User, user_id)
            return _serialize_user(user) if user else None

    async def find_user_by_username(self, username: str) -> UserRead | None:
        return await self._run(self._find_user_by_username, username)

    def _find_user_by_username(self, username: str) -> UserRead | None:
        with self._session_factory() as db:
            user = db.execute(select(User).where(User.username == username)).scalar_one_or_none()
            return _serialize_user(user) if user else None

    async def get_credentials(self, username: str) -> UserCredentials | None:
        return await self._run(self._get_credentials, username)

    def _get_credentials(self, username: str) -> UserCredentials | None:
        with self._session_factory() as db:
            user = db.execute(select(User).where(User.username == username)).scalar_one_or_none()
            if user is None:
                return None
            return UserCredentials(user=_serialize_user(user), hashed_password=user.hashed_password)

    async def create_user(self, data: UserCreateData) -> UserRead:
        return await self._run(self._create_user, data)

    def _create_user(self, data: UserCreateData) -> UserRead:
        with self._session_factory() as db:
            existing = db.execute(
                select(User.id).where(User.username == data.username)
            ).scalar_one_or_none()
            if existing is not None:
                raise DuplicateUsernameError(data.username)
            user = User(
                username=data.username,
                display_name=data.display_name,
                hashed_password=data.hashed_password,
                avatar=data.avatar,
                is_online=False,
                last_seen=None,
            )
            db.add(user)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise DuplicateUsernameError(data.username) from exc
            db.refresh(user)
            return _serialize_user(user)

    async def set_user_presence(
        self, user_id: int, is_online: bool, last_seen: datetime
    ) -> UserRead | None:
        return await self._run(self._set_user_presence, user_id, is_online, last_seen)

    def _set_user_presence(
        self, user_id: int, is_online: bool, last_seen: datetime
    ) -> UserRead | None:
        with self._session_factory() as db:
            user = db.get(User, user_id)
            if user is None:
                return None
            user.is_online = is_online
            user.last_seen = last_seen
            db.commit()
            db.refresh(user)
            return _serialize_user(user)

    # Contacts --------------------------------------------------------------

    async def list_contacts(self, user_id: int) -> list[UserRead]:
        return await self._run(self._list_contacts, user_id)

    def _list_contacts(self, user_id: int) -> list[UserRead]:
        with self._session_factory() as db:
            stmt = (
                select(User)
                .join(Contact, Contact.contact_id == User.id)
                .where(Contact.user_id == user_id)
                .order_by(Contact.id.asc())
            )
            return [_serialize_user(user) for user in db.execute(stmt).scalars()]

    async def add_contact(self, owner_id: int, contact_id: int) -> ContactRead:
        if owner_id == contact_id:
            raise InvalidContactError("Cannot add yourself as a contact")
        return await self._run(self._add_contact, owner_id, contact_id)

    def _add_contact(self, owner_id: int, contact_id: int) -> ContactRead:
        with self._session_factory() as db:
            for user_id in (owner_id, contact_id):
                if db.get(User, user_id) is None:
                    raise UserNotFoundError(user_id)
            existing = self._find_edge(db, owner_id, contact_id)
            if existing is not None:
                return _serialize_contact(existing)
            edge = Contact(user_id=owner_id, contact_id=contact_id)
            db.add(edge)
            try:
                db.commit()
            except IntegrityError:
                # A concurrent add won the unique constraint; hand back its edge.
                db.rollback()
                existing = self._find_edge(db, owner_id, contact_id)
                if existing is None:
                    raise
                return _serialize_contact(existing)
            db.refresh(edge)
            return _serialize_contact(edge)

    async def remove_contact(self, owner_id: int, contact_id: int) -> bool:
        return await self._run(self._remove_contact, owner_id, contact_id)

    def _remove_contact(self, owner_id: int, contact_id: int) -> bool:
        with self._session_factory() as db:
            edge = self._find_edge(db, owner_id, contact_id)
            if edge is None:
                return False
            db.delete(edge)
            db.commit()
            return True

    @staticmethod
    def _find_edge(db: Session, owner_id: int, contact_id: int) -> Contact | None:
        stmt = select(Contact).where(Contact.user_id == owner_id, Contact.contact_id == contact_id)
        return db.execute(stmt).scalar_one_or_none()

    # Messages --------------------------------------------------------------

    async def list_messages(self, user_id: int, contact_id: int) -> list[MessageRead]:
        return await self._run(self._list_messages, user_id, contact_id)

    def _list_messages(self, user_id: int, contact_id: int) -> list[MessageRead]:
        with self._session_factory() as db:
            stmt = (
                select(Message)
                .where(_pair_clause(user_id, contact_id))
                .order_by(Message.sent_at.asc(), Message.id.asc())
            )
            return [_serialize_message(message) for message in db.execute(stmt).scalars()]

    async def create_message(self, sender_id: int, receiver_id: int, content: str) -> MessageRead:
        return await self._run(self._create_message, sender_id, receiver_id, content)

    def _create_message(self, sender_id: int, receiver_id: int, content: str) -> MessageRead:
        with self._session_factory() as db:
            for user_id in (sender_id, receiver_id):
                if db.get(User, user_id) is None:
                    raise UserNotFoundError(user_id)
            message = Message(
                sender_id=sender_id,
                receiver_id=receiver_id,
                content=content,
                sent_at=self._clock(),
                is_read=False,
            )
            db.add(message)
            db.commit()
            db.refresh(message)
            return _serialize_message(message)

    async def get_message(self, message_id: int) -> MessageRead | None:
        return await self._run(self._get_message, message_id)

    def _get_message(self, message_id: int) -> MessageRead | None:
        with self._session_factory() as db:
            message = db.get(Message, message_id)
            return _serialize_message(message) if message else None

    async def mark_message_read(self, message_id: int) -> ReadMark | None:
        return await self._run(self._mark_message_read, message_id)

    def _mark_message_read(self, message_id: int) -> ReadMark | None:
        with self._session_factory() as db:
            # Conditional update: only one caller can flip the flag.
            result = db.execute(
                update(Message)
                .where(Message.id == message_id, Message.is_read.is_(False))
                .values(is_read=True, read_at=self._clock())
            )
            db.commit()
            message = db.get(Message, message_id)
            if message is None:
                return None
            return ReadMark(message=_serialize_message(message), changed=result.rowcount == 1)

    async def list_recent_conversations(self, user_id: int) -> list[ConversationRead]:
        return await self._run(self._list_recent_conversations, user_id)

    def _list_recent_conversations(self, user_id: int) -> list[ConversationRead]:
        with self._session_factory() as db:
            edges = db.execute(
                select(Contact).where(Contact.user_id == user_id).order_by(Contact.id.asc())
            ).scalars().all()
            conversations: list[ConversationRead] = []
            for edge in edges:
                last_message = db.execute(
                    select(Message)
                    .where(_pair_clause(user_id, edge.contact_id))
                    .order_by(Message.sent_at.desc(), Message.id.desc())
                    .limit(1)
                ).scalar_one_or_none()
                if last_message is None:
                    continue
                contact = db.get(User, edge.contact_id)
                if contact is None:
                    continue
                conversations.append(
                    ConversationRead(
                        contact=_serialize_user(contact),
                        last_message=_serialize_message(last_message),
                    )
                )
        conversations.sort(key=lambda item: message_sort_key(item.last_message), reverse=True)
        return conversations
