"""HTTP endpoints for direct messages and recent conversations."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import get_current_user, get_event_router, get_repository
from app.config import get_settings
from app.repository import MessengerRepository, UserNotFoundError
from app.schemas import ConversationRead, MessageCreate, MessageRead, UserRead
from parley.realtime import EventRouter

router = APIRouter(tags=["messages"])

settings = get_settings()


async def _require_user(user_id: int, repository: MessengerRepository) -> UserRead:
    user = await repository.find_user(user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


@router.get("/messages/{contact_id}", response_model=list[MessageRead])
async def list_messages(
    contact_id: int,
    current_user: UserRead = Depends(get_current_user),
    repository: MessengerRepository = Depends(get_repository),
) -> list[MessageRead]:
    """Return the history with ``contact_id``, oldest first."""

    await _require_user(contact_id, repository)
    return list(await repository.list_messages(current_user.id, contact_id))


@router.post("/messages", response_model=MessageRead, status_code=status.HTTP_201_CREATED)
async def send_message(
    payload: MessageCreate,
    current_user: UserRead = Depends(get_current_user),
    repository: MessengerRepository = Depends(get_repository),
    event_router: EventRouter = Depends(get_event_router),
) -> MessageRead:
    """Persist a message and push it to both live participants."""

    if len(payload.content) > settings.chat_message_max_length:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Message exceeds {settings.chat_message_max_length} characters",
        )
    await _require_user(payload.receiver_id, repository)

    try:
        message = await repository.create_message(current_user.id, payload.receiver_id, payload.content)
    except UserNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found") from exc

    await event_router.deliver_message(message)
    return message


@router.patch("/messages/{message_id}/read", response_model=MessageRead)
async def mark_message_read(
    message_id: int,
    current_user: UserRead = Depends(get_current_user),
    repository: MessengerRepository = Depends(get_repository),
    event_router: EventRouter = Depends(get_event_router),
) -> MessageRead:
    """Mark a message as read and notify its sender the first time."""

    message = await repository.get_message(message_id)
    if message is None or current_user.id not in (message.sender_id, message.receiver_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    if current_user.id != message.receiver_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the receiver can mark a message as read",
        )

    mark = await repository.mark_message_read(message_id)
    if mark is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")

    if mark.changed:
        await event_router.deliver_read_receipt(mark.message)
    return mark.message


@router.get("/conversations", response_model=list[ConversationRead])
async def list_conversations(
    current_user: UserRead = Depends(get_current_user),
    repository: MessengerRepository = Depends(get_repository),
) -> list[ConversationRead]:
    """Latest message per contact, newest conversation first."""

    return list(await repository.list_recent_conversations(current_user.id))
