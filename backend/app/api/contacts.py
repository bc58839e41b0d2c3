"""Contact list endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status

from app.api.deps import get_current_user, get_repository
from app.repository import InvalidContactError, MessengerRepository, UserNotFoundError
from app.schemas import ContactCreate, ContactCreated, UserRead

router = APIRouter(prefix="/contacts", tags=["contacts"])


@router.get("", response_model=list[UserRead])
async def list_contacts(
    current_user: UserRead = Depends(get_current_user),
    repository: MessengerRepository = Depends(get_repository),
) -> list[UserRead]:
    """Return the users the current user keeps as contacts."""

    return list(await repository.list_contacts(current_user.id))


@router.post("", response_model=ContactCreated, status_code=status.HTTP_201_CREATED)
async def add_contact(
    payload: ContactCreate,
    current_user: UserRead = Depends(get_current_user),
    repository: MessengerRepository = Depends(get_repository),
) -> ContactCreated:
    """Add a contact by username."""

    if not payload.username or not payload.username.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username is required")

    target = await repository.find_user_by_username(payload.username.strip())
    if target is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if target.id == current_user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot add yourself as a contact")

    existing = await repository.list_contacts(current_user.id)
    if any(contact.id == target.id for contact in existing):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User is already a contact")

    try:
        edge = await repository.add_contact(current_user.id, target.id)
    except UserNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found") from exc
    except InvalidContactError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return ContactCreated(**edge.model_dump(), contact_details=target)


@router.delete("/{contact_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_contact(
    contact_id: int,
    current_user: UserRead = Depends(get_current_user),
    repository: MessengerRepository = Depends(get_repository),
) -> Response:
    """Remove ``contact_id`` from the current user's contacts."""

    if not await repository.remove_contact(current_user.id, contact_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Contact not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
