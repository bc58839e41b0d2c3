"""Endpoints describing the authenticated user."""

from fastapi import APIRouter, Depends

from app.api.deps import get_current_user
from app.schemas import UserRead

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=UserRead)
async def read_current_user(current_user: UserRead = Depends(get_current_user)) -> UserRead:
    return current_user
