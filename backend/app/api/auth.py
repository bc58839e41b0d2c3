"""Authentication API endpoints."""

from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import get_repository
from app.config import get_settings
from app.core.security import create_access_token, get_password_hash, verify_password
from app.repository import DuplicateUsernameError, MessengerRepository
from app.schemas import LoginRequest, Token, UserCreate, UserCreateData, UserRead

router = APIRouter()
settings = get_settings()


@router.post("/register", response_model=UserRead, status_code=status.HTTP_201_CREATED)
async def register_user(
    user_in: UserCreate,
    repository: MessengerRepository = Depends(get_repository),
) -> UserRead:
    """Register a new user in the system."""

    try:
        return await repository.create_user(
            UserCreateData(
                username=user_in.username,
                display_name=user_in.display_name,
                hashed_password=get_password_hash(user_in.password),
            )
        )
    except DuplicateUsernameError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Username is already taken",
        ) from exc


@router.post("/login", response_model=Token)
async def login_user(
    credentials: LoginRequest,
    repository: MessengerRepository = Depends(get_repository),
) -> Token:
    """Authenticate a user and return a JWT access token."""

    stored = await repository.get_credentials(credentials.username)
    if stored is None or not verify_password(credentials.password, stored.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
        )

    access_token_expires = timedelta(minutes=settings.access_token_expire_minutes)
    access_token = create_access_token({"sub": str(stored.user.id)}, expires_delta=access_token_expires)
    return Token(access_token=access_token, token_type="bearer")
