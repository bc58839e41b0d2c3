"""FastAPI dependencies for the API layer."""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from app.core.security import decode_access_token
from app.repository import MessengerRepository
from app.schemas import UserRead
from parley.realtime import EventRouter, RealtimeServices

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def get_realtime(request: Request) -> RealtimeServices:
    """Realtime services installed on the application at startup."""

    services = getattr(request.app.state, "realtime", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting up",
        )
    return services


def get_repository(services: RealtimeServices = Depends(get_realtime)) -> MessengerRepository:
    return services.repository


def get_event_router(services: RealtimeServices = Depends(get_realtime)) -> EventRouter:
    return services.router


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    repository: MessengerRepository = Depends(get_repository),
) -> UserRead:
    """Retrieve the current user from the JWT token."""

    return await get_user_from_token(token, repository)


async def get_user_from_token(token: str, repository: MessengerRepository) -> UserRead:
    """Resolve a user from a JWT token or raise an HTTP 401 error."""

    payload = decode_access_token(token)
    sub = payload.get("sub")
    if sub is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )

    try:
        user_id = int(sub)
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from None

    user = await repository.find_user(user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    return user
