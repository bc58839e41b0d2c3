"""Schemas related to users and account creation."""

from datetime import datetime

from pydantic import Field, constr

from app.schemas.base import CamelModel


class UserRead(CamelModel):
    """Public representation of a user."""

    id: int
    username: str
    display_name: str
    avatar: str | None = None
    is_online: bool = False
    last_seen: datetime | None = None


class UserCreateData(CamelModel):
    """Everything the repository needs to create a user."""

    username: str
    display_name: str
    hashed_password: str
    avatar: str | None = None


class UserCredentials(CamelModel):
    """A user together with the stored password hash."""

    user: UserRead
    hashed_password: str


class UserCreate(CamelModel):
    """Payload for registering a new account."""

    username: constr(strip_whitespace=True, min_length=3, max_length=64) = Field(
        ..., description="Unique username consisting of 3-64 characters"
    )
    password: constr(min_length=6, max_length=128) = Field(
        ..., description="Plain text password that will be hashed before storing"
    )
    display_name: constr(strip_whitespace=True, min_length=1, max_length=128) = Field(
        ..., description="Name shown to contacts"
    )


class LoginRequest(CamelModel):
    """Payload for user login."""

    username: constr(strip_whitespace=True, min_length=1, max_length=64)
    password: constr(min_length=1, max_length=128)


class Token(CamelModel):
    """Access token returned after successful authentication."""

    access_token: str = Field(..., description="JWT access token")
    token_type: str = Field(default="bearer", description="Token type, always 'bearer'")
