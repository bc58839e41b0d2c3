"""Pydantic schemas for API payloads."""

from .base import CamelModel
from .messages import (
    ContactCreate,
    ContactCreated,
    ContactRead,
    ConversationRead,
    MessageCreate,
    MessageRead,
)
from .users import LoginRequest, Token, UserCreate, UserCreateData, UserCredentials, UserRead

__all__ = [
    "CamelModel",
    "ContactCreate",
    "ContactCreated",
    "ContactRead",
    "ConversationRead",
    "LoginRequest",
    "MessageCreate",
    "MessageRead",
    "Token",
    "UserCreate",
    "UserCreateData",
    "UserCredentials",
    "UserRead",
]
