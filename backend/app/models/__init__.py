"""Database models package."""

from .base import Base
from .chat import Contact, Message, User

__all__ = [
    "Base",
    "User",
    "Contact",
    "Message",
]
