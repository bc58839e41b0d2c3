"""Repository implementations and the factory that picks one at startup."""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from app.config import Settings
from app.database import build_engine, build_session_factory, init_schema

from .base import (
    DuplicateUsernameError,
    InvalidContactError,
    MessengerRepository,
    ReadMark,
    RepositoryError,
    UserNotFoundError,
    message_sort_key,
    utcnow,
)
from .memory import InMemoryRepository
from .sql import SQLRepository

logger = logging.getLogger(__name__)


def build_repository(settings: Settings) -> MessengerRepository:
    """Return the configured repository, falling back to memory when SQL is unavailable."""

    if settings.storage_backend == "memory":
        logger.info("Using in-memory storage")
        return InMemoryRepository()

    try:
        engine = build_engine(settings.database_url, echo=settings.debug)
        init_schema(engine)
    except (SQLAlchemyError, ImportError, OSError):
        logger.warning(
            "Database unavailable; falling back to in-memory storage",
            exc_info=logger.isEnabledFor(logging.DEBUG),
        )
        return InMemoryRepository()

    logger.info("Using SQL storage at %s", engine.url.render_as_string(hide_password=True))
    return SQLRepository(build_session_factory(engine))


__all__ = [
    "build_repository",
    "DuplicateUsernameError",
    "InMemoryRepository",
    "InvalidContactError",
    "MessengerRepository",
    "ReadMark",
    "RepositoryError",
    "SQLRepository",
    "UserNotFoundError",
    "message_sort_key",
    "utcnow",
]
