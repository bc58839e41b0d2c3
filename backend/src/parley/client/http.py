"""Snapshot source backed by the request/response API."""

from __future__ import annotations

import logging
from typing import Any, List

import httpx

from app.schemas import ConversationRead, MessageRead, UserRead

logger = logging.getLogger(__name__)


class HttpSnapshotSource:
    """Fetches authoritative state from ``/api`` with an authenticated ``httpx`` client.

    The client is owned by the caller; it must carry the bearer token (for
    example via ``headers={"Authorization": "Bearer ..."}``) and a base URL.
    """

    def __init__(self, client: httpx.AsyncClient, *, prefix: str = "/api") -> None:
        self._client = client
        self._prefix = prefix.rstrip("/")

    async def fetch_contacts(self) -> List[UserRead]:
        data = await self._get("/contacts")
        return [UserRead.model_validate(item) for item in data]

    async def fetch_messages(self, contact_id: int) -> List[MessageRead]:
        data = await self._get(f"/messages/{contact_id}")
        return [MessageRead.model_validate(item) for item in data]

    async def fetch_conversations(self) -> List[ConversationRead]:
        data = await self._get("/conversations")
        return [ConversationRead.model_validate(item) for item in data]

    async def _get(self, path: str) -> Any:
        try:
            response = await self._client.get(f"{self._prefix}{path}")
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning("Snapshot fetch %s failed with HTTP %s", path, e.response.status_code)
            raise
        except httpx.RequestError as e:
            logger.warning("Snapshot fetch %s failed: %s", path, e)
            raise
        return response.json()


__all__ = ["HttpSnapshotSource"]
