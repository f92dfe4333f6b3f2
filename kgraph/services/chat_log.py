"""One-way chat-log side channel, written to a Redis list per session."""

from __future__ import annotations

from typing import Any

import redis.asyncio as aioredis

from kgraph.models.schemas import ChatNote
from kgraph.utils.logging import get_logger

logger = get_logger(__name__)

_CHAT_KEY = "kgraph:chat:{}"
_CHAT_TTL = 86400 * 7  # 7 days


class ChatLog:
    """Appends advisory notes to the session transcript; ``history`` reads them back for GET /chat."""

    def __init__(self, redis_url: str | None = None, *, client: Any = None) -> None:
        if client is None and redis_url is None:
            raise ValueError("ChatLog needs a redis_url or a client")
        self._client = client if client is not None else aioredis.from_url(redis_url, decode_responses=True)

    async def notify(self, session_id: str, note: ChatNote) -> None:
        key = _CHAT_KEY.format(session_id)
        await self._client.rpush(key, note.model_dump_json())
        await self._client.expire(key, _CHAT_TTL)
        logger.debug("chat_note_logged", session_id=session_id, role=note.role)

    async def history(self, session_id: str) -> list[ChatNote]:
        raw = await self._client.lrange(_CHAT_KEY.format(session_id), 0, -1)
        return [ChatNote.model_validate_json(item) for item in raw]

    async def close(self) -> None:
        await self._client.aclose()
