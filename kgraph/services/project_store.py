"""Redis-backed project records (the external document store)."""

from __future__ import annotations

import json
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from kgraph.utils.exceptions import PersistenceError
from kgraph.utils.logging import get_logger
from kgraph.utils.retry import async_retry

logger = get_logger(__name__)

_PROJECT_KEY = "kgraph:project:{}"


class ProjectStore:
    """JSON project records keyed by project id.

    A record holds at least ``knowledge_graph``; other fields written by the
    surrounding application (title, document, chat history) are preserved on
    update. Every failure surfaces as ``PersistenceError``.
    """

    def __init__(self, redis_url: str | None = None, *, client: Any = None) -> None:
        if client is None and redis_url is None:
            raise ValueError("ProjectStore needs a redis_url or a client")
        self._client = client if client is not None else aioredis.from_url(redis_url, decode_responses=True)

    async def get(self, project_id: str) -> dict[str, Any] | None:
        try:
            raw = await self._read(project_id)
        except RedisError as exc:
            raise PersistenceError(f"Failed to fetch project {project_id}: {exc}") from exc
        if raw is None:
            return None
        try:
            record = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise PersistenceError(f"Project {project_id} holds invalid JSON") from exc
        if not isinstance(record, dict):
            raise PersistenceError(f"Project {project_id} is not a JSON object")
        return record

    async def update(self, project_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        """Merge ``updates`` into the stored record (created if missing)."""
        record = await self.get(project_id) or {"id": project_id}
        record.update(updates)
        try:
            await self._write(project_id, json.dumps(record, default=str))
        except RedisError as exc:
            raise PersistenceError(f"Failed to update project {project_id}: {exc}") from exc
        logger.debug("project_updated", project_id=project_id, fields=sorted(updates))
        return record

    @async_retry(retry_on=(RedisConnectionError, RedisTimeoutError))
    async def _read(self, project_id: str) -> str | None:
        return await self._client.get(_PROJECT_KEY.format(project_id))

    @async_retry(retry_on=(RedisConnectionError, RedisTimeoutError))
    async def _write(self, project_id: str, payload: str) -> None:
        await self._client.set(_PROJECT_KEY.format(project_id), payload)

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError:
            return False

    async def close(self) -> None:
        await self._client.aclose()
