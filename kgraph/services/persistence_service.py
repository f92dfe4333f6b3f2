"""Best-effort mirroring of session graphs to the project store."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from kgraph.graph.model import validate
from kgraph.models.schemas import GraphData
from kgraph.services.base import DocumentStore
from kgraph.utils.logging import get_logger

if TYPE_CHECKING:
    from kgraph.services.session import GraphSession

logger = get_logger(__name__)


class PersistenceBridge:
    """Writes the authoritative in-memory graph to the store, fire-and-forget.

    Sessions without a project id are never mirrored, and a bridge built
    without a store mirrors nothing. Writes for one project are serialized and
    each one writes the session graph as it is when the write runs, so the
    stored copy converges on the latest graph. Failures are logged, never
    raised.
    """

    def __init__(self, store: DocumentStore | None = None) -> None:
        self._store = store
        self._locks: dict[str, asyncio.Lock] = {}
        self._pending: set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return self._store is not None

    def request_sync(self, session: GraphSession) -> asyncio.Task | None:
        if self._store is None or session.project_id is None:
            logger.debug("graph_sync_skipped", session_id=session.session_id)
            return None
        task = asyncio.create_task(self._flush(session, session.project_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _flush(self, session: GraphSession, project_id: str) -> None:
        lock = self._locks.setdefault(project_id, asyncio.Lock())
        async with lock:
            graph = session.graph
            try:
                await self._store.update(project_id, {"knowledge_graph": graph.model_dump()})
            except Exception as exc:
                logger.error(
                    "graph_sync_failed",
                    project_id=project_id,
                    session_id=session.session_id,
                    error=str(exc),
                )
                return
            logger.info(
                "graph_synced",
                project_id=project_id,
                nodes=len(graph.nodes),
                links=len(graph.links),
            )

    async def load(self, project_id: str) -> GraphData | None:
        """Read a project's stored graph. Returns None when absent or unreadable."""
        if self._store is None:
            return None
        try:
            record = await self._store.get(project_id)
        except Exception as exc:
            logger.error("graph_load_failed", project_id=project_id, error=str(exc))
            return None
        if not record or not record.get("knowledge_graph"):
            return None
        graph = validate(record["knowledge_graph"])
        logger.info("graph_loaded", project_id=project_id, nodes=len(graph.nodes))
        return graph

    async def drain(self) -> None:
        """Wait for every outstanding write."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
