"""Expand / delete / regenerate orchestration over a graph session."""

from __future__ import annotations

import asyncio

from kgraph.graph.model import find_node, merge, remove_node, validate
from kgraph.graph.parser import parse_entities
from kgraph.models.schemas import ChatNote, GraphData
from kgraph.services.base import ChatNotifier, EntityGenerator, GraphExtractor
from kgraph.services.persistence_service import PersistenceBridge
from kgraph.services.session import GraphSession
from kgraph.utils.exceptions import ExpansionInProgressError, GenerationError, StaleResultError
from kgraph.utils.logging import get_logger

logger = get_logger(__name__)


def expansion_note(label: str) -> ChatNote:
    return ChatNote(role="user", message=f"Expand more details on: {label}")


class MutationService:
    """Applies mutations to a session's graph and fans out the side effects.

    Every successful mutation re-seeds the session layout and requests a
    persistence sync; neither is awaited here.
    """

    def __init__(
        self,
        generator: EntityGenerator,
        extractor: GraphExtractor,
        *,
        persistence: PersistenceBridge | None = None,
        chat_log: ChatNotifier | None = None,
    ) -> None:
        self._generator = generator
        self._extractor = extractor
        self._persistence = persistence or PersistenceBridge()
        self._chat_log = chat_log
        self._background: set[asyncio.Task] = set()

    async def expand(self, session: GraphSession, node_id: str, label: str) -> GraphData:
        """Add generated sub-entities of ``node_id`` to the graph.

        Expanding the same node twice in a row yields the same ``{node}-sub-{n}``
        ids twice; that duplication is kept as-is.

        Raises:
            ExpansionInProgressError: this node's previous expand has not returned yet.
            GenerationError: the generator failed; the graph is unchanged.
            StaleResultError: a regenerate was applied, the session closed, or the
                node was deleted while the generator ran; the result is dropped.
        """
        if node_id in session.expanding:
            raise ExpansionInProgressError(node_id)

        epoch = session.epoch
        session.expanding.add(node_id)
        logger.info("node_expand_started", session_id=session.session_id, node_id=node_id, label=label)
        try:
            text = await self._generator.generate(label)
        except GenerationError:
            raise
        except Exception as exc:
            logger.error("node_expand_failed", node_id=node_id, error=str(exc))
            raise GenerationError(f"Failed to expand node '{node_id}'") from exc
        finally:
            session.expanding.discard(node_id)

        if not session.is_current(epoch):
            logger.warning("stale_expansion_discarded", session_id=session.session_id, node_id=node_id)
            raise StaleResultError(f"Graph was replaced while expanding node '{node_id}'")
        if find_node(session.graph, node_id) is None:
            logger.warning("expansion_parent_missing", session_id=session.session_id, node_id=node_id)
            raise StaleResultError(f"Node '{node_id}' was deleted while it was being expanded")

        delta = parse_entities(node_id, text)
        graph = merge(session.graph, delta)
        self._commit(session, graph)
        self._notify(session, expansion_note(label))
        logger.info("node_expanded", node_id=node_id, added=len(delta.nodes), nodes=len(graph.nodes))
        return graph

    def delete(self, session: GraphSession, node_id: str) -> GraphData:
        """Cascade-delete a node.

        Deleting an absent node leaves the graph as it is but still requests a
        sync, so the store is brought up to date either way.
        """
        graph = remove_node(session.graph, node_id)
        if len(graph.nodes) == len(session.graph.nodes):
            logger.debug("node_delete_noop", session_id=session.session_id, node_id=node_id)
        self._commit(session, graph)
        logger.info("node_deleted", node_id=node_id, nodes=len(graph.nodes), links=len(graph.links))
        return graph

    async def regenerate(self, session: GraphSession, document_text: str | None = None) -> GraphData:
        """Replace the graph with a fresh extraction over the document text.

        Applying the result supersedes every expand still in flight, and every
        regenerate that started earlier. A regenerate that fails supersedes
        nothing.

        Raises:
            GenerationError: the extractor failed; the graph is unchanged.
            StaleResultError: a later regenerate was applied first, or the
                session closed; the result is dropped.
        """
        text = session.document_text if document_text is None else document_text
        regeneration = session.start_regeneration()
        session.regenerating += 1
        logger.info("graph_regenerate_started", session_id=session.session_id, chars=len(text))
        try:
            raw = await self._extractor.extract(text)
        except GenerationError:
            raise
        except Exception as exc:
            logger.error("graph_regenerate_failed", session_id=session.session_id, error=str(exc))
            raise GenerationError("Failed to regenerate knowledge graph") from exc
        finally:
            session.regenerating -= 1

        if session.is_superseded(regeneration):
            logger.warning("stale_regeneration_discarded", session_id=session.session_id)
            raise StaleResultError("Regenerated graph was superseded before it could be applied")

        graph = validate(raw)
        if document_text is not None:
            session.document_text = document_text
        session.commit_regeneration(regeneration, graph)
        self._persistence.request_sync(session)
        logger.info("graph_regenerated", nodes=len(graph.nodes), links=len(graph.links))
        return graph

    def _commit(self, session: GraphSession, graph: GraphData) -> None:
        session.replace_graph(graph)
        self._persistence.request_sync(session)

    def _notify(self, session: GraphSession, note: ChatNote) -> None:
        if self._chat_log is None:
            return
        task = asyncio.create_task(self._send_note(session.session_id, note))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _send_note(self, session_id: str, note: ChatNote) -> None:
        try:
            await self._chat_log.notify(session_id, note)
        except Exception as exc:
            logger.warning("chat_note_failed", session_id=session_id, error=str(exc))

    async def drain(self) -> None:
        """Wait for outstanding chat notes and persistence writes."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        await self._persistence.drain()
