"""Graph sessions: the single live graph per research result, plus its layout."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from kgraph.graph.layout import LayoutConfig, LayoutEngine
from kgraph.graph.model import validate
from kgraph.models.schemas import GraphData
from kgraph.utils.exceptions import SessionNotFoundError
from kgraph.utils.logging import get_logger

logger = get_logger(__name__)


class MutationState(str, Enum):
    IDLE = "idle"
    EXPANDING = "expanding"
    REGENERATING = "regenerating"


@dataclass
class GraphSession:
    """Owns the authoritative graph.

    Mutations always read and write ``graph`` through this object, never through
    a copy captured before an await. ``epoch`` is bumped whenever the graph is
    replaced wholesale (a regenerate committed) or the session closes; an expand
    that started under an older epoch must not be applied. Regenerates are
    numbered as they start so that a later one always wins over an earlier one,
    whatever order their results arrive in.
    """

    session_id: str
    graph: GraphData = field(default_factory=GraphData)
    project_id: str | None = None
    document_text: str = ""
    layout: LayoutEngine = field(default_factory=LayoutEngine)
    epoch: int = 0
    closed: bool = False
    expanding: set[str] = field(default_factory=set)
    regenerating: int = 0
    regenerations_started: int = 0
    committed_regeneration: int = 0
    _layout_task: asyncio.Task | None = field(default=None, init=False, repr=False)

    @property
    def state(self) -> MutationState:
        if self.regenerating:
            return MutationState.REGENERATING
        if self.expanding:
            return MutationState.EXPANDING
        return MutationState.IDLE

    @property
    def in_flight(self) -> bool:
        return self.state is not MutationState.IDLE

    def replace_graph(self, graph: GraphData) -> None:
        self.graph = graph
        self.layout.set_graph(graph)

    def next_epoch(self) -> int:
        self.epoch += 1
        return self.epoch

    def is_current(self, epoch: int) -> bool:
        return not self.closed and epoch == self.epoch

    def start_regeneration(self) -> int:
        self.regenerations_started += 1
        return self.regenerations_started

    def is_superseded(self, regeneration: int) -> bool:
        """A newer regenerate has already been applied, or the session closed."""
        return self.closed or self.committed_regeneration > regeneration

    def commit_regeneration(self, regeneration: int, graph: GraphData) -> None:
        self.committed_regeneration = regeneration
        self.next_epoch()
        self.replace_graph(graph)

    def start_layout(self) -> None:
        if self._layout_task is None or self._layout_task.done():
            self._layout_task = asyncio.create_task(self.layout.run())

    def close(self) -> None:
        self.closed = True
        self.next_epoch()
        self.layout.stop()

    def describe(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "project_id": self.project_id,
            "state": self.state.value,
            "in_flight": self.in_flight,
            "epoch": self.epoch,
            "node_count": len(self.graph.nodes),
            "link_count": len(self.graph.links),
        }


class SessionRegistry:
    """In-process registry of live graph sessions (single editor per session)."""

    def __init__(self, layout_config: LayoutConfig | None = None, *, autorun_layout: bool = False) -> None:
        self._layout_config = layout_config or LayoutConfig()
        self._autorun_layout = autorun_layout
        self._sessions: dict[str, GraphSession] = {}

    def create(
        self,
        *,
        graph: Any = None,
        project_id: str | None = None,
        document_text: str = "",
    ) -> GraphSession:
        session = GraphSession(
            session_id=uuid.uuid4().hex,
            project_id=project_id,
            document_text=document_text,
            layout=LayoutEngine(self._layout_config),
        )
        session.replace_graph(validate(graph) if graph is not None else GraphData())
        self._sessions[session.session_id] = session
        if self._autorun_layout:
            session.start_layout()
        logger.info(
            "session_created",
            session_id=session.session_id,
            project_id=project_id,
            nodes=len(session.graph.nodes),
        )
        return session

    def get(self, session_id: str) -> GraphSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"No graph session '{session_id}'")
        return session

    def close(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFoundError(f"No graph session '{session_id}'")
        session.close()
        logger.info("session_closed", session_id=session_id)

    def close_all(self) -> None:
        for session_id in list(self._sessions):
            self.close(session_id)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions
