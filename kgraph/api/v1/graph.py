"""Graph session endpoints: lifecycle, mutations and export."""

from __future__ import annotations

import json
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from kgraph.api.dependencies import get_chat_log, get_mutations, get_persistence, get_sessions
from kgraph.api.graph_image import render_graph_image
from kgraph.api.v1.schemas.graph import (
    CreateSessionRequest,
    ExpandRequest,
    GraphResponse,
    RegenerateRequest,
    SessionResponse,
)
from kgraph.graph.model import find_node
from kgraph.models.schemas import ChatNote, GraphData
from kgraph.services.chat_log import ChatLog
from kgraph.services.mutation_service import MutationService
from kgraph.services.persistence_service import PersistenceBridge
from kgraph.services.session import GraphSession, SessionRegistry
from kgraph.utils.logging import bind_session, get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/sessions", tags=["graph"])


def _graph_response(session: GraphSession, graph: GraphData | None = None) -> GraphResponse:
    graph = graph if graph is not None else session.graph
    return GraphResponse(
        session_id=session.session_id,
        state=session.state.value,
        nodes=graph.nodes,
        links=graph.links,
        node_count=len(graph.nodes),
        link_count=len(graph.links),
    )


def _session(session_id: str, sessions: SessionRegistry) -> GraphSession:
    session = sessions.get(session_id)
    bind_session(session.session_id, session.project_id)
    return session


@router.post("", response_model=SessionResponse)
async def create_session(
    request: CreateSessionRequest,
    sessions: SessionRegistry = Depends(get_sessions),
    persistence: PersistenceBridge = Depends(get_persistence),
    mutations: MutationService = Depends(get_mutations),
) -> SessionResponse:
    """Open a graph session, hydrating it from the project store when bound."""
    graph = request.graph
    if graph is None and request.project_id is not None:
        graph = await persistence.load(request.project_id)

    session = sessions.create(
        graph=graph,
        project_id=request.project_id,
        document_text=request.document_text,
    )
    if graph is None and request.extract and request.document_text:
        try:
            await mutations.regenerate(session)
        except Exception:
            sessions.close(session.session_id)
            raise
    return SessionResponse(**session.describe())


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: str,
    sessions: SessionRegistry = Depends(get_sessions),
) -> SessionResponse:
    return SessionResponse(**_session(session_id, sessions).describe())


@router.delete("/{session_id}")
async def close_session(
    session_id: str,
    sessions: SessionRegistry = Depends(get_sessions),
) -> dict:
    sessions.close(session_id)
    return {"session_id": session_id, "status": "closed"}


@router.get("/{session_id}/graph", response_model=GraphResponse)
async def get_graph(
    session_id: str,
    sessions: SessionRegistry = Depends(get_sessions),
) -> GraphResponse:
    """Current graph of the session (D3-compatible ``nodes`` / ``links``)."""
    return _graph_response(_session(session_id, sessions))


@router.post("/{session_id}/nodes/{node_id}/expand", response_model=GraphResponse)
async def expand_node(
    session_id: str,
    node_id: str,
    request: ExpandRequest | None = None,
    sessions: SessionRegistry = Depends(get_sessions),
    mutations: MutationService = Depends(get_mutations),
) -> GraphResponse:
    session = _session(session_id, sessions)
    node = find_node(session.graph, node_id)
    if node is None:
        raise HTTPException(status_code=404, detail=f"Node '{node_id}' not found")

    label = request.label if request is not None and request.label else node.label or node.id
    graph = await mutations.expand(session, node_id, label)
    return _graph_response(session, graph)


@router.delete("/{session_id}/nodes/{node_id}", response_model=GraphResponse)
async def delete_node(
    session_id: str,
    node_id: str,
    sessions: SessionRegistry = Depends(get_sessions),
    mutations: MutationService = Depends(get_mutations),
) -> GraphResponse:
    session = _session(session_id, sessions)
    graph = mutations.delete(session, node_id)
    return _graph_response(session, graph)


@router.post("/{session_id}/regenerate", response_model=GraphResponse)
async def regenerate_graph(
    session_id: str,
    request: RegenerateRequest | None = None,
    sessions: SessionRegistry = Depends(get_sessions),
    mutations: MutationService = Depends(get_mutations),
) -> GraphResponse:
    session = _session(session_id, sessions)
    document_text = request.document_text if request is not None else None
    if document_text is None and not session.document_text:
        raise HTTPException(status_code=422, detail="No document text to extract a graph from")

    graph = await mutations.regenerate(session, document_text)
    return _graph_response(session, graph)


@router.get("/{session_id}/chat", response_model=list[ChatNote])
async def get_chat_notes(
    session_id: str,
    sessions: SessionRegistry = Depends(get_sessions),
    chat_log: ChatLog | None = Depends(get_chat_log),
) -> list[ChatNote]:
    """Notes the engine appended to the session transcript (e.g. expansions)."""
    session = _session(session_id, sessions)
    if chat_log is None:
        return []
    try:
        return await chat_log.history(session.session_id)
    except Exception as exc:
        logger.error("chat_history_read_failed", error=str(exc))
        raise HTTPException(status_code=503, detail="Chat log unavailable")


@router.get("/{session_id}/export")
async def export_graph(
    session_id: str,
    format: Literal["json", "graphml"] = "json",
    sessions: SessionRegistry = Depends(get_sessions),
) -> Response:
    """Export the session graph in JSON or GraphML format."""
    session = _session(session_id, sessions)

    if format == "json":
        content = json.dumps(session.graph.model_dump(), indent=2)
        return Response(
            content=content,
            media_type="application/json",
            headers={"Content-Disposition": f"attachment; filename=graph_{session_id}.json"},
        )

    return Response(
        content=to_graphml(session.graph),
        media_type="application/xml",
        headers={"Content-Disposition": f"attachment; filename=graph_{session_id}.graphml"},
    )


@router.get("/{session_id}/image")
async def graph_image(
    session_id: str,
    format: Literal["png", "jpeg", "jpg"] = "png",
    sessions: SessionRegistry = Depends(get_sessions),
) -> Response:
    """Render the graph at its current layout positions."""
    session = _session(session_id, sessions)
    content = render_graph_image(session.graph, session.layout.positions(), format=format)
    media_type = "image/png" if format == "png" else "image/jpeg"
    return Response(content=content, media_type=media_type)


def to_graphml(graph: GraphData) -> str:
    """Convert a graph to GraphML XML."""
    lines = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        '<graphml xmlns="http://graphml.graphdrawing.org/xmlns">',
        '  <key id="label" for="node" attr.name="label" attr.type="string"/>',
        '  <key id="group" for="node" attr.name="group" attr.type="int"/>',
        '  <key id="relation" for="edge" attr.name="relation" attr.type="string"/>',
        '  <graph id="G" edgedefault="directed">',
    ]

    for node in graph.nodes:
        lines.append(f'    <node id="{_xml_escape(node.id)}">')
        lines.append(f'      <data key="label">{_xml_escape(node.label)}</data>')
        lines.append(f'      <data key="group">{node.group}</data>')
        lines.append("    </node>")

    for i, link in enumerate(graph.links):
        lines.append(
            f'    <edge id="e{i}" source="{_xml_escape(link.source)}" target="{_xml_escape(link.target)}">'
        )
        lines.append(f'      <data key="relation">{_xml_escape(link.relation)}</data>')
        lines.append("    </edge>")

    lines.append("  </graph>")
    lines.append("</graphml>")
    return "\n".join(lines)


def _xml_escape(s: str) -> str:
    return s.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;").replace('"', "&quot;")
