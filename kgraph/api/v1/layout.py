"""Layout endpoints: snapshots, drag pinning, pan/zoom and an SSE tick stream."""

from __future__ import annotations

import asyncio
import json

from fastapi import APIRouter, Depends, HTTPException, Query
from sse_starlette.sse import EventSourceResponse

from kgraph.api.dependencies import get_sessions
from kgraph.api.v1.schemas.graph import DragRequest, ViewRequest
from kgraph.models.schemas import LayoutFrame
from kgraph.services.session import SessionRegistry
from kgraph.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/sessions", tags=["layout"])

_PING_SECONDS = 15


@router.get("/{session_id}/layout", response_model=LayoutFrame)
async def get_layout(
    session_id: str,
    ticks: int = Query(default=0, ge=0, le=1000, description="Advance the simulation before answering"),
    sessions: SessionRegistry = Depends(get_sessions),
) -> LayoutFrame:
    layout = sessions.get(session_id).layout
    if ticks:
        layout.tick(ticks)
    return layout.snapshot()


@router.post("/{session_id}/layout/drag", response_model=LayoutFrame)
async def drag_node(
    session_id: str,
    request: DragRequest,
    sessions: SessionRegistry = Depends(get_sessions),
) -> LayoutFrame:
    """Pin a node while it is dragged; release it on ``phase="end"``."""
    layout = sessions.get(session_id).layout
    try:
        if request.phase == "start":
            layout.drag_start(request.node_id, request.x, request.y)
        elif request.phase == "move":
            if request.x is None or request.y is None:
                raise HTTPException(status_code=422, detail="Drag move needs x and y")
            layout.drag_move(request.node_id, request.x, request.y)
        else:
            layout.drag_end(request.node_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Node '{request.node_id}' not in layout")
    return layout.snapshot()


@router.post("/{session_id}/layout/view", response_model=LayoutFrame)
async def update_view(
    session_id: str,
    request: ViewRequest,
    sessions: SessionRegistry = Depends(get_sessions),
) -> LayoutFrame:
    layout = sessions.get(session_id).layout
    layout.view = layout.view.pan(request.dx, request.dy).zoom(request.zoom, request.cx, request.cy)
    return layout.snapshot()


@router.get("/{session_id}/layout/stream")
async def stream_layout(
    session_id: str,
    sessions: SessionRegistry = Depends(get_sessions),
) -> EventSourceResponse:
    """SSE endpoint: one ``frame`` event per simulation tick.

    The stream opens with the current snapshot, sends ``ping`` while the layout
    rests and ends with ``done`` when the session closes.
    """
    session = sessions.get(session_id)
    queue = session.layout.subscribe()

    async def event_generator():
        try:
            yield {"event": "frame", "data": session.layout.snapshot().model_dump_json()}
            while True:
                try:
                    frame = await asyncio.wait_for(queue.get(), timeout=_PING_SECONDS)
                except asyncio.TimeoutError:
                    yield {"event": "ping", "data": ""}
                    continue

                if frame is None:
                    yield {"event": "done", "data": json.dumps({"session_id": session_id})}
                    return
                yield {"event": "frame", "data": frame.model_dump_json()}
        finally:
            session.layout.unsubscribe(queue)

    return EventSourceResponse(event_generator())
