"""Request/response models for the graph session API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from kgraph.models.schemas import GraphData, GraphLink, GraphNode


class CreateSessionRequest(BaseModel):
    project_id: str | None = Field(default=None, description="Bind to a stored project; omit for an in-memory session")
    document_text: str = ""
    graph: GraphData | None = None
    extract: bool = Field(default=False, description="Extract a graph from document_text when none is given or stored")


class SessionResponse(BaseModel):
    session_id: str
    project_id: str | None = None
    state: str
    in_flight: bool = False
    epoch: int = 0
    node_count: int = 0
    link_count: int = 0


class GraphResponse(BaseModel):
    session_id: str
    state: str
    nodes: list[GraphNode] = Field(default_factory=list)
    links: list[GraphLink] = Field(default_factory=list)
    node_count: int = 0
    link_count: int = 0


class ExpandRequest(BaseModel):
    label: str | None = Field(default=None, description="Seed label; defaults to the node's own label")


class RegenerateRequest(BaseModel):
    document_text: str | None = Field(default=None, description="Defaults to the session's document text")


class DragRequest(BaseModel):
    node_id: str
    phase: Literal["start", "move", "end"]
    x: float | None = None
    y: float | None = None


class ViewRequest(BaseModel):
    dx: float = 0.0
    dy: float = 0.0
    zoom: float = Field(default=1.0, gt=0)
    cx: float = 0.0
    cy: float = 0.0
