"""Pydantic models for the knowledge graph and the data flowing around it."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


# ── Entity categories ────────────────────────────────────────────────


class EntityGroup(IntEnum):
    """Rendering/classification category of a node."""

    PRODUCT = 1  # Drug / Product / Technology / Protein / Gene / Pathway / Topic
    COMPANY = 2  # Company / Sponsor
    DISEASE = 3  # Disease / Indication
    PATENT = 4  # Patent / Trial


class EntityType(str, Enum):
    DRUG = "Drug"
    PRODUCT = "Product"
    TECHNOLOGY = "Technology"
    PROTEIN = "Protein"
    GENE = "Gene"
    PATHWAY = "Pathway"
    TOPIC = "Topic"
    COMPANY = "Company"
    SPONSOR = "Sponsor"
    DISEASE = "Disease"
    INDICATION = "Indication"
    PATENT = "Patent"
    TRIAL = "Trial"

    @property
    def group(self) -> EntityGroup:
        return ENTITY_TYPE_TO_GROUP[self]


ENTITY_TYPE_TO_GROUP: dict[EntityType, EntityGroup] = {
    EntityType.DRUG: EntityGroup.PRODUCT,
    EntityType.PRODUCT: EntityGroup.PRODUCT,
    EntityType.TECHNOLOGY: EntityGroup.PRODUCT,
    EntityType.PROTEIN: EntityGroup.PRODUCT,
    EntityType.GENE: EntityGroup.PRODUCT,
    EntityType.PATHWAY: EntityGroup.PRODUCT,
    EntityType.TOPIC: EntityGroup.PRODUCT,
    EntityType.COMPANY: EntityGroup.COMPANY,
    EntityType.SPONSOR: EntityGroup.COMPANY,
    EntityType.DISEASE: EntityGroup.DISEASE,
    EntityType.INDICATION: EntityGroup.DISEASE,
    EntityType.PATENT: EntityGroup.PATENT,
    EntityType.TRIAL: EntityGroup.PATENT,
}

DEFAULT_ENTITY_TYPE = EntityType.TOPIC


# ── Graph ────────────────────────────────────────────────────────────


class GraphNode(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    label: str = ""
    group: int = int(EntityGroup.PRODUCT)


class GraphLink(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str
    target: str
    relation: str = ""


class GraphData(BaseModel):
    """Ordered node list plus edge list.

    Also used for deltas (parser output not yet merged into a session graph).
    """

    nodes: list[GraphNode] = Field(default_factory=list)
    links: list[GraphLink] = Field(default_factory=list)


# ── LLM structured output ────────────────────────────────────────────


class ExtractedNode(BaseModel):
    id: str
    label: str
    group: int = Field(default=1, description="1=Drug/Product, 2=Company/Sponsor, 3=Disease/Indication, 4=Patent/Regulation/Trial")


class ExtractedLink(BaseModel):
    source: str = Field(description="Must match a node id")
    target: str = Field(description="Must match a node id")
    relation: str = ""


class ExtractedGraph(BaseModel):
    nodes: list[ExtractedNode] = Field(default_factory=list)
    links: list[ExtractedLink] = Field(default_factory=list)


# ── Layout ───────────────────────────────────────────────────────────


class NodePosition(BaseModel):
    id: str
    x: float
    y: float
    pinned: bool = False


class ViewState(BaseModel):
    k: float = 1.0
    x: float = 0.0
    y: float = 0.0


class LayoutFrame(BaseModel):
    """One published snapshot of the simulation."""

    tick: int
    alpha: float
    nodes: list[NodePosition] = Field(default_factory=list)
    view: ViewState = Field(default_factory=ViewState)


# ── Side channel ─────────────────────────────────────────────────────


class ChatNote(BaseModel):
    role: Literal["user", "assistant", "system"] = "user"
    message: str
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
