"""Pure graph operations: validation, merging deltas and cascade delete.

All functions return new ``GraphData`` objects and never mutate their inputs.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from kgraph.models.schemas import EntityGroup, GraphData, GraphLink, GraphNode
from kgraph.utils.logging import get_logger

logger = get_logger(__name__)


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _coerce_node(raw: Any) -> GraphNode | None:
    if isinstance(raw, GraphNode):
        return raw
    if not isinstance(raw, Mapping):
        return None
    node_id = raw.get("id")
    if node_id is None or node_id == "":
        return None
    group = raw.get("group")
    if isinstance(group, bool) or not isinstance(group, int):
        group = int(EntityGroup.PRODUCT)
    label = raw.get("label")
    return GraphNode(
        id=str(node_id),
        label=str(label) if label is not None else str(node_id),
        group=group,
    )


def _coerce_link(raw: Any) -> GraphLink | None:
    if isinstance(raw, GraphLink):
        return raw
    if not isinstance(raw, Mapping):
        return None
    source, target = raw.get("source"), raw.get("target")
    if source is None or target is None:
        return None
    relation = raw.get("relation")
    return GraphLink(
        source=str(source),
        target=str(target),
        relation=str(relation) if relation is not None else "",
    )


def validate(raw_graph: Any) -> GraphData:
    """Build a referentially consistent graph from untrusted input.

    Edges whose source or target is not a known node id are dropped. Missing or
    non-list ``nodes``/``links`` count as empty; junk entries are skipped.
    """
    if isinstance(raw_graph, GraphData):
        raw_nodes: list = list(raw_graph.nodes)
        raw_links: list = list(raw_graph.links)
    elif isinstance(raw_graph, Mapping):
        raw_nodes = _as_list(raw_graph.get("nodes"))
        raw_links = _as_list(raw_graph.get("links"))
    else:
        raw_nodes, raw_links = [], []

    nodes = [n for n in (_coerce_node(r) for r in raw_nodes) if n is not None]
    ids = {n.id for n in nodes}

    links: list[GraphLink] = []
    dropped = 0
    for raw in raw_links:
        link = _coerce_link(raw)
        if link is not None and link.source in ids and link.target in ids:
            links.append(link)
        else:
            dropped += 1

    if dropped:
        logger.debug("graph_links_dropped", dropped=dropped, kept=len(links))
    return GraphData(nodes=nodes, links=links)


def merge(graph: GraphData, delta: GraphData) -> GraphData:
    """Append a delta. Node ids are not deduplicated."""
    return GraphData(
        nodes=[*graph.nodes, *delta.nodes],
        links=[*graph.links, *delta.links],
    )


def remove_node(graph: GraphData, node_id: str) -> GraphData:
    """Remove a node and every edge incident to it."""
    return GraphData(
        nodes=[n for n in graph.nodes if n.id != node_id],
        links=[e for e in graph.links if e.source != node_id and e.target != node_id],
    )


def node_ids(graph: GraphData) -> set[str]:
    return {n.id for n in graph.nodes}


def find_node(graph: GraphData, node_id: str) -> GraphNode | None:
    for node in graph.nodes:
        if node.id == node_id:
            return node
    return None
