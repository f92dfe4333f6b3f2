"""Turn the sub-entity generator's free-text list into a graph delta."""

from __future__ import annotations

from kgraph.models.schemas import (
    DEFAULT_ENTITY_TYPE,
    EntityGroup,
    EntityType,
    GraphData,
    GraphLink,
    GraphNode,
)
from kgraph.utils.logging import get_logger
from kgraph.utils.text_processing import split_parenthetical, strip_bullet

logger = get_logger(__name__)

EXPANSION_RELATION = "related_to"


def entity_group(type_name: str) -> int:
    """Map a parsed type string to its group. Unknown types land in group 1."""
    try:
        return int(EntityType(type_name).group)
    except ValueError:
        return int(EntityGroup.PRODUCT)


def sub_node_id(parent_id: str, ordinal: int) -> str:
    return f"{parent_id}-sub-{ordinal}"


def parse_entities(parent_id: str, text: str) -> GraphData:
    """Parse ``"- Label (Type)"`` lines into sub-nodes linked from ``parent_id``.

    Ordinals count non-blank lines, so a line holding only a bullet marker
    yields no node but still consumes its ordinal. Empty input yields an empty
    delta.
    """
    lines = [line for line in (text or "").splitlines() if line.strip()]

    nodes: list[GraphNode] = []
    links: list[GraphLink] = []
    for ordinal, line in enumerate(lines):
        entry = strip_bullet(line)
        if not entry:
            continue

        label, type_name = split_parenthetical(entry)
        child_id = sub_node_id(parent_id, ordinal)
        nodes.append(
            GraphNode(
                id=child_id,
                label=label,
                group=entity_group(type_name if type_name is not None else DEFAULT_ENTITY_TYPE.value),
            )
        )
        links.append(GraphLink(source=parent_id, target=child_id, relation=EXPANSION_RELATION))

    logger.debug("entities_parsed", parent_id=parent_id, lines=len(lines), nodes=len(nodes))
    return GraphData(nodes=nodes, links=links)
