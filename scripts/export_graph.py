"""Export a project's stored knowledge graph as JSON or GraphML.

Usage:
    python scripts/export_graph.py <project_id> [--format graphml] [--output graph.graphml]

Pass ``--output -`` to write to stdout.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from kgraph.api.v1.graph import to_graphml
from kgraph.config import get_settings
from kgraph.models.schemas import GraphData
from kgraph.services.persistence_service import PersistenceBridge
from kgraph.services.project_store import ProjectStore
from kgraph.utils.logging import get_logger, setup_logging

logger = get_logger("export_graph")


def render(graph: GraphData, fmt: str) -> str:
    if fmt == "graphml":
        return to_graphml(graph)
    return json.dumps(graph.model_dump(), indent=2)


async def main(project_id: str, fmt: str, output: str | None) -> int:
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL, log_format="console", stream=sys.stderr)

    store = ProjectStore(settings.REDIS_URL)
    try:
        graph = await PersistenceBridge(store).load(project_id)
    finally:
        await store.close()

    if graph is None:
        logger.error("graph_not_found", project_id=project_id)
        return 1

    content = render(graph, fmt)
    if output == "-":
        sys.stdout.write(content + "\n")
    else:
        filename = output or f"graph_{project_id}.{fmt}"
        with open(filename, "w", encoding="utf-8") as f:
            f.write(content)
        logger.info("graph_exported", path=filename, nodes=len(graph.nodes), links=len(graph.links))
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Export a stored knowledge graph")
    parser.add_argument("project_id")
    parser.add_argument("--format", choices=["json", "graphml"], default="json")
    parser.add_argument("--output", "-o", default=None)
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.project_id, args.format, args.output)))
