"""Render a knowledge graph (at its layout positions) to PNG/JPEG bytes."""

from __future__ import annotations

import io
from typing import Literal

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
import networkx as nx  # noqa: E402
from matplotlib.lines import Line2D  # noqa: E402

from kgraph.models.schemas import EntityGroup, GraphData  # noqa: E402

ImageFormat = Literal["png", "jpeg", "jpg"]

# Drug/Product teal, Company indigo, Disease red, Patent/Trial amber.
GROUP_COLORS: dict[int, str] = {
    EntityGroup.PRODUCT: "#0d9488",
    EntityGroup.COMPANY: "#6366f1",
    EntityGroup.DISEASE: "#ef4444",
    EntityGroup.PATENT: "#f59e0b",
}
FALLBACK_COLOR = "#94a3b8"

_LEGEND_LABELS = {
    EntityGroup.PRODUCT: "Drug / Product",
    EntityGroup.COMPANY: "Company",
    EntityGroup.DISEASE: "Disease",
    EntityGroup.PATENT: "Patent / Trial",
}


def group_color(group: int) -> str:
    return GROUP_COLORS.get(group, FALLBACK_COLOR)


def _short(label: str, limit: int = 20) -> str:
    return label if len(label) <= limit else label[: limit - 3] + "..."


def render_graph_image(
    graph: GraphData,
    positions: dict[str, tuple[float, float]] | None = None,
    format: ImageFormat = "png",
    dpi: int = 100,
    figsize: tuple[float, float] = (8, 5),
) -> bytes:
    """Render the graph to image bytes using NetworkX + Matplotlib.

    Args:
        graph: Nodes and links to draw.
        positions: Simulated coordinates per node id. If any node lacks one,
            the whole graph falls back to a spring layout.
        format: Output format: "png", "jpeg", or "jpg".
        dpi: Dots per inch for the image.
        figsize: Figure size (width, height) in inches.

    Returns:
        Image bytes (PNG or JPEG).
    """
    if not graph.nodes:
        fig, ax = plt.subplots(figsize=(4, 2), dpi=dpi)
        ax.text(0.5, 0.5, "No knowledge graph data extracted.", ha="center", va="center", fontsize=10)
        ax.axis("off")
        return _to_bytes(fig, format, dpi)

    G = nx.DiGraph()
    for node in graph.nodes:
        G.add_node(node.id, label=node.label or node.id, group=node.group)
    for link in graph.links:
        G.add_edge(link.source, link.target, relation=link.relation)

    positions = positions or {}
    if all(node_id in positions for node_id in G.nodes):
        # Screen y grows downward, matplotlib y grows upward.
        pos = {node_id: (positions[node_id][0], -positions[node_id][1]) for node_id in G.nodes}
    else:
        pos = nx.spring_layout(G, k=1.5, iterations=50, seed=42)

    fig, ax = plt.subplots(figsize=figsize, dpi=dpi)
    ax.set_facecolor("#f8fafc")

    nx.draw_networkx_edges(G, pos, edge_color="#cbd5e1", arrows=True, arrowsize=10, width=1.5, ax=ax)
    nx.draw_networkx_nodes(
        G,
        pos,
        node_color=[group_color(G.nodes[n]["group"]) for n in G.nodes],
        edgecolors="white",
        node_size=300,
        ax=ax,
    )
    nx.draw_networkx_labels(
        G,
        pos,
        labels={n: _short(G.nodes[n]["label"]) for n in G.nodes},
        font_size=8,
        font_color="#1e293b",
        ax=ax,
    )
    nx.draw_networkx_edge_labels(
        G,
        pos,
        edge_labels={(u, v): d["relation"] for u, v, d in G.edges(data=True) if d.get("relation")},
        font_size=6,
        font_color="#64748b",
        ax=ax,
    )

    present = sorted({n.group for n in graph.nodes if n.group in _LEGEND_LABELS})
    if present:
        ax.legend(
            handles=[
                Line2D([], [], marker="o", linestyle="", color=GROUP_COLORS[g], label=_LEGEND_LABELS[g])
                for g in present
            ],
            loc="lower right",
            fontsize=7,
            frameon=False,
        )

    ax.axis("off")
    fig.tight_layout(pad=0.5)
    return _to_bytes(fig, format, dpi)


def _to_bytes(fig, format: ImageFormat, dpi: int) -> bytes:
    buf = io.BytesIO()
    try:
        fig.savefig(buf, format="jpg" if format in ("jpeg", "jpg") else "png", bbox_inches="tight", facecolor="white", dpi=dpi)
    finally:
        plt.close(fig)
    return buf.getvalue()
