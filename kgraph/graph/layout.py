"""Stepped force-directed layout for the knowledge graph.

The simulation follows the usual alpha-cooling scheme: every tick moves
``alpha`` toward ``alpha_target`` and scales the link and many-body forces by
it, so a cold start settles in roughly 300 ticks. The loop never blocks: the
``run`` coroutine ticks on the event loop and sleeps once the layout has
cooled, until a structural change or a drag reheats it.

Each body is either ``Free`` (integrated from its velocity) or
``Pinned`` (held at external coordinates with zero velocity). Pan and zoom live
in ``ViewTransform`` and are never read by the physics.
"""

from __future__ import annotations

import asyncio
import math
import random
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from kgraph.models.schemas import GraphData, LayoutFrame, NodePosition, ViewState
from kgraph.utils.logging import get_logger

if TYPE_CHECKING:
    from kgraph.config import Settings

logger = get_logger(__name__)

_INITIAL_RADIUS = 10.0
_INITIAL_ANGLE = math.pi * (3 - math.sqrt(5))


@dataclass(frozen=True)
class Free:
    pass


@dataclass(frozen=True)
class Pinned:
    x: float
    y: float


NodeMode = Free | Pinned

FREE = Free()


@dataclass
class Body:
    id: str
    x: float
    y: float
    vx: float = 0.0
    vy: float = 0.0
    mode: NodeMode = FREE

    @property
    def pinned(self) -> bool:
        return isinstance(self.mode, Pinned)


@dataclass(frozen=True)
class LayoutConfig:
    width: float = 800.0
    height: float = 500.0
    link_distance: float = 120.0
    charge_strength: float = -400.0
    collide_radius: float = 30.0
    alpha_min: float = 0.001
    alpha_decay: float = 1 - 0.001 ** (1 / 300)
    velocity_decay: float = 0.4
    reheat_alpha: float = 0.3
    drag_alpha_target: float = 0.3
    tick_interval: float = 1 / 60
    seed: int | None = 42

    @classmethod
    def from_settings(cls, settings: Settings) -> LayoutConfig:
        return cls(
            width=settings.LAYOUT_WIDTH,
            height=settings.LAYOUT_HEIGHT,
            link_distance=settings.LAYOUT_LINK_DISTANCE,
            charge_strength=settings.LAYOUT_CHARGE_STRENGTH,
            collide_radius=settings.LAYOUT_COLLIDE_RADIUS,
            tick_interval=settings.LAYOUT_TICK_INTERVAL,
        )

    @property
    def center(self) -> tuple[float, float]:
        return self.width / 2, self.height / 2


@dataclass(frozen=True)
class ViewTransform:
    """Pan/zoom applied on top of simulated coordinates."""

    k: float = 1.0
    x: float = 0.0
    y: float = 0.0
    min_scale: float = field(default=0.5, compare=False)
    max_scale: float = field(default=5.0, compare=False)

    def apply(self, x: float, y: float) -> tuple[float, float]:
        return x * self.k + self.x, y * self.k + self.y

    def invert(self, x: float, y: float) -> tuple[float, float]:
        return (x - self.x) / self.k, (y - self.y) / self.k

    def pan(self, dx: float, dy: float) -> ViewTransform:
        return ViewTransform(self.k, self.x + dx, self.y + dy, self.min_scale, self.max_scale)

    def zoom(self, factor: float, cx: float = 0.0, cy: float = 0.0) -> ViewTransform:
        """Scale by ``factor`` keeping screen point ``(cx, cy)`` fixed."""
        k = min(self.max_scale, max(self.min_scale, self.k * factor))
        ratio = k / self.k
        return ViewTransform(
            k,
            cx - (cx - self.x) * ratio,
            cy - (cy - self.y) * ratio,
            self.min_scale,
            self.max_scale,
        )

    def to_state(self) -> ViewState:
        return ViewState(k=self.k, x=self.x, y=self.y)


class LayoutEngine:
    """Force simulation over the nodes and links of one session graph."""

    def __init__(self, config: LayoutConfig | None = None, graph: GraphData | None = None) -> None:
        self._config = config or LayoutConfig()
        self._rng = random.Random(self._config.seed)
        self._bodies: dict[str, Body] = {}
        self._links: list[tuple[str, str]] = []
        self._link_strength: list[float] = []
        self._link_bias: list[float] = []
        self._active_drags: set[str] = set()
        self._subscribers: set[asyncio.Queue] = set()
        self._wake = asyncio.Event()
        self._stopped = False

        self.alpha = 1.0
        self.alpha_target = 0.0
        self.tick_count = 0
        self.view = ViewTransform()

        if graph is not None:
            self.set_graph(graph)

    # ── structure ───────────────────────────────────────────────────

    @property
    def config(self) -> LayoutConfig:
        return self._config

    @property
    def is_hot(self) -> bool:
        return self.alpha >= self._config.alpha_min or self.alpha_target >= self._config.alpha_min

    def body(self, node_id: str) -> Body | None:
        return self._bodies.get(node_id)

    def set_graph(self, graph: GraphData) -> None:
        """Sync bodies with the graph, seeding new nodes near their neighbours.

        Duplicate node ids share a single body.
        """
        ids = list(dict.fromkeys(n.id for n in graph.nodes))
        id_set = set(ids)
        links = [
            (e.source, e.target)
            for e in graph.links
            if e.source in id_set and e.target in id_set and e.source != e.target
        ]

        # Nothing survives (cold start or wholesale replacement): lay out from scratch.
        first_population = not (self._bodies.keys() & id_set)
        removed = [node_id for node_id in self._bodies if node_id not in id_set]
        for node_id in removed:
            del self._bodies[node_id]
            self._active_drags.discard(node_id)

        added = [node_id for node_id in ids if node_id not in self._bodies]
        if first_population:
            for index, node_id in enumerate(added):
                self._bodies[node_id] = self._spiral_body(node_id, index)
        else:
            for node_id in added:
                self._bodies[node_id] = self._seed_near_neighbour(node_id, links)

        # Preserve graph order for deterministic iteration.
        self._bodies = {node_id: self._bodies[node_id] for node_id in ids}

        links_changed = links != self._links
        self._links = links
        self._init_link_forces()

        if not (added or removed or links_changed):
            return
        if first_population:
            self.alpha = 1.0
        else:
            self.alpha = max(self.alpha, self._config.reheat_alpha)
        logger.debug(
            "layout_reseeded",
            added=len(added),
            removed=len(removed),
            nodes=len(self._bodies),
            alpha=round(self.alpha, 4),
        )
        self._wake.set()

    def _spiral_body(self, node_id: str, index: int) -> Body:
        cx, cy = self._config.center
        radius = _INITIAL_RADIUS * math.sqrt(0.5 + index)
        angle = index * _INITIAL_ANGLE
        return Body(node_id, cx + radius * math.cos(angle), cy + radius * math.sin(angle))

    def _seed_near_neighbour(self, node_id: str, links: list[tuple[str, str]]) -> Body:
        for source, target in links:
            other = target if source == node_id else source if target == node_id else None
            anchor = self._bodies.get(other) if other is not None else None
            if anchor is None:
                continue
            angle = self._rng.uniform(0, 2 * math.pi)
            offset = self._config.link_distance / 2
            return Body(node_id, anchor.x + offset * math.cos(angle), anchor.y + offset * math.sin(angle))
        return self._spiral_body(node_id, len(self._bodies))

    def _init_link_forces(self) -> None:
        degree: dict[str, int] = {}
        for source, target in self._links:
            degree[source] = degree.get(source, 0) + 1
            degree[target] = degree.get(target, 0) + 1
        self._link_strength = [1 / min(degree[s], degree[t]) for s, t in self._links]
        self._link_bias = [degree[s] / (degree[s] + degree[t]) for s, t in self._links]

    # ── pinning / drag ──────────────────────────────────────────────

    def pin(self, node_id: str, x: float, y: float) -> None:
        body = self._require(node_id)
        body.mode = Pinned(x, y)
        body.vx = body.vy = 0.0

    def unpin(self, node_id: str) -> None:
        self._require(node_id).mode = FREE

    def drag_start(self, node_id: str, x: float | None = None, y: float | None = None) -> None:
        body = self._require(node_id)
        if not self._active_drags:
            self.alpha_target = self._config.drag_alpha_target
        self._active_drags.add(node_id)
        self.pin(node_id, body.x if x is None else x, body.y if y is None else y)
        self._wake.set()

    def drag_move(self, node_id: str, x: float, y: float) -> None:
        if node_id not in self._active_drags:
            self.drag_start(node_id, x, y)
            return
        self.pin(node_id, x, y)

    def drag_end(self, node_id: str) -> None:
        self._active_drags.discard(node_id)
        if node_id in self._bodies:
            self.unpin(node_id)
        if not self._active_drags:
            self.alpha_target = 0.0

    def _require(self, node_id: str) -> Body:
        body = self._bodies.get(node_id)
        if body is None:
            raise KeyError(node_id)
        return body

    # ── simulation ──────────────────────────────────────────────────

    def tick(self, iterations: int = 1) -> float:
        """Advance the simulation; returns the resulting alpha."""
        for _ in range(iterations):
            self.alpha += (self.alpha_target - self.alpha) * self._config.alpha_decay
            self.tick_count += 1
            if not self._bodies:
                continue

            bodies = list(self._bodies.values())
            self._apply_links()
            self._apply_charge(bodies)
            self._apply_center(bodies)
            self._apply_collide(bodies)

            keep = 1 - self._config.velocity_decay
            for body in bodies:
                if isinstance(body.mode, Pinned):
                    body.x, body.y = body.mode.x, body.mode.y
                    body.vx = body.vy = 0.0
                else:
                    body.vx *= keep
                    body.vy *= keep
                    body.x += body.vx
                    body.y += body.vy
        return self.alpha

    def _jiggle(self) -> float:
        return (self._rng.random() - 0.5) * 1e-6

    def _apply_links(self) -> None:
        distance = self._config.link_distance
        for (s, t), strength, bias in zip(self._links, self._link_strength, self._link_bias):
            source, target = self._bodies[s], self._bodies[t]
            dx = target.x + target.vx - source.x - source.vx or self._jiggle()
            dy = target.y + target.vy - source.y - source.vy or self._jiggle()
            length = math.sqrt(dx * dx + dy * dy)
            k = (length - distance) / length * self.alpha * strength
            dx *= k
            dy *= k
            target.vx -= dx * bias
            target.vy -= dy * bias
            source.vx += dx * (1 - bias)
            source.vy += dy * (1 - bias)

    def _apply_charge(self, bodies: list[Body]) -> None:
        strength = self._config.charge_strength * self.alpha
        for i, a in enumerate(bodies):
            for b in bodies[i + 1:]:
                dx = b.x - a.x or self._jiggle()
                dy = b.y - a.y or self._jiggle()
                dist2 = dx * dx + dy * dy
                if dist2 < 1:
                    dist2 = math.sqrt(dist2)
                w = strength / dist2
                a.vx += dx * w
                a.vy += dy * w
                b.vx -= dx * w
                b.vy -= dy * w

    def _apply_center(self, bodies: list[Body]) -> None:
        cx, cy = self._config.center
        sx = sum(b.x for b in bodies) / len(bodies) - cx
        sy = sum(b.y for b in bodies) / len(bodies) - cy
        for body in bodies:
            body.x -= sx
            body.y -= sy

    def _apply_collide(self, bodies: list[Body]) -> None:
        reach = self._config.collide_radius * 2
        for i, a in enumerate(bodies):
            ax, ay = a.x + a.vx, a.y + a.vy
            for b in bodies[i + 1:]:
                dx = ax - b.x - b.vx
                dy = ay - b.y - b.vy
                dist2 = dx * dx + dy * dy
                if dist2 >= reach * reach:
                    continue
                if dx == 0:
                    dx = self._jiggle()
                    dist2 += dx * dx
                if dy == 0:
                    dy = self._jiggle()
                    dist2 += dy * dy
                length = math.sqrt(dist2)
                k = (reach - length) / length
                a.vx += dx * k * 0.5
                a.vy += dy * k * 0.5
                b.vx -= dx * k * 0.5
                b.vy -= dy * k * 0.5

    # ── frames ──────────────────────────────────────────────────────

    def positions(self) -> dict[str, tuple[float, float]]:
        return {node_id: (b.x, b.y) for node_id, b in self._bodies.items()}

    def snapshot(self) -> LayoutFrame:
        return LayoutFrame(
            tick=self.tick_count,
            alpha=self.alpha,
            nodes=[NodePosition(id=b.id, x=b.x, y=b.y, pinned=b.pinned) for b in self._bodies.values()],
            view=self.view.to_state(),
        )

    def subscribe(self, maxsize: int = 8) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    def _publish(self, frame: LayoutFrame | None) -> None:
        for queue in list(self._subscribers):
            if queue.full():
                # Slow consumer: keep only the freshest frames.
                queue.get_nowait()
            queue.put_nowait(frame)

    async def run(self, interval: float | None = None) -> None:
        """Tick while hot, publish a frame per tick, sleep until reheated when cool."""
        interval = self._config.tick_interval if interval is None else interval
        self._stopped = False
        logger.debug("layout_loop_started", nodes=len(self._bodies))
        while not self._stopped:
            if not self.is_hot:
                self._wake.clear()
                await self._wake.wait()
                continue
            self.tick()
            self._publish(self.snapshot())
            await asyncio.sleep(interval)
        self._publish(None)
        logger.debug("layout_loop_stopped", ticks=self.tick_count)

    def stop(self) -> None:
        self._stopped = True
        self._wake.set()
