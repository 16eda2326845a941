"""Spring embedder delegate backed by ``networkx.spring_layout``.

networkx runs Fruchterman-Reingold on unit-free coordinates, so the graph is
normalised by the ideal edge length before the call and scaled back after it.
Node sizes are not seen by networkx; they enter through the ideal length and a
final overlap-separation pass.
"""

from __future__ import annotations

import hashlib
import logging
import math
from collections.abc import Hashable

import networkx as nx

from cise_layout.delegates.base import EmbedderParams

logger = logging.getLogger(__name__)

# Gap kept between node rectangles by the separation pass.
MIN_NODE_GAP: float = 10.0
SEPARATION_PASSES: int = 8


def deterministic_jitter(key: str, scale: float = 0.5) -> tuple[float, float]:
    """Reproducible (dx, dy) offset in [-scale, scale] derived from ``key``."""
    h = hashlib.md5(key.encode()).hexdigest()
    x_val = int(h[:8], 16) / 0xFFFFFFFF
    y_val = int(h[8:16], 16) / 0xFFFFFFFF
    return (x_val * 2 * scale - scale, y_val * 2 * scale - scale)


def _node_dimension(attrs: dict) -> float:
    return max(attrs.get("width", 0.0), attrs.get("height", 0.0))


def separate_overlaps(
    graph: nx.Graph,
    centers: dict[Hashable, tuple[float, float]],
    gap: float = MIN_NODE_GAP,
    passes: int = SEPARATION_PASSES,
) -> dict[Hashable, tuple[float, float]]:
    """Push apart nodes whose bounding circles (plus ``gap``) overlap."""
    pos = {n: list(c) for n, c in centers.items()}
    nodes = list(pos)
    half = {n: _node_dimension(graph.nodes[n]) / 2 for n in nodes}

    for _ in range(passes):
        moved = False
        for i, a in enumerate(nodes):
            for b in nodes[i + 1 :]:
                dx = pos[b][0] - pos[a][0]
                dy = pos[b][1] - pos[a][1]
                dist = math.hypot(dx, dy)
                needed = half[a] + half[b] + gap
                if dist >= needed:
                    continue
                if dist < 1e-9:
                    dx, dy = deterministic_jitter(f"{a}|{b}", 1.0)
                    dist = math.hypot(dx, dy) or 1.0
                push = (needed - dist) / 2
                ux, uy = dx / dist, dy / dist
                pos[a][0] -= ux * push
                pos[a][1] -= uy * push
                pos[b][0] += ux * push
                pos[b][1] += uy * push
                moved = True
        if not moved:
            break

    return {n: (p[0], p[1]) for n, p in pos.items()}


class NetworkXSpringEmbedder:
    """Fruchterman-Reingold via networkx, in caller units.

    The grid variant and multi-level scaling toggles are not available in
    networkx; requests for them are logged and ignored.
    """

    def __init__(self, separate: bool = True) -> None:
        self.separate = separate

    def embed(self, graph: nx.Graph, params: EmbedderParams) -> dict[Hashable, tuple[float, float]]:
        start = {n: (attrs["cx"], attrs["cy"]) for n, attrs in graph.nodes(data=True)}
        n = len(start)
        if n <= 1:
            return start

        if params.use_grid_variant or params.use_multi_level_scaling:
            logger.debug(
                "networkx embedder ignores grid variant=%s, multi-level scaling=%s",
                params.use_grid_variant,
                params.use_multi_level_scaling,
            )

        mean_dim = sum(_node_dimension(a) for _, a in graph.nodes(data=True)) / n
        unit = params.ideal_edge_length + mean_dim
        k = 1.0 / max(params.spring_constant, 1e-9) ** (1.0 / 3.0)

        cx0 = sum(p[0] for p in start.values()) / n
        cy0 = sum(p[1] for p in start.values()) / n

        # Normalise, break coincident starts and spread to a workable size.
        norm: dict[Hashable, tuple[float, float]] = {}
        seen: set[tuple[float, float]] = set()
        for node, (x, y) in start.items():
            px, py = (x - cx0) / unit, (y - cy0) / unit
            key = (round(px, 6), round(py, 6))
            if key in seen:
                jx, jy = deterministic_jitter(str(node))
                px, py = px + jx, py + jy
            seen.add(key)
            norm[node] = (px, py)

        xs = [p[0] for p in norm.values()]
        ys = [p[1] for p in norm.values()]
        spread = max(max(xs) - min(xs), max(ys) - min(ys))
        target = max(1.0, math.sqrt(n)) * k
        if spread < target:
            factor = target / spread if spread > 0 else 1.0
            norm = {node: (p[0] * factor, p[1] * factor) for node, p in norm.items()}

        result = nx.spring_layout(
            graph,
            k=k,
            pos=norm,
            iterations=params.iterations,
            weight=None,
            scale=None,
            seed=params.seed,
        )

        centers = {node: (float(p[0]) * unit, float(p[1]) * unit) for node, p in result.items()}
        mx = sum(p[0] for p in centers.values()) / n
        my = sum(p[1] for p in centers.values()) / n
        centers = {node: (p[0] - mx + cx0, p[1] - my + cy0) for node, p in centers.items()}

        if self.separate:
            centers = separate_overlaps(graph, centers)
        return centers
