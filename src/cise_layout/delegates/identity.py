"""Identity delegates for input that is already laid out."""

from __future__ import annotations

import math
from collections.abc import Hashable

import networkx as nx

from cise_layout.delegates.base import CircularOrderResult, EmbedderParams


class IdentityOrdering:
    """Reads the circular order off the nodes' current positions.

    Centre is the centroid, radius the mean distance to it, angles the
    direction of each node from it; indices follow ascending angle.
    """

    def order(self, graph: nx.Graph, node_separation: float) -> CircularOrderResult:
        n = graph.number_of_nodes()
        if n == 0:
            return CircularOrderResult()

        centers = {
            node: (attrs["x"] + attrs["width"] / 2, attrs["y"] + attrs["height"] / 2)
            for node, attrs in graph.nodes(data=True)
        }
        cx = sum(c[0] for c in centers.values()) / n
        cy = sum(c[1] for c in centers.values()) / n

        angles: dict[Hashable, float] = {}
        radius = 0.0
        for node, (x, y) in centers.items():
            angles[node] = math.atan2(y - cy, x - cx) % (2.0 * math.pi)
            radius += math.hypot(x - cx, y - cy)
        radius /= n

        ordered = sorted(angles, key=lambda node: angles[node])
        return CircularOrderResult(
            indices={node: i for i, node in enumerate(ordered)},
            angles=angles,
            radius=radius,
            center=(cx, cy),
        )


class IdentityEmbedder:
    """Returns every node where it already is."""

    def embed(self, graph: nx.Graph, params: EmbedderParams) -> dict[Hashable, tuple[float, float]]:
        return {node: (attrs["cx"], attrs["cy"]) for node, attrs in graph.nodes(data=True)}
