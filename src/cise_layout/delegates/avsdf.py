"""AVSDF circular ordering — default single-cluster delegate.

Phases:
  1. Ordering: degree-driven depth-first traversal (He & Sýkora's AVSDF).
  2. Post-processing: move nodes to the slot with the fewest chord crossings.
  3. Angles: arcs proportional to node diagonals plus the node separation.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Hashable

import networkx as nx

from cise_layout.delegates.base import CircularOrderResult

logger = logging.getLogger(__name__)


def avsdf_order(graph: nx.Graph) -> list[Hashable]:
    """Compute the AVSDF node ordering.

    Start at a node of smallest degree and walk depth first, always visiting
    the unplaced neighbour of smallest degree next. Each connected component
    is started afresh from its smallest-degree node. Ties keep insertion order.
    """
    degree = dict(graph.degree())
    rank = {node: i for i, node in enumerate(graph.nodes)}

    def key(n: Hashable) -> tuple[int, int]:
        return (degree[n], rank[n])

    placed: list[Hashable] = []
    seen: set[Hashable] = set()

    for start in sorted(graph.nodes, key=key):
        if start in seen:
            continue
        stack = [start]
        while stack:
            node = stack.pop()
            if node in seen:
                continue
            seen.add(node)
            placed.append(node)
            # Pushed largest-first so the smallest degree is popped next.
            neighbours = sorted((nb for nb in graph.neighbors(node) if nb not in seen), key=key, reverse=True)
            stack.extend(neighbours)

    return placed


def count_chord_crossings(graph: nx.Graph, order: list[Hashable]) -> int:
    """Count crossings among edges drawn as chords of a circle in ``order``."""
    position = {node: i for i, node in enumerate(order)}
    chords: list[tuple[int, int]] = []
    for u, v in graph.edges():
        a, b = position[u], position[v]
        chords.append((a, b) if a < b else (b, a))

    total = 0
    for i in range(len(chords)):
        a, b = chords[i]
        for j in range(i + 1, len(chords)):
            c, d = chords[j]
            if (a < c < b < d) or (c < a < d < b):
                total += 1
    return total


def _incident_crossings(
    graph: nx.Graph,
    node: Hashable,
    position: dict[Hashable, int],
    others: list[tuple[Hashable, Hashable]],
) -> int:
    """Crossings between the chords at ``node`` and the chords not touching it.

    Chords sharing an endpoint never cross, so these are the only crossings
    that change when ``node`` moves.
    """
    p = position[node]
    total = 0
    for nb in graph.neighbors(node):
        q = position[nb]
        a, b = (p, q) if p < q else (q, p)
        for u, v in others:
            c, d = position[u], position[v]
            if c > d:
                c, d = d, c
            if (a < c < b < d) or (c < a < d < b):
                total += 1
    return total


def _crossings_if_placed(
    graph: nx.Graph,
    node: Hashable,
    rest: list[Hashable],
    slot: int,
    others: list[tuple[Hashable, Hashable]],
) -> int:
    trial = rest[:slot] + [node] + rest[slot:]
    return _incident_crossings(graph, node, {n: i for i, n in enumerate(trial)}, others)


def reduce_crossings(graph: nx.Graph, order: list[Hashable]) -> list[Hashable]:
    """Greedy post-processing: re-insert each node at its best slot.

    Nodes are handled in descending degree. A node only moves when another
    slot strictly lowers the crossing count. Each trial only recounts the
    crossings of the moving node's chords.
    """
    order = list(order)
    best = count_chord_crossings(graph, order)
    if best == 0:
        return order

    for node in sorted(graph.nodes, key=lambda n: -graph.degree(n)):
        others = [(u, v) for u, v in graph.edges() if u != node and v != node]
        current = order.index(node)
        rest = order[:current] + order[current + 1 :]

        here = _crossings_if_placed(graph, node, rest, current, others)
        best_slot, best_here = current, here
        for slot in range(len(order)):
            if slot == current:
                continue
            crossings = _crossings_if_placed(graph, node, rest, slot, others)
            if crossings < best_here:
                best_here = crossings
                best_slot = slot
        if best_slot != current:
            order = rest[:best_slot] + [node] + rest[best_slot:]
            best -= here - best_here
        if best == 0:
            break

    return order


def assign_angles(graph: nx.Graph, order: list[Hashable], node_separation: float) -> tuple[dict[Hashable, float], float]:
    """Place nodes around a circle large enough to hold them side by side.

    Each node takes an arc of its diagonal plus ``node_separation``; the radius
    is perimeter / 2π and the first node sits at angle 0.
    """
    arcs = []
    for node in order:
        attrs = graph.nodes[node]
        arcs.append(math.hypot(attrs.get("width", 0.0), attrs.get("height", 0.0)) + node_separation)

    perimeter = sum(arcs)
    if perimeter <= 0:
        return {node: 0.0 for node in order}, 0.0
    radius = perimeter / (2.0 * math.pi)

    angles: dict[Hashable, float] = {}
    angle = 0.0
    for i, node in enumerate(order):
        if i > 0:
            angle += (arcs[i - 1] / 2 + arcs[i] / 2) / radius
        angles[node] = angle
    return angles, radius


def centroid(graph: nx.Graph) -> tuple[float, float]:
    """Mean centre of the nodes' rectangles."""
    n = graph.number_of_nodes()
    if n == 0:
        return (0.0, 0.0)
    sx = sy = 0.0
    for _, attrs in graph.nodes(data=True):
        sx += attrs.get("x", 0.0) + attrs.get("width", 0.0) / 2
        sy += attrs.get("y", 0.0) + attrs.get("height", 0.0) / 2
    return (sx / n, sy / n)


class AVSDFOrdering:
    """AVSDF ordering with optional crossing-reduction post-processing.

    Args:
        post_process: Run ``reduce_crossings`` after the initial ordering.
        max_post_process_nodes: Skip post-processing for larger clusters.
        max_post_process_edges: Skip post-processing for denser clusters;
            each pass costs about nodes * edges * edges.
    """

    def __init__(
        self,
        post_process: bool = True,
        max_post_process_nodes: int = 60,
        max_post_process_edges: int = 120,
    ) -> None:
        self.post_process = post_process
        self.max_post_process_nodes = max_post_process_nodes
        self.max_post_process_edges = max_post_process_edges

    def should_post_process(self, graph: nx.Graph) -> bool:
        return (
            self.post_process
            and 3 < graph.number_of_nodes() <= self.max_post_process_nodes
            and graph.number_of_edges() <= self.max_post_process_edges
        )

    def order(self, graph: nx.Graph, node_separation: float) -> CircularOrderResult:
        if graph.number_of_nodes() == 0:
            return CircularOrderResult()

        order = avsdf_order(graph)
        if self.should_post_process(graph):
            order = reduce_crossings(graph, order)

        angles, radius = assign_angles(graph, order, node_separation)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "AVSDF: %d nodes, %d edges, %d chord crossings, radius %.1f",
                len(order),
                graph.number_of_edges(),
                count_chord_crossings(graph, order),
                radius,
            )
        return CircularOrderResult(
            indices={node: i for i, node in enumerate(order)},
            angles=angles,
            radius=radius,
            center=centroid(graph),
        )
