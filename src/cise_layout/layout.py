"""Layout module — CiSE circular spring embedder pipeline.

Phases:
  1. Per-cluster circular ordering (Step 1)
  2. Quotient graph placement (Step 2), optionally with incident-edge reordering
  3. Reversal preparation (order matrices, non-reversible circles)
  4. Iterative refinement (Steps 3–5, see ``refinement.py``)
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

import networkx as nx

from cise_layout.delegates import (
    AVSDFOrdering,
    CircularForce,
    CircularOrdering,
    EmbedderParams,
    NetworkXSpringEmbedder,
    SpringEmbedder,
    SpringPullForce,
)
from cise_layout.graph import Circle, ClusteredGraph, Edge, Node, build_clustered_graph, normalize_angle
from cise_layout.refinement import refine
from cise_layout.types import EdgeSpec, LayoutConfig, LayoutState, NodeSpec, Point, Step

logger = logging.getLogger(__name__)

# Spring constant multiplier used for the quotient graph embedder.
QUOTIENT_SPRING_BOOST: float = 1.5


# ─── Step 1: Per-Cluster Circular Ordering ───────────────────────────────────


def do_step1(
    graph: ClusteredGraph,
    ordering: CircularOrdering,
    config: LayoutConfig,
    state: LayoutState,
) -> LayoutState:
    """Order every circle with the circular ordering delegate.

    For each circle a transient problem holds one delegate node per on-circle
    node and one delegate edge per intra-cluster edge. The result is pulled
    back: index and angle per node, radius per circle. Nodes are re-sorted by
    index and left holding circle-relative coordinates; the placeholder is
    centred on the delegate's centre and sized to enclose the circle.
    """
    state.enter(Step.STEP_1)

    for circle in graph.circles:
        members = circle.on_circle_nodes
        if not members:
            logger.debug("Step 1: cluster %d is empty, radius 0", circle.cluster_id)
            continue

        problem = nx.Graph()
        delegate_of: dict[Node, int] = {}
        for i, node in enumerate(members):
            problem.add_node(i, x=node.x, y=node.y, width=node.width, height=node.height)
            delegate_of[node] = i
        for edge in circle.intra_cluster_edges:
            src = delegate_of.get(edge.source)
            tgt = delegate_of.get(edge.target)
            if src is not None and tgt is not None:
                problem.add_edge(src, tgt)

        result = ordering.order(problem, config.node_separation)

        for node, i in delegate_of.items():
            node.on_circle.index = result.indices[i]
            node.on_circle.angle = result.angles[i]
        circle.radius = result.radius
        circle.rotation = 0.0
        circle.sort_by_index()

        # Circle-relative until Step 2 positions the placeholder.
        circle.parent.set_center(0.0, 0.0)
        circle.place_members()
        circle.parent.set_center(*result.center)
        circle.calculate_parent_node_dimension()

        logger.debug(
            "Step 1: cluster %d ordered, %d nodes, radius %.1f",
            circle.cluster_id,
            len(members),
            circle.radius,
        )

    return state


# ─── Step 2: Quotient Graph Placement ────────────────────────────────────────


@dataclass
class QuotientGraph:
    """The reduced graph handed to the spring embedder.

    Attributes:
        graph: Delegate graph; node keys index ``nodes``.
        nodes: Key → model node (cluster placeholder or unclustered node).
        edge_members: Reduced edge (sorted key pair) → original inter-cluster
            edges it stands for.
        incident_order: Cluster key → its incident reduced edges sorted by
            the circular-mean heuristic (filled when reordering is on).
        incident_angles: Cluster key → neighbour key → circle-local angle of
            the representative attachment index.
    """

    graph: nx.Graph
    nodes: list[Node]
    edge_members: dict[tuple[int, int], list[Edge]]
    incident_order: dict[int, list[tuple[int, int]]] = field(default_factory=dict)
    incident_angles: dict[int, dict[int, float]] = field(default_factory=dict)


def build_quotient_graph(graph: ClusteredGraph, config: LayoutConfig) -> QuotientGraph:
    """Collapse every circle into its placeholder and keep one edge per pair.

    Placeholders of non-empty circles are inflated by ``cluster_inflation``;
    empty circles are left out. Edges at on-circle nodes are redirected to the
    circle's placeholder and parallel reduced edges are merged.
    """
    nodes = [n for n in graph.non_on_circle_nodes if n.child is None or len(n.child) > 0]
    key_of = {node: key for key, node in enumerate(nodes)}

    edge_members: dict[tuple[int, int], list[Edge]] = {}
    for edge in graph.inter_cluster_edges:
        src = edge.source.owner.parent if edge.source.is_on_circle else edge.source
        tgt = edge.target.owner.parent if edge.target.is_on_circle else edge.target
        a, b = key_of[src], key_of[tgt]
        if a == b:
            continue
        edge_members.setdefault((min(a, b), max(a, b)), []).append(edge)

    qgraph = nx.Graph()
    for key, node in enumerate(nodes):
        width, height = node.width, node.height
        if node.child is not None:
            width *= config.cluster_inflation
            height *= config.cluster_inflation
        qgraph.add_node(key, cx=node.center_x, cy=node.center_y, width=width, height=height)

    return QuotientGraph(graph=qgraph, nodes=nodes, edge_members=edge_members)


def circular_mean_index(indices: Sequence[int], mod: int) -> float:
    """Average circular indices so the result respects wraparound.

    Indices are sorted and the largest gap between neighbours is found,
    including the wraparound gap ``first + mod - last``. Indices past the
    start of that gap are shifted down by ``mod`` before averaging; a
    negative mean is shifted back up. For [0, 1, 5] on 6 nodes the result
    is 0 rather than the naive 2.
    """
    if not indices:
        raise ValueError("circular_mean_index needs at least one index")

    values = sorted(indices)
    largest_gap = -1
    gap_start = -1
    for pos in range(1, len(values)):
        gap = values[pos] - values[pos - 1]
        if gap > largest_gap:
            largest_gap = gap
            gap_start = pos - 1

    wrap_gap = values[0] + mod - values[-1]
    if wrap_gap > largest_gap:
        largest_gap = wrap_gap
        gap_start = len(values) - 1

    if largest_gap > 0:
        for k in range(gap_start + 1, len(values)):
            values[k] -= mod

    mean = sum(values) / len(values)
    if mean < 0:
        mean += mod
    return mean


def reorder_incident_edges(quotient: QuotientGraph) -> dict[int, list[tuple[int, int]]]:
    """Sort each cluster's incident reduced edges by where they attach.

    For a reduced edge the attachment point is the circular mean of the
    indices of the on-circle nodes (of this circle) its original edges touch.
    The angle of that point is kept per neighbour in ``incident_angles``.
    """
    incident: dict[int, list[tuple[int, int]]] = {}
    for pair in quotient.edge_members:
        for key in pair:
            incident.setdefault(key, []).append(pair)

    order: dict[int, list[tuple[int, int]]] = {}
    angles: dict[int, dict[int, float]] = {}
    for key, node in enumerate(quotient.nodes):
        circle = node.child
        if circle is None or key not in incident:
            continue

        mod = len(circle)
        representative: dict[tuple[int, int], float] = {}
        for pair in incident[key]:
            indices = []
            for edge in quotient.edge_members[pair]:
                if edge.source.owner is circle:
                    indices.append(edge.source.on_circle.index)
                elif edge.target.owner is circle:
                    indices.append(edge.target.on_circle.index)
            representative[pair] = circular_mean_index(indices, mod)

        order[key] = sorted(incident[key], key=lambda p, r=representative: r[p])
        angles[key] = {
            (pair[1] if pair[0] == key else pair[0]): index_angle(circle, rep) for pair, rep in representative.items()
        }

    quotient.incident_order = order
    quotient.incident_angles = angles
    return order


def index_angle(circle: Circle, index: float) -> float:
    """Circle-local angle at a fractional circular index.

    Interpolates between the angles of the two neighbouring positions, going
    clockwise from the lower one.
    """
    n = len(circle)
    low = math.floor(index)
    t = index - low
    a_low = circle.on_circle_nodes[low % n].on_circle.angle
    a_high = circle.on_circle_nodes[(low + 1) % n].on_circle.angle
    span = normalize_angle(a_high - a_low) if n > 1 else 0.0
    return normalize_angle(a_low + t * span)


def seed_from_incident_order(quotient: QuotientGraph, config: LayoutConfig) -> None:
    """Move each cluster's neighbours to the side of the circle they attach to.

    A neighbour starts at the cluster centre plus, in the direction of its
    attachment angle, the two half sizes and the ideal edge length. A
    neighbour of several clusters takes the mean of their proposals; all
    proposals are computed from the starting positions.
    """
    proposals: dict[int, list[tuple[float, float]]] = {}
    attrs = quotient.graph.nodes
    for key, by_neighbour in quotient.incident_angles.items():
        cx, cy = attrs[key]["cx"], attrs[key]["cy"]
        own_half = max(attrs[key]["width"], attrs[key]["height"]) / 2
        for neighbour, angle in by_neighbour.items():
            half = max(attrs[neighbour]["width"], attrs[neighbour]["height"]) / 2
            reach = own_half + half + config.ideal_edge_length
            proposals.setdefault(neighbour, []).append((cx + reach * math.cos(angle), cy + reach * math.sin(angle)))

    for neighbour, points in proposals.items():
        attrs[neighbour]["cx"] = sum(p[0] for p in points) / len(points)
        attrs[neighbour]["cy"] = sum(p[1] for p in points) / len(points)


def _add_quotient_edges(quotient: QuotientGraph) -> None:
    """Insert reduced edges, following the incident order when one exists."""
    for pairs in quotient.incident_order.values():
        for a, b in pairs:
            if not quotient.graph.has_edge(a, b):
                quotient.graph.add_edge(a, b)
    for a, b in quotient.edge_members:
        if not quotient.graph.has_edge(a, b):
            quotient.graph.add_edge(a, b)


def do_step2(
    graph: ClusteredGraph,
    embedder: SpringEmbedder,
    config: LayoutConfig,
    state: LayoutState,
) -> tuple[LayoutState, QuotientGraph]:
    """Place the quotient graph with the spring embedder.

    Placeholders and unclustered nodes take the embedder's centres, then every
    on-circle node is translated from circle-relative to global coordinates.
    """
    state.enter(Step.STEP_2)

    quotient = build_quotient_graph(graph, config)
    if config.reorder_incident_edges:
        reorder_incident_edges(quotient)
        seed_from_incident_order(quotient, config)
    _add_quotient_edges(quotient)

    params = EmbedderParams(
        spring_constant=config.embedder_spring_constant * QUOTIENT_SPRING_BOOST,
        use_grid_variant=True,
        use_multi_level_scaling=False,
        iterations=config.embedder_iterations,
        ideal_edge_length=config.ideal_edge_length,
        seed=config.seed,
    )
    logger.debug(
        "Step 2: quotient graph with %d nodes, %d edges",
        quotient.graph.number_of_nodes(),
        quotient.graph.number_of_edges(),
    )
    centers = embedder.embed(quotient.graph, params)

    for key, node in enumerate(quotient.nodes):
        node.set_center(*centers[key])

    for node in graph.on_circle_nodes:
        parent = node.owner.parent
        node.x += parent.center_x
        node.y += parent.center_y

    return state, quotient


# ─── Reversal Preparation ────────────────────────────────────────────────────


def prepare_circles_for_reversal(graph: ClusteredGraph) -> None:
    """Compute order matrices and flag circles a flip cannot help.

    A circle with fewer than two inter-cluster edges may not be reversed.
    """
    for circle in graph.circles:
        if len(circle.inter_cluster_edges) < 2:
            circle.may_be_reversed = False
        circle.compute_order_matrix()


# ─── Full Layout Pipeline ────────────────────────────────────────────────────


@dataclass
class LayoutResult:
    """Positions per caller node id plus the model they were read from."""

    positions: dict[str, Point]
    graph: ClusteredGraph
    state: LayoutState
    quotient: QuotientGraph


def run_layout(
    nodes: Iterable[NodeSpec],
    edges: Iterable[EdgeSpec],
    clusters: Iterable[Iterable[str]],
    config: LayoutConfig | None = None,
    *,
    ordering: CircularOrdering | None = None,
    embedder: SpringEmbedder | None = None,
    force: CircularForce | None = None,
) -> LayoutResult:
    """Run the whole pipeline and return the positioned model."""
    config = (config or LayoutConfig()).validate()
    ordering = ordering or AVSDFOrdering()
    embedder = embedder or NetworkXSpringEmbedder()
    force = force or SpringPullForce()

    graph = build_clustered_graph(nodes, edges, clusters, base_margin=config.base_margin)
    state = LayoutState()

    state = do_step1(graph, ordering, config, state)
    state, quotient = do_step2(graph, embedder, config, state)
    prepare_circles_for_reversal(graph)
    state = refine(graph, config, state, force)

    positions = {node_id: Point(x=node.x, y=node.y) for node_id, node in graph.nodes_by_id.items()}
    logger.info(
        "CiSE layout: %d nodes, %d circles, %d refinement iterations",
        len(positions),
        len(graph.circles),
        state.total_iterations,
    )
    return LayoutResult(positions=positions, graph=graph, state=state, quotient=quotient)


def cise_layout(
    nodes: Iterable[NodeSpec],
    edges: Iterable[EdgeSpec],
    clusters: Iterable[Iterable[str]],
    config: LayoutConfig | None = None,
    *,
    ordering: CircularOrdering | None = None,
    embedder: SpringEmbedder | None = None,
    force: CircularForce | None = None,
) -> dict[str, Point]:
    """Lay out a clustered graph; returns the top-left corner of every node."""
    return run_layout(
        nodes,
        edges,
        clusters,
        config,
        ordering=ordering,
        embedder=embedder,
        force=force,
    ).positions
