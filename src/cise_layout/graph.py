"""Clustered graph model — nodes, edges, circles and the builder.

The builder turns the caller's flat records into the internal model:
  1. One placeholder node + one Circle per cluster.
  2. One on-circle node per cluster member, one root node per unclustered id.
  3. Edges classified as intra-cluster (kept by the circle) or inter-cluster
     (kept at the top level and by each on-circle endpoint).
  4. On-circle nodes touched by an inter-cluster edge become out-nodes.
  5. Global partition into on-circle / non-on-circle nodes.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from cise_layout.types import (
    CLUSTER_MARGIN_EXTRA,
    DEFAULT_GRAPH_MARGIN,
    UNCLUSTERED,
    EdgeSpec,
    LayoutInputError,
    NodeSpec,
)

TWO_PI: float = 2.0 * math.pi


def normalize_angle(angle: float) -> float:
    """Map an angle in radians into [0, 2π)."""
    a = angle % TWO_PI
    return 0.0 if a == TWO_PI else a


# ─── Nodes and edges ─────────────────────────────────────────────────────────


@dataclass(eq=False)
class OnCircleExt:
    """Extra state of a node that sits on a circle's perimeter."""

    index: int = -1
    angle: float = 0.0
    inter_cluster_edges: list[Edge] = field(default_factory=list)


@dataclass(eq=False)
class Node:
    """A node of the clustered graph.

    (x, y) is the top-left corner. On-circle nodes hold circle-relative
    coordinates between Step 1 and Step 2 and global ones afterwards.
    Cluster placeholder nodes have ``id=None`` and a ``child`` circle.
    """

    id: str | None
    x: float
    y: float
    width: float
    height: float
    cluster_id: int = UNCLUSTERED
    owner: Circle | None = None
    child: Circle | None = None
    on_circle: OnCircleExt | None = None

    @property
    def is_on_circle(self) -> bool:
        return self.on_circle is not None

    @property
    def center_x(self) -> float:
        return self.x + self.width / 2

    @property
    def center_y(self) -> float:
        return self.y + self.height / 2

    def set_center(self, cx: float, cy: float) -> None:
        self.x = cx - self.width / 2
        self.y = cy - self.height / 2

    def __repr__(self) -> str:
        if self.child is not None:
            return f"Node(cluster={self.child.cluster_id})"
        return f"Node({self.id!r})"


@dataclass(eq=False)
class Edge:
    """An edge between two distinct nodes."""

    source: Node
    target: Node
    is_intra_cluster: bool = False

    def other_end(self, node: Node) -> Node:
        return self.target if node is self.source else self.source

    def __repr__(self) -> str:
        return f"Edge({self.source.id!r} -> {self.target.id!r})"


# ─── Circle ──────────────────────────────────────────────────────────────────


class Circle:
    """A cluster drawn around a circle.

    Attributes:
        cluster_id: Index of the cluster in the caller's membership list.
        parent: Placeholder node standing for this circle in the quotient graph.
        margin: Space kept around the circle inside the placeholder.
        radius: Radius computed by the circular ordering (0 when empty).
        rotation: Rotation of the whole circle applied on top of node angles.
        on_circle_nodes: Nodes on the perimeter, sorted by circular index.
        in_circle_nodes: Nodes pulled inside the circle (always empty here).
        in_nodes / out_nodes: On-circle nodes without / with an inter-cluster
            neighbour.
        intra_cluster_edges / inter_cluster_edges: Filled by ``finalize``.
        order_matrix: Pairwise clockwise relation of on-circle positions; see
            ``compute_order_matrix``.
        may_be_reversed: False for circles a flip cannot help.
    """

    def __init__(self, cluster_id: int, parent: Node, margin: float) -> None:
        self.cluster_id = cluster_id
        self.parent = parent
        self.margin = margin
        self.radius = 0.0
        self.rotation = 0.0
        self.on_circle_nodes: list[Node] = []
        self.in_circle_nodes: list[Node] = []
        self.in_nodes: list[Node] = []
        self.out_nodes: list[Node] = []
        self.edges: list[Edge] = []
        self.intra_cluster_edges: list[Edge] = []
        self.inter_cluster_edges: list[Edge] = []
        self.order_matrix: list[list[bool]] | None = None
        self.may_be_reversed = True

    def __repr__(self) -> str:
        return f"Circle(cluster={self.cluster_id}, nodes={len(self.on_circle_nodes)}, radius={self.radius:.1f})"

    def __len__(self) -> int:
        return len(self.on_circle_nodes)

    # ── construction ──

    def add_on_circle_node(self, node: Node) -> None:
        node.owner = self
        node.cluster_id = self.cluster_id
        if node.on_circle is None:
            node.on_circle = OnCircleExt()
        self.on_circle_nodes.append(node)
        # Every member starts as an in-node until an inter-cluster edge is seen.
        self.in_nodes.append(node)

    def add_edge(self, edge: Edge) -> None:
        self.edges.append(edge)

    def mark_out_node(self, node: Node) -> None:
        """Move ``node`` from the in-nodes to the out-nodes (once)."""
        if node in self.in_nodes:
            self.in_nodes.remove(node)
            self.out_nodes.append(node)

    def finalize(self) -> None:
        """Compute the derived edge lists once the edge set is complete."""
        self.intra_cluster_edges = [e for e in self.edges if e.is_intra_cluster]
        self.inter_cluster_edges = [e for n in self.out_nodes for e in n.on_circle.inter_cluster_edges]

    # ── geometry ──

    def max_node_dimension(self) -> float:
        return max((max(n.width, n.height) for n in self.on_circle_nodes), default=0.0)

    def calculate_parent_node_dimension(self) -> float:
        """Size the placeholder so it encloses the circle, keeping its centre.

        dimension = 2 * (radius + margin) + largest on-circle node dimension
        """
        dimension = 2.0 * (self.radius + self.margin) + self.max_node_dimension()
        cx, cy = self.parent.center_x, self.parent.center_y
        self.parent.width = dimension
        self.parent.height = dimension
        self.parent.set_center(cx, cy)
        return dimension

    def place_members(self) -> None:
        """Set global positions of on-circle nodes from centre, rotation and angles."""
        cx, cy = self.parent.center_x, self.parent.center_y
        for node in self.on_circle_nodes:
            theta = self.rotation + node.on_circle.angle
            node.set_center(cx + self.radius * math.cos(theta), cy + self.radius * math.sin(theta))

    def global_angle(self, node: Node) -> float:
        return normalize_angle(self.rotation + node.on_circle.angle)

    # ── circular order ──

    def sort_by_index(self) -> None:
        self.on_circle_nodes.sort(key=lambda n: n.on_circle.index)

    def compute_order_matrix(self) -> list[list[bool]]:
        """Build the pairwise order matrix from the node angles.

        For positions i < j, entry [i][j] is True iff going clockwise from the
        node at i reaches the node at j within half a revolution, and
        [j][i] is its negation. The diagonal is unused (False).
        """
        n = len(self.on_circle_nodes)
        matrix = [[False] * n for _ in range(n)]
        for i in range(n):
            angle_i = self.on_circle_nodes[i].on_circle.angle
            for j in range(i + 1, n):
                diff = normalize_angle(self.on_circle_nodes[j].on_circle.angle - angle_i)
                matrix[i][j] = diff <= math.pi
                matrix[j][i] = not matrix[i][j]
        self.order_matrix = matrix
        return matrix

    def reverse(self) -> None:
        """Flip the circle: mirror every angle and renumber the nodes.

        Indices are re-derived from the mirrored angles, so reversing twice
        restores the original order and angles.
        """
        for node in self.on_circle_nodes:
            node.on_circle.angle = normalize_angle(-node.on_circle.angle)
        self.on_circle_nodes.sort(key=lambda n: n.on_circle.angle)
        for idx, node in enumerate(self.on_circle_nodes):
            node.on_circle.index = idx
        if self.order_matrix is not None:
            self.compute_order_matrix()

    def swap(self, a: Node, b: Node) -> None:
        """Exchange the circular positions (index and angle) of two nodes.

        The order matrix is indexed by position and each position keeps its
        angle, so it stays valid.
        """
        ea, eb = a.on_circle, b.on_circle
        ea.index, eb.index = eb.index, ea.index
        ea.angle, eb.angle = eb.angle, ea.angle
        self.sort_by_index()


# ─── Clustered graph ─────────────────────────────────────────────────────────


@dataclass
class ClusteredGraph:
    """The internal model produced by ``build_clustered_graph``.

    Attributes:
        circles: One circle per cluster, in membership order.
        root_nodes: Cluster placeholders and unclustered nodes.
        nodes_by_id: Read-only id → node association for caller nodes.
        edges: Every kept edge (self-loops dropped).
        inter_cluster_edges: Edges kept at the top level.
        on_circle_nodes / non_on_circle_nodes: Global node partition.
    """

    circles: list[Circle]
    root_nodes: list[Node]
    nodes_by_id: Mapping[str, Node]
    edges: list[Edge]
    inter_cluster_edges: list[Edge]
    on_circle_nodes: list[Node] = field(default_factory=list)
    non_on_circle_nodes: list[Node] = field(default_factory=list)

    @property
    def unclustered_nodes(self) -> list[Node]:
        return [n for n in self.root_nodes if n.child is None]

    def circle_of(self, cluster_id: int) -> Circle:
        return self.circles[cluster_id]


def build_clustered_graph(
    nodes: Iterable[NodeSpec],
    edges: Iterable[EdgeSpec],
    clusters: Iterable[Iterable[str]],
    base_margin: float = DEFAULT_GRAPH_MARGIN,
) -> ClusteredGraph:
    """Convert flat node/edge/cluster records into a ``ClusteredGraph``.

    Args:
        nodes: Node records, (x, y) being the top-left corner.
        edges: Edge records by node id.
        clusters: Disjoint groups of node ids; ids in no group are unclustered.
        base_margin: Graph margin; circles get ``base_margin + 15``.

    Raises:
        LayoutInputError: on duplicate node ids, cluster members or edge
            endpoints that name no node, or ids listed in two clusters.
    """
    specs: dict[str, NodeSpec] = {}
    for spec in nodes:
        if spec.id in specs:
            raise LayoutInputError(f"duplicate node id {spec.id!r}")
        specs[spec.id] = spec

    id_to_node: dict[str, Node] = {}
    circles: list[Circle] = []
    root_nodes: list[Node] = []

    # Clustered nodes, one circle per group.
    for cluster_id, members in enumerate(clusters):
        cluster_node = Node(id=None, x=0.0, y=0.0, width=0.0, height=0.0)
        circle = Circle(cluster_id, cluster_node, base_margin + CLUSTER_MARGIN_EXTRA)
        cluster_node.child = circle
        root_nodes.append(cluster_node)
        circles.append(circle)

        for node_id in members:
            spec = specs.get(node_id)
            if spec is None:
                raise LayoutInputError(f"cluster {cluster_id} references unknown node id {node_id!r}")
            if node_id in id_to_node:
                raise LayoutInputError(
                    f"node id {node_id!r} is listed in clusters {id_to_node[node_id].cluster_id} and {cluster_id}"
                )
            node = Node(id=node_id, x=spec.x, y=spec.y, width=spec.width, height=spec.height)
            circle.add_on_circle_node(node)
            id_to_node[node_id] = node

    # Unclustered nodes live directly under the root.
    for node_id, spec in specs.items():
        if node_id in id_to_node:
            continue
        node = Node(id=node_id, x=spec.x, y=spec.y, width=spec.width, height=spec.height)
        root_nodes.append(node)
        id_to_node[node_id] = node

    kept_edges: list[Edge] = []
    inter_edges: list[Edge] = []
    for spec in edges:
        source = id_to_node.get(spec.source)
        target = id_to_node.get(spec.target)
        if source is None or target is None:
            missing = spec.source if source is None else spec.target
            raise LayoutInputError(f"edge {spec.source!r} -> {spec.target!r} references unknown node id {missing!r}")
        if source is target:
            continue

        is_intra = source.cluster_id == target.cluster_id and source.cluster_id != UNCLUSTERED
        edge = Edge(source, target, is_intra_cluster=is_intra)
        kept_edges.append(edge)
        if is_intra:
            source.owner.add_edge(edge)
        else:
            inter_edges.append(edge)
            for end in (source, target):
                if end.on_circle is not None:
                    end.on_circle.inter_cluster_edges.append(edge)

    # Out-nodes: on-circle endpoints of inter-cluster edges.
    for edge in inter_edges:
        for end in (edge.source, edge.target):
            if end.cluster_id != UNCLUSTERED:
                end.owner.mark_out_node(end)

    for circle in circles:
        circle.finalize()

    graph = ClusteredGraph(
        circles=circles,
        root_nodes=root_nodes,
        nodes_by_id=MappingProxyType(id_to_node),
        edges=kept_edges,
        inter_cluster_edges=inter_edges,
    )
    graph.on_circle_nodes = [n for c in circles for n in c.on_circle_nodes]
    graph.non_on_circle_nodes = list(root_nodes)
    return graph
