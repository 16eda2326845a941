"""Shared types: input records, output points, layout configuration and state."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import IntEnum

# ─── Constants ───────────────────────────────────────────────────────────────

# Cluster id carried by nodes that belong to no cluster.
UNCLUSTERED: int = -1

# Margin every graph starts with; circles add CLUSTER_MARGIN_EXTRA on top.
DEFAULT_GRAPH_MARGIN: float = 15.0
CLUSTER_MARGIN_EXTRA: float = 15.0

# Size used for nodes whose spec gives no width/height.
DEFAULT_NODE_SIZE: float = 30.0


class LayoutInputError(ValueError):
    """Raised when the caller's graph or configuration cannot be laid out."""


# ─── Input / output records ──────────────────────────────────────────────────


@dataclass
class NodeSpec:
    """A node as supplied by the caller. (x, y) is the top-left corner."""

    id: str
    x: float = 0.0
    y: float = 0.0
    width: float = DEFAULT_NODE_SIZE
    height: float = DEFAULT_NODE_SIZE


@dataclass
class EdgeSpec:
    """An edge as supplied by the caller, by node id."""

    source: str
    target: str


@dataclass
class Point:
    """A 2D point in caller units."""

    x: float
    y: float


# ─── Layout state machine ────────────────────────────────────────────────────


class Step(IntEnum):
    """Steps of the layout process."""

    NOT_STARTED = 0
    STEP_1 = 1  # per-cluster circular ordering
    STEP_2 = 2  # quotient graph placement
    STEP_3 = 3  # relaxation with circle flipping
    STEP_4 = 4  # relaxation with adjacent swapping
    STEP_5 = 5  # pure relaxation


class Phase(IntEnum):
    """Phases of an iteration within Steps 3 and 4."""

    NOT_STARTED = 0
    SWAP_PREPARATION = 1
    PERFORM_SWAP = 2
    OTHER = 3


@dataclass
class LayoutState:
    """Step/phase bookkeeping threaded through every stage call.

    Attributes:
        step: The step currently running.
        phase: The phase of the current iteration.
        iteration: Iteration counter within the current step.
        total_iterations: Iterations run across Steps 3–5.
        previous_total_displacement: Displacement of the previous iteration,
            compared against the current one to detect convergence.
        swapped_pairs: Pairs of on-circle node ids swapped in the previous
            iteration; these may not be swapped back immediately.
        reversed_circles: Cluster ids of circles reversed during the current
            step.
    """

    step: Step = Step.NOT_STARTED
    phase: Phase = Phase.NOT_STARTED
    iteration: int = 0
    total_iterations: int = 0
    previous_total_displacement: float = 0.0
    swapped_pairs: set[frozenset[str]] = field(default_factory=set)
    reversed_circles: set[int] = field(default_factory=set)

    def enter(self, step: Step, phase: Phase = Phase.OTHER) -> LayoutState:
        """Move to ``step``, resetting per-step counters. Returns self."""
        self.step = step
        self.phase = phase
        self.iteration = 0
        self.previous_total_displacement = 0.0
        self.swapped_pairs = set()
        self.reversed_circles = set()
        return self


# ─── Configuration ───────────────────────────────────────────────────────────


@dataclass
class LayoutConfig:
    """Tunable parameters of the layout.

    Geometry:
        node_separation: Gap left between neighbouring nodes on a circle.
        base_margin: Graph margin; each circle uses ``base_margin + 15``.
        ideal_edge_length: Ideal spring length between quotient bodies.
        ideal_inter_cluster_edge_length_coefficient: Multiplier on the ideal
            length of inter-cluster edges during refinement.
        cluster_inflation: Factor applied to cluster placeholder sizes in the
            quotient graph so inter-cluster edges end up longer.

    Forces (Steps 3–5):
        spring_constant, repulsion_constant, gravity_constant: Force weights.
        max_displacement: Largest translation of a body per iteration.
        max_rotation: Largest rotation of a circle per iteration (radians).
        cooling_rate: Per-iteration multiplier on the two caps above.
        min_cooling: Floor of the cooling factor.

    Iteration:
        step3_iterations, step4_iterations, step5_iterations: Budgets per step.
            A budget of 0 skips the step.
        convergence_epsilon: Total displacement below which a step converged.

    Step 2:
        embedder_spring_constant: Base spring constant handed to the embedder
            (boosted by ``QUOTIENT_SPRING_BOOST``).
        embedder_iterations: Iterations of the quotient-graph embedder.
        reorder_incident_edges: Sort incident quotient edges by the
            circular-mean heuristic before embedding.
        seed: Seed handed to the embedder.
    """

    node_separation: float = 12.0
    base_margin: float = DEFAULT_GRAPH_MARGIN
    ideal_edge_length: float = 50.0
    ideal_inter_cluster_edge_length_coefficient: float = 1.4
    cluster_inflation: float = 1.2

    spring_constant: float = 0.45
    repulsion_constant: float = 4500.0
    gravity_constant: float = 0.05
    max_displacement: float = 30.0
    max_rotation: float = math.pi / 36
    cooling_rate: float = 0.98
    min_cooling: float = 0.1

    step3_iterations: int = 60
    step4_iterations: int = 60
    step5_iterations: int = 40
    convergence_epsilon: float = 0.5

    embedder_spring_constant: float = 1.0
    embedder_iterations: int = 50
    reorder_incident_edges: bool = False
    seed: int | None = 0

    def validate(self) -> LayoutConfig:
        """Check the values for consistency. Returns self."""
        for name in ("step3_iterations", "step4_iterations", "step5_iterations", "embedder_iterations"):
            if getattr(self, name) < 0:
                raise LayoutInputError(f"{name} must be >= 0, got {getattr(self, name)}")
        for name in (
            "ideal_edge_length",
            "ideal_inter_cluster_edge_length_coefficient",
            "cluster_inflation",
            "max_displacement",
            "embedder_spring_constant",
            "spring_constant",
            "repulsion_constant",
            "gravity_constant",
        ):
            if getattr(self, name) <= 0:
                raise LayoutInputError(f"{name} must be > 0, got {getattr(self, name)}")
        for name in ("node_separation", "base_margin", "convergence_epsilon", "max_rotation"):
            if getattr(self, name) < 0:
                raise LayoutInputError(f"{name} must be >= 0, got {getattr(self, name)}")
        if not 0 < self.cooling_rate <= 1:
            raise LayoutInputError(f"cooling_rate must be in (0, 1], got {self.cooling_rate}")
        if not 0 < self.min_cooling <= 1:
            raise LayoutInputError(f"min_cooling must be in (0, 1], got {self.min_cooling}")
        return self

    @property
    def total_refinement_iterations(self) -> int:
        return self.step3_iterations + self.step4_iterations + self.step5_iterations
