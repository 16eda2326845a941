"""Delegate protocols — the narrow interfaces of the external collaborators.

Delegate problems are plain ``networkx.Graph`` objects built by the stage that
needs them and discarded afterwards. Node attributes:

  circular ordering:  ``x``, ``y`` (top-left), ``width``, ``height``
  spring embedder:    ``cx``, ``cy`` (centre), ``width``, ``height``

Edges carry no attributes. Edge insertion order is a hint the embedder may use.
"""

from __future__ import annotations

from collections.abc import Hashable, Sequence
from dataclasses import dataclass, field
from typing import Protocol

import networkx as nx


@dataclass
class CircularOrderResult:
    """Result of ordering one cluster around a circle.

    Attributes:
        indices: Delegate node → circular index (0..N-1, a permutation).
        angles: Delegate node → angle in radians, measured from the centre.
        radius: Radius of the circle.
        center: Centre of the circle in caller units.
    """

    indices: dict[Hashable, int] = field(default_factory=dict)
    angles: dict[Hashable, float] = field(default_factory=dict)
    radius: float = 0.0
    center: tuple[float, float] = (0.0, 0.0)


@dataclass
class EmbedderParams:
    """Tunables accepted by spring embedders."""

    spring_constant: float = 1.0
    use_grid_variant: bool = False
    use_multi_level_scaling: bool = False
    iterations: int = 50
    ideal_edge_length: float = 50.0
    seed: int | None = 0


class CircularOrdering(Protocol):
    """Orders the nodes of a single cluster around a circle."""

    def order(self, graph: nx.Graph, node_separation: float) -> CircularOrderResult:
        """Return per-node index and angle plus the circle radius and centre."""
        ...


class SpringEmbedder(Protocol):
    """Positions a graph of sized nodes with a force-directed method."""

    def embed(self, graph: nx.Graph, params: EmbedderParams) -> dict[Hashable, tuple[float, float]]:
        """Return the settled centre of every node."""
        ...


class CircularForce(Protocol):
    """Force on an on-circle node from its inter-cluster edges."""

    def contribution(
        self,
        center: tuple[float, float],
        partners: Sequence[tuple[float, float]],
        ideal_length: float,
        spring_constant: float,
    ) -> tuple[float, float]:
        """Return the (fx, fy) pull acting on the node at ``center``."""
        ...
