"""Circular force delegate — spring pull of an on-circle node's external edges."""

from __future__ import annotations

import math
from collections.abc import Sequence


def spring_pull(
    a: tuple[float, float],
    b: tuple[float, float],
    ideal_length: float,
    spring_constant: float,
) -> tuple[float, float]:
    """Hooke force on ``a`` from a spring to ``b`` with rest length ``ideal_length``."""
    dx = b[0] - a[0]
    dy = b[1] - a[1]
    dist = math.hypot(dx, dy)
    if dist < 1e-9:
        return (0.0, 0.0)
    magnitude = spring_constant * (dist - ideal_length)
    return (magnitude * dx / dist, magnitude * dy / dist)


class SpringPullForce:
    """Sum of spring pulls along the node's inter-cluster edges.

    The refinement splits the result into a translation of the whole circle and
    a torque that rotates it.
    """

    def contribution(
        self,
        center: tuple[float, float],
        partners: Sequence[tuple[float, float]],
        ideal_length: float,
        spring_constant: float,
    ) -> tuple[float, float]:
        fx = fy = 0.0
        for partner in partners:
            px, py = spring_pull(center, partner, ideal_length, spring_constant)
            fx += px
            fy += py
        return (fx, fy)
