"""Refinement module — Steps 3–5 of the CiSE layout.

Each circle moves as a rigid body (centre plus rotation); unclustered nodes
move as points. Every iteration relaxes the bodies under:
  - repulsion between bodies, measured from their bounding circles
  - springs along inter-cluster edges (ideal length scaled by the
    inter-cluster coefficient)
  - gravity toward the centroid of all bodies
  - the circular force of each out-node, split into a translation of its
    circle and a torque that rotates it

Steps 3 and 4 add a discrete move before the relaxation:
  Step 3: flip (reverse) circles whose order is mostly inverted w.r.t. the
          directions of their inter-cluster neighbours.
  Step 4: swap adjacent on-circle nodes when that undoes inversions without
          adding intra-cluster chord crossings.
Step 5 is relaxation only.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterator
from dataclasses import dataclass

from cise_layout.delegates import CircularForce
from cise_layout.graph import TWO_PI, Circle, ClusteredGraph, Node, normalize_angle
from cise_layout.types import LayoutConfig, LayoutState, Phase, Step

logger = logging.getLogger(__name__)

# Clearance below which repulsion stops growing.
MIN_REPULSION_DISTANCE: float = 5.0

# Angular differences this close to 0 or π give no direction.
ANGLE_TOLERANCE: float = 1e-9


# ─── Bodies ──────────────────────────────────────────────────────────────────


@dataclass(eq=False)
class Body:
    """A node moved by the relaxation: a circle placeholder or an unclustered node."""

    node: Node
    circle: Circle | None = None
    fx: float = 0.0
    fy: float = 0.0
    torque: float = 0.0

    @property
    def half_extent(self) -> float:
        return max(self.node.width, self.node.height) / 2


def collect_bodies(graph: ClusteredGraph) -> list[Body]:
    """One body per non-empty circle and per unclustered node."""
    bodies = []
    for node in graph.non_on_circle_nodes:
        if node.child is not None:
            if len(node.child) == 0:
                continue
            bodies.append(Body(node=node, circle=node.child))
        else:
            bodies.append(Body(node=node))
    return bodies


def _center(node: Node) -> tuple[float, float]:
    return (node.center_x, node.center_y)


# ─── Forces ──────────────────────────────────────────────────────────────────


def _apply_repulsion(bodies: list[Body], config: LayoutConfig) -> None:
    for i, a in enumerate(bodies):
        for b in bodies[i + 1 :]:
            dx = b.node.center_x - a.node.center_x
            dy = b.node.center_y - a.node.center_y
            dist = math.hypot(dx, dy)
            if dist < 1e-9:
                # Coincident bodies: push apart along a fixed axis.
                dx, dy, dist = 1.0, 0.0, 1.0
            clearance = max(dist - a.half_extent - b.half_extent, MIN_REPULSION_DISTANCE)
            force = config.repulsion_constant / (clearance * clearance)
            ux, uy = dx / dist, dy / dist
            a.fx -= force * ux
            a.fy -= force * uy
            b.fx += force * ux
            b.fy += force * uy


def _apply_gravity(bodies: list[Body], config: LayoutConfig) -> None:
    n = len(bodies)
    gx = sum(b.node.center_x for b in bodies) / n
    gy = sum(b.node.center_y for b in bodies) / n
    for b in bodies:
        b.fx += config.gravity_constant * (gx - b.node.center_x)
        b.fy += config.gravity_constant * (gy - b.node.center_y)


def _apply_edge_forces(
    graph: ClusteredGraph,
    body_of: dict[Node, Body],
    config: LayoutConfig,
    force: CircularForce,
    step: Step,
) -> None:
    ideal = config.ideal_edge_length * config.ideal_inter_cluster_edge_length_coefficient

    # Unclustered endpoints pull their own point body.
    for edge in graph.inter_cluster_edges:
        for end in (edge.source, edge.target):
            if end.is_on_circle:
                continue
            fx, fy = force.contribution(_center(end), [_center(edge.other_end(end))], ideal, config.spring_constant)
            body = body_of[end]
            body.fx += fx
            body.fy += fy

    # Out-nodes push their circle and turn it. During Step 3 only circles
    # that may be reversed are turned.
    for circle in graph.circles:
        body = body_of.get(circle.parent)
        if body is None:
            continue
        turns = step != Step.STEP_3 or circle.may_be_reversed
        cx, cy = _center(circle.parent)
        for node in circle.out_nodes:
            partners = [_center(e.other_end(node)) for e in node.on_circle.inter_cluster_edges]
            fx, fy = force.contribution(_center(node), partners, ideal, config.spring_constant)
            body.fx += fx
            body.fy += fy
            if turns:
                rx, ry = node.center_x - cx, node.center_y - cy
                body.torque += rx * fy - ry * fx


def _move_bodies(bodies: list[Body], config: LayoutConfig, cooling: float) -> float:
    """Apply the accumulated forces; returns the total displacement."""
    max_step = config.max_displacement * cooling
    max_turn = config.max_rotation * cooling
    total = 0.0

    for body in bodies:
        dx, dy = body.fx, body.fy
        length = math.hypot(dx, dy)
        if length > max_step:
            dx, dy = dx * max_step / length, dy * max_step / length
            length = max_step
        body.node.x += dx
        body.node.y += dy
        total += length

        circle = body.circle
        if circle is None:
            continue
        if circle.radius > 0:
            # Moment of inertia of N unit masses on the rim.
            turn = body.torque / (circle.radius * circle.radius * len(circle))
            turn = max(-max_turn, min(max_turn, turn))
            circle.rotation = normalize_angle(circle.rotation + turn)
            total += abs(turn) * circle.radius
        circle.place_members()

    return total


def relax(
    graph: ClusteredGraph,
    bodies: list[Body],
    config: LayoutConfig,
    force: CircularForce,
    cooling: float,
    step: Step = Step.STEP_5,
) -> float:
    """Run one force iteration over ``bodies``; returns the total displacement."""
    for body in bodies:
        body.fx = body.fy = body.torque = 0.0

    body_of = {b.node: b for b in bodies}
    _apply_repulsion(bodies, config)
    _apply_gravity(bodies, config)
    _apply_edge_forces(graph, body_of, config, force, step)
    return _move_bodies(bodies, config, cooling)


# ─── Inversions ──────────────────────────────────────────────────────────────


def _partner_direction(circle: Circle, partner: Node) -> float:
    """Direction of ``partner`` seen from the centre of ``circle``."""
    return math.atan2(partner.center_y - circle.parent.center_y, partner.center_x - circle.parent.center_x)


def _external_clockwise(phi_a: float, phi_b: float) -> bool | None:
    """True if ``phi_b`` follows ``phi_a`` within half a turn; None on ties."""
    diff = normalize_angle(phi_b - phi_a)
    if diff < ANGLE_TOLERANCE or diff > TWO_PI - ANGLE_TOLERANCE or abs(diff - math.pi) < ANGLE_TOLERANCE:
        return None
    return diff < math.pi


def _attachments(circle: Circle) -> Iterator[tuple[int, float]]:
    """(position, partner direction) for every inter-cluster edge end on ``circle``."""
    for pos, node in enumerate(circle.on_circle_nodes):
        for edge in node.on_circle.inter_cluster_edges:
            yield pos, _partner_direction(circle, edge.other_end(node))


def count_inversions(circle: Circle) -> tuple[int, int]:
    """Count (consistent, inverted) pairs of inter-cluster edges on ``circle``.

    A pair attached at two different positions is consistent when the order
    matrix and the directions of the two far ends agree on which comes first
    clockwise, and inverted otherwise. Reversing the circle exchanges the two
    counts.
    """
    matrix = circle.order_matrix
    if matrix is None:
        matrix = circle.compute_order_matrix()

    attached = list(_attachments(circle))
    consistent = inverted = 0
    for i, (pos_a, phi_a) in enumerate(attached):
        for pos_b, phi_b in attached[i + 1 :]:
            if pos_a == pos_b:
                continue
            external = _external_clockwise(phi_a, phi_b)
            if external is None:
                continue
            if matrix[pos_a][pos_b] == external:
                consistent += 1
            else:
                inverted += 1
    return consistent, inverted


# ─── Step 3: Flips ───────────────────────────────────────────────────────────


def find_flips(graph: ClusteredGraph, state: LayoutState) -> list[Circle]:
    """Circles that would lose inversions by being reversed."""
    candidates = []
    for circle in graph.circles:
        if not circle.may_be_reversed or circle.cluster_id in state.reversed_circles:
            continue
        consistent, inverted = count_inversions(circle)
        if consistent < inverted:
            candidates.append(circle)
    return candidates


def perform_flips(circles: list[Circle], state: LayoutState) -> None:
    for circle in circles:
        circle.reverse()
        circle.place_members()
        state.reversed_circles.add(circle.cluster_id)
        logger.debug("Step 3 iteration %d: reversed cluster %d", state.iteration, circle.cluster_id)


# ─── Step 4: Swaps ───────────────────────────────────────────────────────────


def _chords_cross(a1: int, a2: int, b1: int, b2: int, n: int) -> bool:
    """Whether chords (a1, a2) and (b1, b2) between distinct positions cross."""
    span = (a2 - a1) % n

    def inside(p: int) -> bool:
        return 0 < (p - a1) % n < span

    return inside(b1) != inside(b2)


def swap_inversion_delta(circle: Circle, i: int, j: int) -> int:
    """Change in inverted inter-cluster pairs if positions ``i`` and ``j`` swap.

    Only pairs formed by one edge at ``i`` and one at ``j`` are counted; their
    internal relation is the one that flips.
    """
    u, v = circle.on_circle_nodes[i], circle.on_circle_nodes[j]
    forward = circle.order_matrix[i][j]
    consistent = inverted = 0
    for eu in u.on_circle.inter_cluster_edges:
        phi_u = _partner_direction(circle, eu.other_end(u))
        for ev in v.on_circle.inter_cluster_edges:
            external = _external_clockwise(phi_u, _partner_direction(circle, ev.other_end(v)))
            if external is None:
                continue
            if forward == external:
                consistent += 1
            else:
                inverted += 1
    return consistent - inverted


def swap_crossing_delta(circle: Circle, i: int, j: int, neighbours: dict[Node, list[Node]]) -> int:
    """Change in intra-cluster chord crossings if positions ``i`` and ``j`` swap.

    Moving two neighbouring positions past each other toggles the crossing of
    every chord pair (u, a), (v, b) with four distinct ends and nothing else.
    """
    nodes = circle.on_circle_nodes
    n = len(nodes)
    u, v = nodes[i], nodes[j]
    position = {node: pos for pos, node in enumerate(nodes)}

    delta = 0
    for a in neighbours.get(u, ()):
        if a is v:
            continue
        for b in neighbours.get(v, ()):
            if b is u or b is a:
                continue
            delta += -1 if _chords_cross(i, position[a], j, position[b], n) else 1
    return delta


def _intra_neighbours(circle: Circle) -> dict[Node, list[Node]]:
    neighbours: dict[Node, list[Node]] = {}
    for edge in circle.intra_cluster_edges:
        neighbours.setdefault(edge.source, []).append(edge.target)
        neighbours.setdefault(edge.target, []).append(edge.source)
    return neighbours


def find_swaps(graph: ClusteredGraph, state: LayoutState) -> list[tuple[Circle, Node, Node]]:
    """Adjacent on-circle pairs worth swapping this iteration.

    A pair qualifies when the swap strictly lowers the inversion count, does
    not add intra-cluster crossings, and the same pair was not swapped in the
    previous iteration. A node takes part in at most one swap per iteration.
    """
    chosen: list[tuple[Circle, Node, Node]] = []
    taken: set[Node] = set()

    for circle in graph.circles:
        n = len(circle)
        if n < 3:
            continue
        if circle.order_matrix is None:
            circle.compute_order_matrix()
        neighbours = _intra_neighbours(circle)

        for i in range(n):
            j = (i + 1) % n
            u, v = circle.on_circle_nodes[i], circle.on_circle_nodes[j]
            if u in taken or v in taken:
                continue
            if not (u.on_circle.inter_cluster_edges and v.on_circle.inter_cluster_edges):
                continue
            if frozenset((u.id, v.id)) in state.swapped_pairs:
                continue
            if swap_inversion_delta(circle, i, j) >= 0:
                continue
            if swap_crossing_delta(circle, i, j, neighbours) > 0:
                continue
            chosen.append((circle, u, v))
            taken.update((u, v))

    return chosen


def perform_swaps(swaps: list[tuple[Circle, Node, Node]], state: LayoutState) -> None:
    swapped: set[frozenset[str]] = set()
    for circle, u, v in swaps:
        circle.swap(u, v)
        circle.place_members()
        swapped.add(frozenset((u.id, v.id)))
        logger.debug("Step 4 iteration %d: swapped %s and %s", state.iteration, u.id, v.id)
    state.swapped_pairs = swapped


# ─── Steps 3–5 ───────────────────────────────────────────────────────────────


def has_converged(total: float, state: LayoutState, budget: int, config: LayoutConfig) -> bool:
    """Converged when nothing moves, or when late in the step movement stops changing."""
    if total < config.convergence_epsilon:
        return True
    if state.iteration <= budget / 3:
        return False
    return abs(total - state.previous_total_displacement) < config.convergence_epsilon


def refine(
    graph: ClusteredGraph,
    config: LayoutConfig,
    state: LayoutState,
    force: CircularForce,
) -> LayoutState:
    """Run Steps 3, 4 and 5 in order; each stops at its budget or on convergence."""
    bodies = collect_bodies(graph)
    if not bodies:
        return state

    cooling = 1.0
    budgets = (
        (Step.STEP_3, config.step3_iterations),
        (Step.STEP_4, config.step4_iterations),
        (Step.STEP_5, config.step5_iterations),
    )
    for step, budget in budgets:
        state.enter(step)
        flips = swaps = 0

        while state.iteration < budget:
            state.iteration += 1
            state.total_iterations += 1

            if step == Step.STEP_3:
                state.phase = Phase.SWAP_PREPARATION
                circles = find_flips(graph, state)
                state.phase = Phase.PERFORM_SWAP
                perform_flips(circles, state)
                flips += len(circles)
            elif step == Step.STEP_4:
                state.phase = Phase.SWAP_PREPARATION
                pairs = find_swaps(graph, state)
                state.phase = Phase.PERFORM_SWAP
                perform_swaps(pairs, state)
                swaps += len(pairs)

            state.phase = Phase.OTHER
            total = relax(graph, bodies, config, force, cooling, step)
            cooling = max(config.min_cooling, cooling * config.cooling_rate)

            if has_converged(total, state, budget, config):
                logger.debug("Step %d converged after %d iterations", step, state.iteration)
                break
            state.previous_total_displacement = total
        else:
            if budget:
                logger.debug("Step %d stopped at its budget of %d iterations", step, budget)

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Step %d done: %d flips, %d swaps", step, flips, swaps)

    return state
