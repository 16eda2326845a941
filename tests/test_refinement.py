"""Tests for refinement.py — relaxation forces, flips (Step 3), swaps (Step 4), convergence.

Fixtures place a four-node circle of radius 100 at the origin with nodes
c0..c3 at angles 0, π/2, π, 3π/2, and unclustered partners p_i joined to c_i
at a chosen direction from the centre.
"""

from __future__ import annotations

import math

import pytest

from cise_layout.delegates import SpringPullForce
from cise_layout.graph import Circle, ClusteredGraph, build_clustered_graph
from cise_layout.layout import prepare_circles_for_reversal
from cise_layout.refinement import (
    Body,
    collect_bodies,
    count_inversions,
    find_flips,
    find_swaps,
    has_converged,
    perform_flips,
    perform_swaps,
    refine,
    relax,
    swap_crossing_delta,
    swap_inversion_delta,
)
from cise_layout.types import EdgeSpec, LayoutConfig, LayoutState, NodeSpec, Step

RADIUS = 100.0
PARTNER_DISTANCE = 400.0

# ─── Helpers ──────────────────────────────────────────────────────────────────


def make_fixture(
    partner_angles: dict[int, float],
    intra: tuple[tuple[str, str], ...] = (),
) -> tuple[ClusteredGraph, Circle]:
    """Square circle with partners p_i at ``partner_angles[i]`` joined to c_i."""
    members = [f"c{i}" for i in range(4)]
    nodes = [NodeSpec(m) for m in members] + [NodeSpec(f"p{i}") for i in partner_angles]
    edges = [EdgeSpec(f"c{i}", f"p{i}") for i in partner_angles] + [EdgeSpec(a, b) for a, b in intra]
    graph = build_clustered_graph(nodes, edges, [members])

    circle = graph.circles[0]
    for i, node in enumerate(circle.on_circle_nodes):
        node.on_circle.index = i
        node.on_circle.angle = i * math.pi / 2
    circle.radius = RADIUS
    circle.parent.set_center(0.0, 0.0)
    circle.calculate_parent_node_dimension()
    circle.place_members()

    for i, angle in partner_angles.items():
        partner = graph.nodes_by_id[f"p{i}"]
        partner.set_center(PARTNER_DISTANCE * math.cos(angle), PARTNER_DISTANCE * math.sin(angle))

    prepare_circles_for_reversal(graph)
    return graph, circle


def mirrored_fixture() -> tuple[ClusteredGraph, Circle]:
    """Partners mirror the circle: p_i sits in the direction of -angle(c_i)."""
    return make_fixture({i: -i * math.pi / 2 for i in range(4)})


def aligned_fixture() -> tuple[ClusteredGraph, Circle]:
    """Partners sit straight out from their circle nodes."""
    return make_fixture({i: i * math.pi / 2 for i in range(4)})


def crossed_pair_fixture(intra: tuple[tuple[str, str], ...] = ()) -> tuple[ClusteredGraph, Circle]:
    """c0's partner lies toward c1 and c1's partner toward c0."""
    return make_fixture({0: math.pi / 2, 1: 0.0}, intra)


def ids(nodes) -> list[str]:
    return [n.id for n in nodes]


def no_refinement(**overrides) -> LayoutConfig:
    values = {"step3_iterations": 0, "step4_iterations": 0, "step5_iterations": 0}
    values.update(overrides)
    return LayoutConfig(**values)


# ─── Body / Force Tests ───────────────────────────────────────────────────────


class TestCollectBodies:
    def test_circles_and_unclustered(self):
        """One body per non-empty circle plus one per unclustered node."""
        graph, circle = aligned_fixture()
        bodies = collect_bodies(graph)
        assert len(bodies) == 5
        assert bodies[0].circle is circle
        assert all(b.circle is None for b in bodies[1:])

    def test_empty_circle_skipped(self):
        graph = build_clustered_graph([NodeSpec("u")], [], [[]])
        bodies = collect_bodies(graph)
        assert [b.node.id for b in bodies] == ["u"]

    def test_half_extent(self):
        graph = build_clustered_graph([NodeSpec("u", width=10, height=40)], [], [])
        assert Body(node=graph.nodes_by_id["u"]).half_extent == 20


class TestRelax:
    def test_spring_pulls_distant_nodes_together(self):
        """Two connected unclustered nodes far apart move closer."""
        graph = build_clustered_graph(
            [NodeSpec("u", x=0, y=0), NodeSpec("v", x=1000, y=0)],
            [EdgeSpec("u", "v")],
            [],
        )
        bodies = collect_bodies(graph)
        total = relax(graph, bodies, LayoutConfig(), SpringPullForce(), cooling=1.0)
        u, v = graph.nodes_by_id["u"], graph.nodes_by_id["v"]
        assert v.x - u.x < 1000
        assert total > 0

    def test_repulsion_separates_overlapping_nodes(self):
        """Two unconnected coincident nodes are pushed apart."""
        graph = build_clustered_graph([NodeSpec("u"), NodeSpec("v")], [], [])
        bodies = collect_bodies(graph)
        relax(graph, bodies, LayoutConfig(), SpringPullForce(), cooling=1.0)
        u, v = graph.nodes_by_id["u"], graph.nodes_by_id["v"]
        assert math.hypot(v.x - u.x, v.y - u.y) > 0

    def test_displacement_capped(self):
        """No body moves further than max_displacement * cooling."""
        graph = build_clustered_graph(
            [NodeSpec("u", x=0, y=0), NodeSpec("v", x=5000, y=0)],
            [EdgeSpec("u", "v")],
            [],
        )
        bodies = collect_bodies(graph)
        relax(graph, bodies, LayoutConfig(max_displacement=10.0), SpringPullForce(), cooling=0.5)
        assert graph.nodes_by_id["u"].x == pytest.approx(5.0)

    def test_single_node_stays(self):
        """A lone node feels no force."""
        graph = build_clustered_graph([NodeSpec("u", x=7, y=9)], [], [])
        total = relax(graph, collect_bodies(graph), LayoutConfig(), SpringPullForce(), cooling=1.0)
        u = graph.nodes_by_id["u"]
        assert (u.x, u.y) == (7, 9)
        assert total == 0.0

    def test_out_node_turns_circle(self):
        """A partner ahead of c0 (clockwise) rotates the circle toward it, capped."""
        graph, circle = make_fixture({0: math.pi / 2})
        config = LayoutConfig()
        relax(graph, collect_bodies(graph), config, SpringPullForce(), cooling=1.0)
        assert 0 < circle.rotation <= config.max_rotation + 1e-12

    def test_step3_turns_reversible_circles_only(self):
        """In Step 3 a circle that may not be reversed keeps its rotation."""
        graph, circle = make_fixture({0: math.pi / 2})
        assert not circle.may_be_reversed
        relax(graph, collect_bodies(graph), LayoutConfig(), SpringPullForce(), cooling=1.0, step=Step.STEP_3)
        assert circle.rotation == 0.0

    def test_step3_turns_reversible_circle(self):
        """A circle with two inter-cluster edges still turns in Step 3."""
        graph, circle = make_fixture({0: math.pi / 2, 1: math.pi})
        assert circle.may_be_reversed
        relax(graph, collect_bodies(graph), LayoutConfig(), SpringPullForce(), cooling=1.0, step=Step.STEP_3)
        assert circle.rotation > 0

    def test_members_follow_circle(self):
        """After relaxation the members are still on the rim."""
        graph, circle = make_fixture({0: math.pi / 2, 2: 0.3})
        relax(graph, collect_bodies(graph), LayoutConfig(), SpringPullForce(), cooling=1.0)
        cx, cy = circle.parent.center_x, circle.parent.center_y
        for node in circle.on_circle_nodes:
            assert math.hypot(node.center_x - cx, node.center_y - cy) == pytest.approx(RADIUS)


# ─── Flip Tests ───────────────────────────────────────────────────────────────


class TestCountInversions:
    def test_mirrored_partners_all_inverted(self):
        """Mirrored partners: every decided pair is inverted (π ties skipped)."""
        _, circle = mirrored_fixture()
        assert count_inversions(circle) == (0, 4)

    def test_aligned_partners_all_consistent(self):
        _, circle = aligned_fixture()
        assert count_inversions(circle) == (4, 0)

    def test_no_inter_edges(self):
        _, circle = make_fixture({})
        assert count_inversions(circle) == (0, 0)


class TestFlips:
    def test_inverted_circle_selected(self):
        graph, circle = mirrored_fixture()
        assert find_flips(graph, LayoutState()) == [circle]

    def test_consistent_circle_not_selected(self):
        graph, _ = aligned_fixture()
        assert find_flips(graph, LayoutState()) == []

    def test_non_reversible_circle_not_selected(self):
        graph, circle = mirrored_fixture()
        circle.may_be_reversed = False
        assert find_flips(graph, LayoutState()) == []

    def test_circle_reversed_this_step_not_selected(self):
        graph, circle = mirrored_fixture()
        state = LayoutState(reversed_circles={circle.cluster_id})
        assert find_flips(graph, state) == []

    def test_perform_flip(self):
        """Flipping reverses the order, fixes the inversions and records the circle."""
        graph, circle = mirrored_fixture()
        state = LayoutState()
        perform_flips(find_flips(graph, state), state)
        assert ids(circle.on_circle_nodes) == ["c0", "c3", "c2", "c1"]
        assert count_inversions(circle) == (4, 0)
        assert state.reversed_circles == {circle.cluster_id}

    def test_flip_moves_members(self):
        """After a flip c1 sits where c3 was."""
        graph, circle = mirrored_fixture()
        c1 = graph.nodes_by_id["c1"]
        perform_flips([circle], LayoutState())
        assert c1.center_x == pytest.approx(0.0, abs=1e-9)
        assert c1.center_y == pytest.approx(-RADIUS)


# ─── Swap Tests ───────────────────────────────────────────────────────────────


class TestSwapDeltas:
    def test_crossed_pair_inversion_delta(self):
        """Swapping c0 and c1 undoes their one inverted pair."""
        _, circle = crossed_pair_fixture()
        assert swap_inversion_delta(circle, 0, 1) == -1

    def test_straight_pair_inversion_delta(self):
        _, circle = make_fixture({0: 0.0, 1: math.pi / 2})
        assert swap_inversion_delta(circle, 0, 1) == 1

    def test_crossing_removed(self):
        """Chords c0-c2 and c1-c3 cross; swapping c0 and c1 uncrosses them."""
        _, circle = crossed_pair_fixture(intra=(("c0", "c2"), ("c1", "c3")))
        neighbours = {}
        for edge in circle.intra_cluster_edges:
            neighbours.setdefault(edge.source, []).append(edge.target)
            neighbours.setdefault(edge.target, []).append(edge.source)
        assert swap_crossing_delta(circle, 0, 1, neighbours) == -1

    def test_crossing_added(self):
        """Chords c0-c3 and c1-c2 are apart; swapping c0 and c1 crosses them."""
        _, circle = crossed_pair_fixture(intra=(("c0", "c3"), ("c1", "c2")))
        neighbours = {}
        for edge in circle.intra_cluster_edges:
            neighbours.setdefault(edge.source, []).append(edge.target)
            neighbours.setdefault(edge.target, []).append(edge.source)
        assert swap_crossing_delta(circle, 0, 1, neighbours) == 1

    def test_shared_endpoint_ignored(self):
        """Chords c0-c2 and c1-c2 share c2 and never count."""
        _, circle = crossed_pair_fixture(intra=(("c0", "c2"), ("c1", "c2")))
        c = circle.on_circle_nodes
        neighbours = {c[0]: [c[2]], c[1]: [c[2]], c[2]: [c[0], c[1]]}
        assert swap_crossing_delta(circle, 0, 1, neighbours) == 0


class TestSwaps:
    def test_crossed_pair_selected(self):
        graph, circle = crossed_pair_fixture()
        swaps = find_swaps(graph, LayoutState())
        assert [(c, u.id, v.id) for c, u, v in swaps] == [(circle, "c0", "c1")]

    def test_swap_rejected_when_crossings_grow(self):
        graph, _ = crossed_pair_fixture(intra=(("c0", "c3"), ("c1", "c2")))
        assert find_swaps(graph, LayoutState()) == []

    def test_swap_accepted_when_crossings_drop(self):
        graph, _ = crossed_pair_fixture(intra=(("c0", "c2"), ("c1", "c3")))
        assert len(find_swaps(graph, LayoutState())) == 1

    def test_pair_swapped_last_iteration_blocked(self):
        graph, _ = crossed_pair_fixture()
        state = LayoutState(swapped_pairs={frozenset(("c0", "c1"))})
        assert find_swaps(graph, state) == []

    def test_small_circle_skipped(self):
        """Circles with fewer than three nodes are never swapped."""
        nodes = [NodeSpec(i) for i in ("a", "b", "x", "y")]
        graph = build_clustered_graph(nodes, [EdgeSpec("a", "x"), EdgeSpec("b", "y")], [["a", "b"]])
        assert find_swaps(graph, LayoutState()) == []

    def test_perform_swap(self):
        """The pair trades places and is remembered for the next iteration."""
        graph, circle = crossed_pair_fixture()
        state = LayoutState(swapped_pairs={frozenset(("c2", "c3"))})
        perform_swaps(find_swaps(graph, state), state)
        assert ids(circle.on_circle_nodes) == ["c1", "c0", "c2", "c3"]
        assert state.swapped_pairs == {frozenset(("c0", "c1"))}
        assert swap_inversion_delta(circle, 0, 1) == 1

    def test_no_swaps_clears_memory(self):
        state = LayoutState(swapped_pairs={frozenset(("c0", "c1"))})
        perform_swaps([], state)
        assert state.swapped_pairs == set()


# ─── Convergence / Driver Tests ───────────────────────────────────────────────


class TestHasConverged:
    def test_small_displacement(self):
        assert has_converged(0.1, LayoutState(iteration=1), 30, LayoutConfig())

    def test_large_displacement_early(self):
        state = LayoutState(iteration=2, previous_total_displacement=10.0)
        assert not has_converged(10.0, state, 30, LayoutConfig())

    def test_stalled_late_in_step(self):
        """Past a third of the budget an unchanged displacement counts as converged."""
        state = LayoutState(iteration=20, previous_total_displacement=10.2)
        assert has_converged(10.0, state, 30, LayoutConfig())

    def test_still_moving_late_in_step(self):
        state = LayoutState(iteration=20, previous_total_displacement=20.0)
        assert not has_converged(10.0, state, 30, LayoutConfig())


class TestRefine:
    def test_zero_budget_leaves_positions(self):
        """With every budget at 0 nothing moves."""
        graph, _ = mirrored_fixture()
        before = {i: (n.x, n.y) for i, n in graph.nodes_by_id.items()}
        state = refine(graph, no_refinement(), LayoutState(), SpringPullForce())
        assert {i: (n.x, n.y) for i, n in graph.nodes_by_id.items()} == before
        assert state.total_iterations == 0
        assert state.step == Step.STEP_5

    def test_step3_flips(self):
        """One Step 3 iteration reverses the mirrored circle."""
        graph, circle = mirrored_fixture()
        refine(graph, no_refinement(step3_iterations=1), LayoutState(), SpringPullForce())
        assert ids(circle.on_circle_nodes) == ["c0", "c3", "c2", "c1"]

    def test_step4_swaps(self):
        """One Step 4 iteration swaps the crossed pair."""
        graph, circle = crossed_pair_fixture()
        circle.may_be_reversed = False
        refine(graph, no_refinement(step4_iterations=1), LayoutState(), SpringPullForce())
        assert ids(circle.on_circle_nodes) == ["c1", "c0", "c2", "c3"]

    def test_budgets_bound_iterations(self):
        graph, _ = mirrored_fixture()
        config = LayoutConfig(step3_iterations=3, step4_iterations=2, step5_iterations=4)
        state = refine(graph, config, LayoutState(), SpringPullForce())
        assert 3 <= state.total_iterations <= 9

    def test_isolated_node_converges_immediately(self):
        graph = build_clustered_graph([NodeSpec("u", x=3, y=4)], [], [])
        state = refine(graph, LayoutConfig(), LayoutState(), SpringPullForce())
        assert state.total_iterations == 3
        assert (graph.nodes_by_id["u"].x, graph.nodes_by_id["u"].y) == (3, 4)

    def test_no_bodies(self):
        state = refine(build_clustered_graph([], [], []), LayoutConfig(), LayoutState(), SpringPullForce())
        assert state.total_iterations == 0
