"""
===============================================================================
ORRERY SIM - Docking Aggregator Test Suite
===============================================================================
Tests for the two docking passes (center of gravity / inertia, then force
and torque redistribution), the read-only aggregate query, and docking and
undocking bodies at runtime.
===============================================================================
"""

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal

from core.precision import PreciseTransform, to_meters
from core.quaternion import Quaternion
from dynamics.docking import (
    aggregate_dock_cog,
    aggregate_dock_forces,
    aggregate_mass_props,
    child_world_transform,
    dock,
    run_docking,
    sync_dock_children,
    undock,
)
from dynamics.integrator import integrate
from dynamics.rigid_body import DockChild, MassProps, RigidBody


# =============================================================================
# Fixtures
# =============================================================================

def make_body(name, position_m=(0.0, 0.0, 0.0), mass=1.0, rotation=None, rel=None, parent=None):
    """Body with unit inertia; mass=None gives a massless dock-parent marker."""
    ptf = PreciseTransform.from_meters(position_m, rotation)
    props = MassProps.massless() if mass is None else MassProps.from_inertia(mass)
    body = RigidBody(name, ptf, props)
    if parent is not None:
        body.dock = DockChild(parent, PreciseTransform.from_meters(rel))
    return body


@pytest.fixture
def symmetric_pair():
    """Marker hub with two equal children at +/- 2 m along local X."""
    bodies = {
        "hub": make_body("hub", (100.0, 0.0, 0.0), mass=None),
        "left": make_body("left", mass=50.0, rel=(-2.0, 0.0, 0.0), parent="hub"),
        "right": make_body("right", mass=50.0, rel=(2.0, 0.0, 0.0), parent="hub"),
    }
    sync_dock_children(bodies)
    return bodies


@pytest.fixture
def lopsided_pair():
    """Marker hub yawed 90 degrees with a heavy and a light child."""
    bodies = {
        "hub": make_body("hub", (0.0, 0.0, 0.0), mass=None,
                         rotation=Quaternion.from_rotation_z(np.pi / 2)),
        "heavy": make_body("heavy", mass=30.0, rel=(0.0, 0.0, 0.0), parent="hub"),
        "light": make_body("light", mass=10.0, rel=(4.0, 0.0, 0.0), parent="hub"),
    }
    sync_dock_children(bodies)
    return bodies


# =============================================================================
# Test: Pass 1 (center of gravity and inertia)
# =============================================================================

class TestCenterOfGravity:
    """Mass aggregation."""

    def test_symmetric_pair_no_shift(self, symmetric_pair):
        before = symmetric_pair["hub"].transform.translation_mm.copy()
        assert aggregate_dock_cog(symmetric_pair) == 1
        hub = symmetric_pair["hub"]
        assert_array_equal(hub.transform.translation_mm, before)
        assert hub.mass == 100.0
        assert hub.dock_parent
        assert_array_equal(symmetric_pair["left"].dock.rel_tf.translation_mm, [-2000, 0, 0])

    def test_symmetric_pair_inertia(self, symmetric_pair):
        aggregate_dock_cog(symmetric_pair)
        inertia = symmetric_pair["hub"].mass_props.inertia
        # Each child: identity local inertia + 50 kg at 2 m off the X axis.
        assert_allclose(np.diag(inertia), [2.0, 2.0 + 400.0, 2.0 + 400.0])
        assert_allclose(symmetric_pair["hub"].mass_props.inertia_inv @ inertia, np.eye(3), atol=1e-12)

    def test_lopsided_shift(self, lopsided_pair):
        aggregate_dock_cog(lopsided_pair)
        hub = lopsided_pair["hub"]
        # cog = 10 * 4 / 40 = 1 m along local X, which is world +Y.
        assert_array_equal(hub.transform.translation_mm, [0, 1000, 0])
        assert_array_equal(lopsided_pair["heavy"].dock.rel_tf.translation_mm, [-1000, 0, 0])
        assert_array_equal(lopsided_pair["light"].dock.rel_tf.translation_mm, [3000, 0, 0])
        assert hub.mass == 40.0

    def test_world_poses_preserved(self, lopsided_pair):
        """Re-centering moves the hub, not the children."""
        before = {n: lopsided_pair[n].transform.translation_mm.copy() for n in ("heavy", "light")}
        aggregate_dock_cog(lopsided_pair)
        for name, pos in before.items():
            world = child_world_transform(lopsided_pair[name], lopsided_pair["hub"])
            assert np.max(np.abs(world.translation_mm - pos)) <= 1

    def test_second_pass_is_stable(self, lopsided_pair):
        aggregate_dock_cog(lopsided_pair)
        first = lopsided_pair["hub"].transform.translation_mm.copy()
        aggregate_dock_cog(lopsided_pair)
        assert_array_equal(lopsided_pair["hub"].transform.translation_mm, first)

    def test_missing_parent_skipped(self):
        bodies = {"orphan": make_body("orphan", mass=5.0, rel=(1.0, 0.0, 0.0), parent="gone")}
        assert aggregate_dock_cog(bodies) == 0
        assert_array_equal(bodies["orphan"].dock.rel_tf.translation_mm, [1000, 0, 0])

    def test_zero_mass_skipped(self, symmetric_pair):
        for name in ("left", "right"):
            symmetric_pair[name].mass_props.mass = 0.0
        assert aggregate_dock_cog(symmetric_pair) == 0
        assert symmetric_pair["hub"].mass == 0.0


# =============================================================================
# Test: Pass 2 (forces and torques)
# =============================================================================

class TestForceRedistribution:
    """Force aggregation."""

    def test_forces_summed(self, symmetric_pair):
        symmetric_pair["left"].apply_force([0.0, 3.0, 0.0])
        symmetric_pair["right"].apply_force([0.0, 3.0, 0.0])
        aggregate_dock_forces(symmetric_pair)
        hub = symmetric_pair["hub"]
        assert_allclose(hub.force, [0.0, 6.0, 0.0])
        # Equal forces at +/- r cancel in torque.
        assert_allclose(hub.torque, np.zeros(3), atol=1e-12)

    def test_couple_produces_torque(self, symmetric_pair):
        symmetric_pair["left"].apply_force([0.0, -1.0, 0.0])
        symmetric_pair["right"].apply_force([0.0, 1.0, 0.0])
        aggregate_dock_forces(symmetric_pair)
        hub = symmetric_pair["hub"]
        assert_allclose(hub.force, np.zeros(3), atol=1e-12)
        # (-2 x) x (-y) + (2 x) x y = 2z + 2z
        assert_allclose(hub.torque, [0.0, 0.0, 4.0], atol=1e-12)

    def test_lever_uses_parent_rotation(self, lopsided_pair):
        """Local +X offset on a hub yawed 90 degrees is a world +Y lever."""
        lopsided_pair["light"].apply_force([1.0, 0.0, 0.0])
        aggregate_dock_forces(lopsided_pair)
        # (4 y) x (1 x) = -4 z
        assert_allclose(lopsided_pair["hub"].torque, [0.0, 0.0, -4.0], atol=1e-12)

    def test_child_torque_added(self, symmetric_pair):
        symmetric_pair["left"].apply_torque([0.5, 0.0, 0.0])
        aggregate_dock_forces(symmetric_pair)
        assert_allclose(symmetric_pair["hub"].torque, [0.5, 0.0, 0.0])

    def test_children_zeroed(self, symmetric_pair):
        symmetric_pair["left"].apply_force([7.0, 0.0, 0.0])
        symmetric_pair["left"].apply_torque([0.0, 1.0, 0.0])
        assert aggregate_dock_forces(symmetric_pair) == 2
        assert_array_equal(symmetric_pair["left"].force, np.zeros(3))
        assert_array_equal(symmetric_pair["left"].torque, np.zeros(3))

    def test_assembly_accelerates_as_one(self, symmetric_pair):
        """Force on one child moves the whole 100 kg assembly."""
        symmetric_pair["left"].apply_force([0.0, 0.0, 100.0])
        symmetric_pair["right"].apply_force([0.0, 0.0, 100.0])
        run_docking(symmetric_pair)
        symmetric_pair["hub"].prev_acceleration = np.array([0.0, 0.0, 2.0])
        integrate(symmetric_pair.values(), 0.5)
        sync_dock_children(symmetric_pair)
        assert_allclose(symmetric_pair["hub"].velocity, [0.0, 0.0, 1.0])
        assert_allclose(symmetric_pair["right"].velocity, [0.0, 0.0, 1.0])


# =============================================================================
# Test: Queries and runtime docking
# =============================================================================

class TestDockManagement:
    """dock / undock / aggregate queries."""

    def test_aggregate_mass_props_read_only(self, lopsided_pair):
        props = aggregate_mass_props("hub", lopsided_pair)
        assert props.mass == 40.0
        assert lopsided_pair["hub"].mass == 0.0
        assert_array_equal(lopsided_pair["hub"].transform.translation_mm, [0, 0, 0])

    def test_aggregate_mass_props_not_found(self, lopsided_pair):
        assert aggregate_mass_props("nobody", lopsided_pair) is None
        assert aggregate_mass_props("light", lopsided_pair) is None

    def test_dock_keeps_world_pose(self):
        hub = make_body("hub", (10.0, 0.0, 0.0), rotation=Quaternion.from_rotation_z(np.pi / 2))
        pod = make_body("pod", (10.0, 3.0, 0.0), mass=5.0)
        bodies = {"hub": hub, "pod": pod}
        dock(pod, hub, bodies=bodies)
        assert hub.dock_parent
        assert_array_equal(pod.dock.rel_tf.translation_mm, [3000, 0, 0])
        world = child_world_transform(pod, hub)
        assert_array_equal(world.translation_mm, [10000, 3000, 0])
        assert world.rotation == pod.transform.rotation

    def test_dock_errors(self):
        a = make_body("a")
        b = make_body("b")
        bodies = {"a": a, "b": b}
        with pytest.raises(ValueError):
            dock(a, a)
        dock(b, a, bodies=bodies)
        with pytest.raises(ValueError):
            dock(b, a, bodies=bodies)
        with pytest.raises(ValueError, match="cycle"):
            dock(a, b, bodies=bodies)

    def test_undock_inherits_motion(self):
        hub = make_body("hub", mass=10.0)
        hub.velocity = np.array([1.0, 0.0, 0.0])
        hub.angular_velocity = np.array([0.0, 0.0, 0.5])
        pod = make_body("pod", mass=2.0)
        bodies = {"hub": hub, "pod": pod}
        dock(pod, hub, rel_tf=PreciseTransform.from_meters([2.0, 0.0, 0.0]), bodies=bodies)
        assert hub.dock_parent

        undock(pod, bodies)

        assert pod.dock is None
        assert not hub.dock_parent
        assert hub.mass == 10.0
        assert_array_equal(pod.transform.translation_mm, [2000, 0, 0])
        # v = v_hub + w x r = x + (0.5 z) x (2 x) = x + y
        assert_allclose(pod.velocity, [1.0, 1.0, 0.0])
        assert_allclose(pod.angular_velocity, [0.0, 0.0, 0.5])

    def test_undock_not_docked_is_noop(self):
        pod = make_body("pod")
        undock(pod, {"pod": pod})
        assert pod.dock is None

    def test_sync_nested(self):
        """Grandchildren follow their parent after it follows the root."""
        bodies = {
            "grandchild": make_body("grandchild", rel=(0.0, 1.0, 0.0), parent="child"),
            "child": make_body("child", rel=(1.0, 0.0, 0.0), parent="root"),
            "root": make_body("root", (5.0, 0.0, 0.0)),
        }
        assert sync_dock_children(bodies) == 2
        assert_array_equal(bodies["child"].transform.translation_mm, [6000, 0, 0])
        assert_array_equal(bodies["grandchild"].transform.translation_mm, [6000, 1000, 0])
        assert to_meters(bodies["grandchild"].transform.translation_mm)[1] == 1.0


# =============================================================================
# Test: Parent's own mass
# =============================================================================

@pytest.fixture
def ship_and_pod():
    """1000 kg ship at the origin with a 10 kg pod docked 10 m along X."""
    ship = make_body("ship", mass=1000.0)
    pod = make_body("pod", (10.0, 0.0, 0.0), mass=10.0)
    bodies = {"ship": ship, "pod": pod}
    dock(pod, ship, bodies=bodies)
    return bodies


class TestParentOwnMass:
    """A massive dock parent is part of its own assembly."""

    def test_query_includes_parent(self, ship_and_pod):
        props = aggregate_mass_props("ship", ship_and_pod)
        assert props.mass == 1010.0
        assert ship_and_pod["ship"].mass == 1000.0

    def test_assembly_mass_and_cog(self, ship_and_pod):
        run_docking(ship_and_pod)
        ship = ship_and_pod["ship"]
        assert ship.mass == 1010.0
        assert ship.own_mass == 1000.0
        # cog = 10 * 10 / 1010 m = 99.0 mm
        assert_array_equal(ship.transform.translation_mm, [99, 0, 0])
        assert_array_equal(ship.core.rel_tf.translation_mm, [-99, 0, 0])
        assert_array_equal(ship_and_pod["pod"].dock.rel_tf.translation_mm, [9901, 0, 0])

    def test_assembly_inertia(self, ship_and_pod):
        run_docking(ship_and_pod)
        # Two unit inertias plus the reduced mass at 10 m: 1000 * 10 / 1010 * 100.
        reduced = 1000.0 * 10.0 / 1010.0 * 100.0
        inertia = ship_and_pod["ship"].mass_props.inertia
        assert_allclose(np.diag(inertia), [2.0, 2.0 + reduced, 2.0 + reduced], rtol=1e-12)

    def test_repeated_ticks_keep_own_mass(self, ship_and_pod):
        for _ in range(3):
            run_docking(ship_and_pod)
        ship = ship_and_pod["ship"]
        assert ship.mass == 1010.0
        assert ship.own_mass == 1000.0
        assert_array_equal(ship.transform.translation_mm, [99, 0, 0])

    def test_own_mass_restored_on_last_undock(self, ship_and_pod):
        run_docking(ship_and_pod)
        undock(ship_and_pod["pod"], ship_and_pod)
        ship = ship_and_pod["ship"]
        assert ship.core is None
        assert ship.mass == 1000.0
        assert_array_equal(ship.mass_props.inertia, np.eye(3))
        assert_array_equal(ship.transform.translation_mm, [0, 0, 0])
        assert_array_equal(ship_and_pod["pod"].transform.translation_mm, [10000, 0, 0])

    def test_core_kept_while_children_remain(self, ship_and_pod):
        other = make_body("other", (-10.0, 0.0, 0.0), mass=10.0)
        ship_and_pod["other"] = other
        dock(other, ship_and_pod["ship"], bodies=ship_and_pod)
        run_docking(ship_and_pod)
        assert ship_and_pod["ship"].mass == 1020.0

        undock(ship_and_pod["pod"], ship_and_pod)
        assert ship_and_pod["ship"].dock_parent
        assert ship_and_pod["ship"].own_mass == 1000.0


# =============================================================================
# Test: Nested assemblies
# =============================================================================

@pytest.fixture
def three_level():
    """Marker root at 5 m, a 2 kg child 1 m along X and a 3 kg grandchild 1 m along Y of it."""
    bodies = {
        "grandchild": make_body("grandchild", mass=3.0, rel=(0.0, 1.0, 0.0), parent="child"),
        "child": make_body("child", mass=2.0, rel=(1.0, 0.0, 0.0), parent="root"),
        "root": make_body("root", (5.0, 0.0, 0.0), mass=None),
    }
    sync_dock_children(bodies)
    return bodies


class TestNestedAssembly:
    """Dock parents that are themselves docked."""

    def test_world_poses_preserved(self, three_level):
        run_docking(three_level)
        sync_dock_children(three_level)
        child = three_level["child"]
        assert_array_equal(three_level["grandchild"].transform.translation_mm, [6000, 1000, 0])
        # The child's own body stays put; its frame moved to the sub-assembly cog.
        assert_array_equal(child.transform.compose(child.core.rel_tf).translation_mm, [6000, 0, 0])
        assert_array_equal(child.transform.translation_mm, [6000, 600, 0])
        assert_array_equal(three_level["root"].transform.translation_mm, [6000, 600, 0])

    def test_masses_roll_up(self, three_level):
        run_docking(three_level)
        child, root = three_level["child"], three_level["root"]
        assert child.mass == 5.0
        assert child.own_mass == 2.0
        assert root.mass == 5.0
        assert root.own_mass == 0.0
        assert_array_equal(child.dock.rel_tf.translation_mm, [0, 0, 0])
        # 2 kg at 0.6 m and 3 kg at 0.4 m off the Y axis, on top of two unit inertias.
        assert_allclose(np.diag(root.mass_props.inertia), [3.2, 2.0, 3.2], rtol=1e-12)

    def test_grandchild_force_reaches_root(self, three_level):
        three_level["grandchild"].apply_force([0.0, 0.0, 10.0])
        run_docking(three_level)
        root = three_level["root"]
        assert_allclose(root.force, [0.0, 0.0, 10.0])
        # Grandchild sits 0.4 m along +Y of the assembly cog.
        assert_allclose(root.torque, [4.0, 0.0, 0.0], atol=1e-12)
        for name in ("child", "grandchild"):
            assert_array_equal(three_level[name].force, np.zeros(3))
            assert_array_equal(three_level[name].torque, np.zeros(3))

    def test_step_moves_whole_assembly(self, three_level):
        three_level["grandchild"].apply_force([0.0, 0.0, 10.0])
        run_docking(three_level)
        assert integrate(three_level.values(), 0.01) == 1
        sync_dock_children(three_level)

        root = three_level["root"]
        # a = 10 N / 5 kg, half of it applied over the first step.
        assert_allclose(root.velocity, [0.0, 0.0, 0.01], atol=1e-15)
        assert_allclose(root.angular_velocity, [4.0 / 3.2 * 0.01, 0.0, 0.0], rtol=1e-12, atol=1e-15)

        grandchild = three_level["grandchild"]
        lever = root.transform.rotation.rotate_vector([0.0, 0.4, 0.0])
        assert_allclose(grandchild.velocity,
                        root.velocity + np.cross(root.angular_velocity, lever), atol=1e-12)
        assert np.max(np.abs(grandchild.transform.translation_mm - [6000, 1000, 0])) <= 1
