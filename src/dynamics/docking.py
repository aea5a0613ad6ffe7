"""
===============================================================================
ORRERY SIM - Docking Aggregator
===============================================================================
Rigidly attached bodies (docked children) are simulated as one assembly: the
parent is the only body the integrator moves, and each child rides along at
a fixed pose relative to the parent's local frame.

Two passes run every tick, after external forces and before integration:

    Pass 1, mass aggregation (aggregate_dock_cog)
        cog   = sum(m_c r_c) / sum(m_c)                   parent-local, m
        p_parent += R_parent cog                          world shift, mm
        r_c      -= cog                                   part offsets, mm
        I     = sum(R_c I_c R_c^T + m_c (|r_c|^2 E - r_c r_c^T))
        parent mass props <- (sum(m_c), I, I^-1)

    Pass 2, force aggregation (aggregate_dock_forces)
        F_parent   += F_c
        tau_parent += tau_c + (R_parent r_c) x F_c
        F_c, tau_c <- 0

The sums run over the children and the parent's own body (its DockCore),
which is massless for a pure marker parent. Pass 1 gathers every offset
before moving anything, so all parts of one assembly are re-centred on the
same center of gravity. Both passes walk the dock tree deepest level first,
so an assembly docked to another one enters it with its full mass and
load; there is no limit on the depth.

References
----------
    [1] Goldstein, "Classical Mechanics", 3rd ed., Sec. 5.3 (parallel axis).
===============================================================================
"""

import logging
from collections import defaultdict
from typing import Dict, List, Mapping, Optional, Tuple

import numpy as np

from core.precision import (
    PreciseTransform,
    saturating_add,
    saturating_sub,
    to_meters,
    to_millimeters,
)
from dynamics.rigid_body import DockChild, DockCore, MassProps, RigidBody

logger = logging.getLogger(__name__)


# =============================================================================
# HELPERS
# =============================================================================

def _children_by_parent(bodies: Mapping[str, RigidBody]) -> Dict[str, List[RigidBody]]:
    groups: Dict[str, List[RigidBody]] = defaultdict(list)
    for body in bodies.values():
        if body.dock is not None:
            groups[body.dock.parent].append(body)
    return groups


def _assembly_parts(parent: RigidBody,
                    children: List[RigidBody]) -> List[Tuple[MassProps, PreciseTransform]]:
    """Mass properties and parent-frame pose of every part of an assembly."""
    parts = [(child.mass_props, child.dock.rel_tf) for child in children]
    if parent.core is not None:
        parts.append((parent.core.mass_props, parent.core.rel_tf))
    else:
        parts.append((parent.mass_props, PreciseTransform()))
    return parts


def _assembly_mass_props(
    parts: List[Tuple[MassProps, PreciseTransform]],
) -> Optional[Tuple[float, np.ndarray, np.ndarray]]:
    """
    Total mass, center of gravity (parent-local, m) and inertia about it.

    Returns None when the parts carry no mass.
    """
    masses = np.array([props.mass for props, _ in parts], dtype=np.float64)
    total = masses.sum()
    if total <= 0.0:
        return None

    offsets = np.array([to_meters(tf.translation_mm) for _, tf in parts])
    cog = masses @ offsets / total

    inertia = np.zeros((3, 3))
    for (props, tf), mass, offset in zip(parts, masses, offsets):
        r = offset - cog
        rot = tf.rotation.to_dcm()
        inertia += rot @ props.inertia @ rot.T
        inertia += mass * (np.dot(r, r) * np.eye(3) - np.outer(r, r))

    return total, cog, inertia


def _invert_inertia(inertia: np.ndarray, parent: str) -> np.ndarray:
    try:
        return np.linalg.inv(inertia)
    except np.linalg.LinAlgError:
        logger.warning("Singular assembly inertia for %s; using pseudo-inverse", parent)
        return np.linalg.pinv(inertia)


def _dock_depth(body: RigidBody, bodies: Mapping[str, RigidBody]) -> int:
    depth = 0
    while body.dock is not None and body.dock.parent in bodies:
        body = bodies[body.dock.parent]
        depth += 1
    return depth


def _ensure_core(parent: RigidBody) -> None:
    """Set the parent's own mass properties aside before it takes an assembly."""
    if parent.core is None:
        parent.core = DockCore(parent.mass_props.copy())


def _release_core(parent: RigidBody) -> None:
    """
    Return a parent whose last child left to its own mass properties.

    The parent's origin moves back onto its own body, which picks up the
    velocity of that point of the former assembly.
    """
    core = parent.core
    parent.core = None
    lever = parent.transform.rotation.rotate_vector(to_meters(core.rel_tf.translation_mm))
    parent.velocity = parent.velocity + np.cross(parent.angular_velocity, lever)
    parent.transform = parent.transform.compose(core.rel_tf)
    if parent.dock is not None:
        parent.dock.rel_tf = parent.dock.rel_tf.compose(core.rel_tf)
    parent.mass_props = core.mass_props
    parent.prev_acceleration[:] = 0.0


# =============================================================================
# PASS 1: MASS AGGREGATION
# =============================================================================

def aggregate_dock_cog(bodies: Mapping[str, RigidBody]) -> int:
    """
    Re-centre every dock parent on its assembly's center of gravity and
    give it the assembly's mass properties.

    The assembly is the parent's own mass plus every child. Parents are
    processed deepest first, so a child that is itself a dock parent
    contributes its whole sub-assembly. A docked parent is re-centred
    through its offset in its own parent's frame.

    Parents that no longer exist are skipped, as are massless assemblies.

    Returns
    -------
    int
        Number of parents updated.
    """
    groups = _children_by_parent(bodies)
    for parent_name in groups:
        if parent_name not in bodies:
            logger.debug("Dock parent %s not found; %d children skipped",
                         parent_name, len(groups[parent_name]))

    order = sorted((name for name in groups if name in bodies),
                   key=lambda name: _dock_depth(bodies[name], bodies), reverse=True)

    updated = 0
    for parent_name in order:
        parent = bodies[parent_name]
        _ensure_core(parent)
        parts = _assembly_parts(parent, groups[parent_name])
        props = _assembly_mass_props(parts)
        if props is None:
            logger.debug("Dock assembly %s has zero mass; skipped", parent_name)
            continue
        total, cog, inertia = props

        cog_mm = to_millimeters(cog)
        shift_world = parent.transform.rotation.rotate_vector(cog)
        parent.transform.translation_mm = saturating_add(parent.transform.translation_mm,
                                                         to_millimeters(shift_world))
        if parent.dock is not None:
            rel = parent.dock.rel_tf
            rel.translation_mm = saturating_add(rel.translation_mm,
                                                to_millimeters(rel.rotation.rotate_vector(cog)))
        for _, tf in parts:
            tf.translation_mm = saturating_sub(tf.translation_mm, cog_mm)

        parent.mass_props = MassProps(total, inertia, _invert_inertia(inertia, parent_name))
        updated += 1
    return updated


# =============================================================================
# PASS 2: FORCE AGGREGATION
# =============================================================================

def aggregate_dock_forces(bodies: Mapping[str, RigidBody]) -> int:
    """
    Move every docked child's force and torque onto its parent.

    The force acting at the child's offset adds the torque
    (R_parent r_c) x F_c. Children are left with empty accumulators.
    The deepest children hand over first, so loads on a nested assembly
    reach its root in the same tick.

    Returns
    -------
    int
        Number of children whose loads were transferred.
    """
    docked = [body for body in bodies.values() if body.dock is not None]
    docked.sort(key=lambda body: _dock_depth(body, bodies), reverse=True)

    transferred = 0
    for body in docked:
        parent = bodies.get(body.dock.parent)
        if parent is None:
            continue

        lever = parent.transform.rotation.rotate_vector(to_meters(body.dock.rel_tf.translation_mm))
        parent.force += body.force
        parent.torque += body.torque + np.cross(lever, body.force)
        body.clear_accumulators()
        transferred += 1
    return transferred


def run_docking(bodies: Mapping[str, RigidBody]) -> None:
    """Both aggregation passes, in order."""
    aggregate_dock_cog(bodies)
    aggregate_dock_forces(bodies)


# =============================================================================
# QUERIES AND DOCK MANAGEMENT
# =============================================================================

def aggregate_mass_props(parent_name: str,
                         bodies: Mapping[str, RigidBody]) -> Optional[MassProps]:
    """
    Mass properties the assembly under *parent_name* would receive, about
    its center of gravity. Nothing is modified.

    Returns None if the parent is unknown, has no children, or the
    assembly is massless.
    """
    if parent_name not in bodies:
        return None
    children = _children_by_parent(bodies).get(parent_name)
    if not children:
        return None
    props = _assembly_mass_props(_assembly_parts(bodies[parent_name], children))
    if props is None:
        return None
    total, _, inertia = props
    return MassProps(total, inertia, _invert_inertia(inertia, parent_name))


def child_world_transform(child: RigidBody, parent: RigidBody) -> PreciseTransform:
    """World pose of a docked child given its parent."""
    return parent.transform.compose(child.dock.rel_tf)


def dock(child: RigidBody, parent: RigidBody, rel_tf: PreciseTransform = None,
         bodies: Mapping[str, RigidBody] = None) -> None:
    """
    Attach *child* to *parent*.

    Without *rel_tf* the child's current world pose is kept, expressed in
    the parent's local frame. Passing *bodies* enables the check against
    dock cycles through intermediate parents. The parent's own mass
    properties are kept aside until its last child leaves.

    Raises
    ------
    ValueError
        If the child is already docked, is the parent itself, or the dock
        would close a cycle.
    """
    if child is parent or child.name == parent.name:
        raise ValueError(f"cannot dock {child.name} to itself")
    if child.dock is not None:
        raise ValueError(f"{child.name} is already docked to {child.dock.parent}")

    ancestor = parent
    while ancestor.dock is not None:
        if ancestor.dock.parent == child.name:
            raise ValueError(f"docking {child.name} to {parent.name} would form a cycle")
        if bodies is None or ancestor.dock.parent not in bodies:
            break
        ancestor = bodies[ancestor.dock.parent]

    if rel_tf is None:
        inv_rot = parent.transform.rotation.conjugate()
        offset = to_meters(saturating_sub(child.transform.translation_mm,
                                          parent.transform.translation_mm))
        rel_tf = PreciseTransform(to_millimeters(inv_rot.rotate_vector(offset)),
                                  inv_rot * child.transform.rotation)

    child.dock = DockChild(parent.name, rel_tf.copy())
    child.prev_acceleration[:] = 0.0
    _ensure_core(parent)
    logger.info("Docked %s to %s", child.name, parent.name)


def undock(child: RigidBody, bodies: Mapping[str, RigidBody]) -> None:
    """
    Detach *child* from its parent.

    The child keeps its world pose and leaves with the velocity of the
    attachment point, v_parent + w_parent x (R_parent r_c), and the
    parent's angular velocity. When the last child leaves, the parent gets
    its own mass properties back. Does nothing if *child* is not docked.
    """
    if child.dock is None:
        return

    parent_name = child.dock.parent
    parent = bodies.get(parent_name)
    if parent is not None:
        child.transform = child_world_transform(child, parent)
        lever = parent.transform.rotation.rotate_vector(to_meters(child.dock.rel_tf.translation_mm))
        child.velocity = parent.velocity + np.cross(parent.angular_velocity, lever)
        child.angular_velocity = parent.angular_velocity.copy()
    child.prev_acceleration[:] = 0.0
    child.dock = None

    if parent is not None and parent.core is not None and not any(
        b.dock is not None and b.dock.parent == parent_name for b in bodies.values()
    ):
        _release_core(parent)
    logger.info("Undocked %s from %s", child.name, parent_name)


def sync_dock_children(bodies: Mapping[str, RigidBody]) -> int:
    """
    Place every docked child at its parent's pose composed with its offset,
    moving with the attachment point's velocity.

    Nested assemblies are resolved outermost parent first.

    Returns
    -------
    int
        Number of children placed.
    """
    docked = [body for body in bodies.values() if body.dock is not None]
    docked.sort(key=lambda body: _dock_depth(body, bodies))

    placed = 0
    for child in docked:
        parent = bodies.get(child.dock.parent)
        if parent is None:
            continue
        child.transform = child_world_transform(child, parent)
        lever = parent.transform.rotation.rotate_vector(to_meters(child.dock.rel_tf.translation_mm))
        child.velocity = parent.velocity + np.cross(parent.angular_velocity, lever)
        child.angular_velocity = parent.angular_velocity.copy()
        placed += 1
    return placed
