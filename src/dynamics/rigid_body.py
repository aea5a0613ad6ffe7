"""
===============================================================================
ORRERY SIM - Rigid-Body State
===============================================================================
Per-object physical state consumed by the gravity, docking and integration
passes:

    - MassProps   : mass, inertia tensor and its cached inverse (local frame)
    - RigidBody   : pose, velocities and per-tick force/torque accumulators
    - DockChild   : marks a body as rigidly attached to a parent body
    - DockCore    : a dock parent's own mass, kept apart from the assembly's
    - Celestial   : a precise transform driven by the orrery, not integrated

Force and torque are accumulators: any number of contributors add to them
during a tick, the integrator consumes them and then clears them. They are
expressed in world axes (N, N*m).
===============================================================================
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from core.precision import PreciseTransform, to_meters, saturating_sub

logger = logging.getLogger(__name__)


def _zeros3() -> np.ndarray:
    return np.zeros(3)


@dataclass
class MassProps:
    """
    Mass properties in the body's local frame.

    Attributes
    ----------
    mass : float
        Mass (kg); positive except for a massless dock-parent marker.
    inertia : np.ndarray
        3x3 inertia tensor (kg m^2).
    inertia_inv : np.ndarray
        Cached inverse of *inertia*.
    """
    mass: float = 1.0
    inertia: np.ndarray = field(default_factory=lambda: np.eye(3))
    inertia_inv: np.ndarray = field(default_factory=lambda: np.eye(3))

    @classmethod
    def from_inertia(cls, mass: float, inertia=None) -> 'MassProps':
        """
        Build mass properties, caching the inverse inertia.

        Raises
        ------
        ValueError
            If *mass* is not positive or the inertia tensor is singular.
        """
        if not mass > 0.0:
            raise ValueError(f"mass must be positive, got {mass}")
        inertia = np.eye(3) if inertia is None else np.asarray(inertia, dtype=np.float64)
        if inertia.shape != (3, 3):
            raise ValueError(f"inertia must be 3x3, got shape {inertia.shape}")
        try:
            inertia_inv = np.linalg.inv(inertia)
        except np.linalg.LinAlgError:
            raise ValueError("inertia tensor is singular") from None
        return cls(float(mass), inertia.copy(), inertia_inv)

    @classmethod
    def solid_sphere(cls, mass: float, radius: float) -> 'MassProps':
        """Uniform sphere: I = 2/5 m r^2 on every axis."""
        moment = 0.4 * mass * radius * radius
        return cls.from_inertia(mass, np.eye(3) * moment)

    @classmethod
    def massless(cls) -> 'MassProps':
        """Zero mass and inertia, for pure dock-parent markers."""
        return cls(0.0, np.zeros((3, 3)), np.zeros((3, 3)))

    def copy(self) -> 'MassProps':
        return MassProps(self.mass, self.inertia.copy(), self.inertia_inv.copy())


@dataclass
class DockChild:
    """
    Attachment of a body to a parent body.

    The child's pose is stored relative to the parent's local frame; the
    parent's world pose composed with *rel_tf* is the child's world pose.
    """
    parent: str
    rel_tf: PreciseTransform = field(default_factory=PreciseTransform)


@dataclass
class DockCore:
    """
    A dock parent's own mass properties while it carries an assembly.

    *rel_tf* locates the parent's own body in the parent frame, which is
    re-centred on the assembly's center of gravity every tick.
    """
    mass_props: MassProps
    rel_tf: PreciseTransform = field(default_factory=PreciseTransform)


@dataclass
class RigidBody:
    """
    A simulated rigid body.

    Attributes
    ----------
    name : str
        Unique object name.
    transform : PreciseTransform
        World pose.
    mass_props : MassProps
    velocity : np.ndarray
        Linear velocity (m/s, world).
    angular_velocity : np.ndarray
        Angular velocity (rad/s, world).
    force, torque : np.ndarray
        Accumulators for the current tick (world).
    prev_acceleration : np.ndarray
        Acceleration at the end of the previous step, used by velocity Verlet.
    dock : DockChild or None
        Present while the body is attached to a parent.
    core : DockCore or None
        The body's own mass properties while at least one child is
        attached; *mass_props* then describes the whole assembly.
    """
    name: str
    transform: PreciseTransform = field(default_factory=PreciseTransform)
    mass_props: MassProps = field(default_factory=MassProps)
    velocity: np.ndarray = field(default_factory=_zeros3)
    angular_velocity: np.ndarray = field(default_factory=_zeros3)
    force: np.ndarray = field(default_factory=_zeros3)
    torque: np.ndarray = field(default_factory=_zeros3)
    prev_acceleration: np.ndarray = field(default_factory=_zeros3)
    dock: Optional[DockChild] = None
    core: Optional[DockCore] = None

    def __post_init__(self):
        for attr in ("velocity", "angular_velocity", "force", "torque", "prev_acceleration"):
            setattr(self, attr, np.asarray(getattr(self, attr), dtype=np.float64).reshape(3).copy())

    @property
    def mass(self) -> float:
        return self.mass_props.mass

    @property
    def own_mass(self) -> float:
        """Mass of the body itself, excluding any docked children."""
        if self.core is not None:
            return self.core.mass_props.mass
        return self.mass_props.mass

    @property
    def is_docked(self) -> bool:
        return self.dock is not None

    @property
    def dock_parent(self) -> bool:
        """True while at least one child is attached to this body."""
        return self.core is not None

    def apply_force(self, force, point_mm=None) -> None:
        """
        Add a world-frame force, optionally applied at a world point.

        A force applied away from the body origin also adds the torque
        r x F, with r the lever arm from the origin to *point_mm*.
        """
        force = np.asarray(force, dtype=np.float64)
        self.force += force
        if point_mm is not None:
            lever = to_meters(saturating_sub(point_mm, self.transform.translation_mm))
            self.torque += np.cross(lever, force)

    def apply_torque(self, torque) -> None:
        self.torque += np.asarray(torque, dtype=np.float64)

    def clear_accumulators(self) -> None:
        self.force[:] = 0.0
        self.torque[:] = 0.0


@dataclass
class Celestial:
    """A body of the star system placed each tick from the orrery."""
    name: str
    transform: PreciseTransform = field(default_factory=PreciseTransform)
