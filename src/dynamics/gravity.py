"""
===============================================================================
ORRERY SIM - Gravity and Sphere of Influence
===============================================================================
Newtonian attraction of every rigid body towards every celestial body:

    F_i = sum_k  G * M_k * m_i / |r_ik|^2 * r_ik / |r_ik|,   r_ik = p_k - p_i

Separations are taken in integer millimeters before conversion, so the
force on a craft next to a planet 1 AU from the origin is as accurate as one
next to the origin. The pass is vectorised over the full (objects x bodies)
grid.

The body exerting the largest force on an object is its sphere of
influence. The relation is kept in a SphereOfInfluenceTable that is only
written when an object's dominant body actually changes.

The pass is split in two so no object is written while the grid is read:

    result = compute_gravity(objects, celestials, orrery)   # read-only
    commit_gravity(result, objects, soi_table)              # writes
===============================================================================
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from core.constants import GRAVITATIONAL_CONSTANT, MILLIMETERS_PER_METER
from dynamics.rigid_body import Celestial, RigidBody
from orrery.solver import Orrery

logger = logging.getLogger(__name__)


# =============================================================================
# SPHERE-OF-INFLUENCE TABLE
# =============================================================================

class SphereOfInfluenceTable:
    """
    Object name -> dominant celestial body name, with the reverse lookup.

    An object is in at most one sphere of influence at a time.
    """

    def __init__(self) -> None:
        self._within: Dict[str, str] = {}

    def get(self, obj: str) -> Optional[str]:
        """Body whose sphere of influence *obj* is in, or None."""
        return self._within.get(obj)

    def set(self, obj: str, body: Optional[str]) -> bool:
        """
        Record *obj* as within *body* (None removes the entry).

        Returns True if the relation changed.
        """
        current = self._within.get(obj)
        if current == body:
            return False
        if body is None:
            del self._within[obj]
        else:
            self._within[obj] = body
        logger.debug("Sphere of influence of %s: %s -> %s", obj, current, body)
        return True

    def remove(self, obj: str) -> None:
        self._within.pop(obj, None)

    def objects_near(self, body: str) -> List[str]:
        """Every object currently within *body*'s sphere of influence."""
        return [obj for obj, owner in self._within.items() if owner == body]

    def items(self) -> Iterator[Tuple[str, str]]:
        return iter(self._within.items())

    def __len__(self) -> int:
        return len(self._within)

    def __contains__(self, obj: object) -> bool:
        return obj in self._within


# =============================================================================
# GRAVITY PASS
# =============================================================================

@dataclass
class GravityResult:
    """
    Output of the read-only gravity phase.

    Attributes
    ----------
    names : list of str
        Object names, row order of *forces*.
    forces : np.ndarray
        (N, 3) net gravitational force per object (N, world).
    dominant : list of str or None
        Body exerting the largest force on each object; None when no body
        pulls on it.
    """
    names: List[str]
    forces: np.ndarray
    dominant: List[Optional[str]]


def compute_gravity(
    objects: Sequence[RigidBody],
    celestials: Sequence[Celestial],
    orrery: Orrery,
) -> GravityResult:
    """
    Gravitational force on every object from every celestial body.

    Celestials without a matching orrery body are treated as massless.
    An object sitting exactly on a body's center receives nothing from that
    body.
    """
    n_obj = len(objects)
    names = [obj.name for obj in objects]
    if n_obj == 0 or not celestials:
        return GravityResult(names, np.zeros((n_obj, 3)), [None] * n_obj)

    obj_mm = np.array([obj.transform.translation_mm for obj in objects], dtype=np.int64)
    body_mm = np.array([cel.transform.translation_mm for cel in celestials], dtype=np.int64)
    # Dock parents attract with their own mass; their children are objects too.
    obj_mass = np.array([obj.own_mass for obj in objects], dtype=np.float64)

    body_mass = np.zeros(len(celestials))
    for k, cel in enumerate(celestials):
        body = orrery.get_body(cel.name)
        if body is None:
            logger.debug("Celestial %s has no orrery entry; ignored by gravity", cel.name)
        else:
            body_mass[k] = body.mass

    # (N, K, 3) separations, object -> body
    delta_m = (body_mm[np.newaxis, :, :] - obj_mm[:, np.newaxis, :]).astype(np.float64)
    delta_m /= MILLIMETERS_PER_METER

    r2 = np.einsum("nki,nki->nk", delta_m, delta_m)
    coincident = r2 == 0.0
    safe_r2 = np.where(coincident, 1.0, r2)

    # Field strength G M / r^2 ranks bodies the same as force for any m > 0,
    # and still ranks them for a massless dock-parent marker.
    pull = GRAVITATIONAL_CONSTANT * body_mass[np.newaxis, :] / safe_r2
    pull[coincident] = 0.0
    magnitude = pull * obj_mass[:, np.newaxis]

    unit = delta_m / np.sqrt(safe_r2)[:, :, np.newaxis]
    forces = np.einsum("nk,nki->ni", magnitude, unit)

    best = np.argmax(pull, axis=1)
    dominant = [
        celestials[k].name if pull[i, k] > 0.0 else None
        for i, k in enumerate(best)
    ]
    return GravityResult(names, forces, dominant)


def commit_gravity(
    result: GravityResult,
    objects: Mapping[str, RigidBody],
    soi: SphereOfInfluenceTable,
) -> int:
    """
    Write a computed gravity pass back to the objects.

    Forces are added to each object's accumulator. A dock parent's force
    acts on its own body, which sits off the assembly's center of gravity,
    so it also contributes a torque. The sphere-of-influence table is
    touched only where the dominant body changed.

    Returns
    -------
    int
        Number of sphere-of-influence transitions.
    """
    transitions = 0
    for name, force, dominant in zip(result.names, result.forces, result.dominant):
        obj = objects.get(name)
        if obj is None:
            continue
        if obj.core is not None:
            obj.apply_force(force, obj.transform.compose(obj.core.rel_tf).translation_mm)
        else:
            obj.force += force
        if soi.set(name, dominant):
            transitions += 1
            logger.info("%s now within sphere of influence of %s", name, dominant or "nothing")
    return transitions


def apply_gravity(
    objects: Mapping[str, RigidBody],
    celestials: Sequence[Celestial],
    orrery: Orrery,
    soi: SphereOfInfluenceTable,
) -> int:
    """Compute and commit the gravity pass; returns SOI transitions."""
    result = compute_gravity(list(objects.values()), celestials, orrery)
    return commit_gravity(result, objects, soi)
