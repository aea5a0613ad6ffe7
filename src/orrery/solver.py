"""
===============================================================================
ORRERY SIM - Hierarchical Keplerian Orbit Solver
===============================================================================
Analytic positions, velocities and orientations of every celestial body in a
star system at an arbitrary epoch. Nothing is integrated over time: each query
is a pure function of the body table and the epoch, so the solver can be
asked about any instant in any order.

For a body on orbit elements (a, T, e, i, Omega, omega, M0, t0) around its
parent:

    n  = 2*pi / T                              mean motion
    M  = M0 + n * (t - t0)                     mean anomaly
    E - e*sin(E) = M                           Kepler's equation (Newton)
    nu = atan2(sqrt(1 - e^2) * sin E, cos E - e)
    r  = a * (1 - e*cos E)

The orbital-plane position [r cos nu, r sin nu, 0] is rotated into the
inertial frame by Rz(Omega) * Rx(i) * Rz(omega) and added to the parent's
position. Positions are accumulated in integer millimeters down the parent
chain, so a moon's position is exact relative to its planet no matter how far
the planet is from the star.

Epochs
------
Epochs are float seconds on a continuous timeline where MJD day d begins at
d * 86400 s. Orbit and rotation reference epochs in the body table are MJDs.

References
----------
    [1] Vallado, "Fundamentals of Astrodynamics and Applications", 4th ed.
    [2] Curtis, "Orbital Mechanics for Engineering Students", 4th ed.
===============================================================================
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, Iterable, Iterator, List, Optional

import numpy as np

from core.constants import (
    GRAVITATIONAL_CONSTANT,
    PI,
    TWO_PI,
    SECONDS_PER_DAY,
    KEPLER_ITERATIONS,
    KEPLER_STEP_TOLERANCE,
)
from core.precision import to_millimeters, saturating_add
from core.quaternion import Quaternion
from orrery.config import Body, Orbit, OrreryConfig, OrreryConfigError

logger = logging.getLogger(__name__)


# =============================================================================
# TIME HELPERS
# =============================================================================

def mjd_to_seconds(mjd: float) -> float:
    """Modified Julian Date -> simulation epoch seconds."""
    return mjd * SECONDS_PER_DAY


def seconds_to_mjd(seconds: float) -> float:
    """Simulation epoch seconds -> Modified Julian Date."""
    return seconds / SECONDS_PER_DAY


# =============================================================================
# KEPLER'S EQUATION
# =============================================================================

def solve_kepler(
    mean_anomaly,
    eccentricity: float,
    iterations: int = KEPLER_ITERATIONS,
    tolerance: float = KEPLER_STEP_TOLERANCE,
):
    """
    Solve E - e*sin(E) = M for the eccentric anomaly by Newton's method.

    Starts from E0 = M and takes at most *iterations* Newton steps,
    stopping early once every step is below *tolerance*. The iteration
    count is a budget, not a convergence guarantee; for e <= 0.9 the
    default budget leaves a residual far below 1e-9.

    Parameters
    ----------
    mean_anomaly : float or np.ndarray
        Mean anomaly M (rad). Arrays are solved element-wise.
    eccentricity : float
        Orbital eccentricity, 0 <= e < 1.
    iterations : int
        Newton step budget.
    tolerance : float
        Step size below which iteration stops.

    Returns
    -------
    float or np.ndarray
        Eccentric anomaly E (rad), same shape as *mean_anomaly*.
    """
    m = np.asarray(mean_anomaly, dtype=np.float64)
    e = float(eccentricity)

    ecc_anomaly = m.copy()
    for _ in range(iterations):
        f = ecc_anomaly - e * np.sin(ecc_anomaly) - m
        f_prime = 1.0 - e * np.cos(ecc_anomaly)
        step = f / f_prime
        ecc_anomaly = ecc_anomaly - step
        if np.all(np.abs(step) < tolerance):
            break

    if ecc_anomaly.ndim == 0:
        return float(ecc_anomaly)
    return ecc_anomaly


def _wrap_angle(angle):
    """Map an angle (or array of angles) into [-pi, pi)."""
    return np.mod(angle + PI, TWO_PI) - PI


def _is_fixed(orbit: Orbit) -> bool:
    """Bodies with no semi-major axis or no usable period sit on their parent."""
    return orbit.semi_major == 0.0 or orbit.period == 0.0 or not np.isfinite(orbit.period)


def _orbit_frame(orbit: Orbit) -> Quaternion:
    """Orbital plane -> inertial frame: Rz(Omega) * Rx(i) * Rz(omega)."""
    return (Quaternion.from_rotation_z(orbit.ascending_node)
            * Quaternion.from_rotation_x(orbit.inclination)
            * Quaternion.from_rotation_z(orbit.arg_of_pericenter))


# =============================================================================
# ORRERY
# =============================================================================

class Orrery:
    """
    Solver for a whole star system.

    Holds an insertion-ordered name -> Body table. Insertion order is
    parents-first (enforced on construction), which doubles as a
    topological order for whole-system sweeps. Immutable once built and
    safe to share between any number of readers.

    Parameters
    ----------
    name : str
        Star system name.
    bodies : iterable of Body
        Body definitions, each parent listed before its children.

    Raises
    ------
    OrreryConfigError
        Duplicate names, a parent that has not been declared yet, or an
        eccentricity outside [0, 1).
    """

    def __init__(self, name: str, bodies: Iterable[Body]) -> None:
        self.name = name
        self._bodies: Dict[str, Body] = {}

        for body in bodies:
            self._insert(body)

        logger.info("Orrery '%s' initialised with %d bodies", self.name, len(self._bodies))

    @classmethod
    def from_config(cls, cfg: OrreryConfig) -> 'Orrery':
        return cls(cfg.name, cfg.bodies)

    def _insert(self, body: Body) -> None:
        if body.parent is not None and body.parent not in self._bodies:
            raise OrreryConfigError(f"unidentified parent {body.parent} of {body.name}")
        if body.name in self._bodies:
            raise OrreryConfigError(f"duplicate name in star system: {body.name}")
        if not 0.0 <= body.orbit.eccentricity < 1.0:
            raise OrreryConfigError(
                f"eccentricity of {body.name} must be in [0, 1), "
                f"got {body.orbit.eccentricity}"
            )

        orbit = body.orbit
        if orbit.period == 0.0 and orbit.semi_major != 0.0:
            # Kepler's third law: T = 2*pi * sqrt(a^3 / (G * (M_parent + M_body)))
            parent_mass = self._bodies[body.parent].mass if body.parent is not None else 0.0
            mu = GRAVITATIONAL_CONSTANT * (parent_mass + body.mass)
            if mu > 0.0:
                period = TWO_PI * np.sqrt(abs(orbit.semi_major) ** 3 / mu)
                body = replace(body, orbit=replace(orbit, period=float(period)))
                logger.debug("Derived period of %s: %.6g s", body.name, period)
            else:
                logger.warning(
                    "Body %s has a semi-major axis but no period and no mass to "
                    "derive one from; it will stay fixed to its parent", body.name,
                )

        self._bodies[body.name] = body

    # -------------------------------------------------------------------------
    # LOOKUP
    # -------------------------------------------------------------------------

    def iter(self) -> Iterator[Body]:
        """Bodies in parents-first order."""
        return iter(self._bodies.values())

    def __iter__(self) -> Iterator[Body]:
        return self.iter()

    def __len__(self) -> int:
        return len(self._bodies)

    def __contains__(self, name: object) -> bool:
        return name in self._bodies

    @property
    def names(self) -> List[str]:
        return list(self._bodies)

    def get_body(self, name: str) -> Optional[Body]:
        """Body by name, or None."""
        return self._bodies.get(name)

    def _ancestry(self, name: str) -> List[Body]:
        """Root-first chain of bodies ending with *name*."""
        chain = []
        body = self._bodies[name]
        while True:
            chain.append(body)
            if body.parent is None:
                break
            body = self._bodies[body.parent]
        chain.reverse()
        return chain

    # -------------------------------------------------------------------------
    # ANOMALIES
    # -------------------------------------------------------------------------

    @staticmethod
    def _eccentric_anomaly(orbit: Orbit, epoch: float):
        dt = epoch - mjd_to_seconds(orbit.epoch)
        mean_motion = TWO_PI / orbit.period
        # Wrapping keeps the Newton solve well-conditioned for large dt.
        mean_anomaly = _wrap_angle(orbit.mean_anomaly + mean_motion * dt)
        return solve_kepler(mean_anomaly, orbit.eccentricity)

    def _relative_position(self, body: Body, epoch: float) -> np.ndarray:
        """Inertial offset from the parent (m)."""
        orbit = body.orbit
        e = orbit.eccentricity
        ecc_anomaly = self._eccentric_anomaly(orbit, epoch)

        cos_e = np.cos(ecc_anomaly)
        sin_e = np.sin(ecc_anomaly)
        true_anomaly = np.arctan2(np.sqrt(1.0 - e * e) * sin_e, cos_e - e)
        radius = orbit.semi_major * (1.0 - e * cos_e)

        pos_orb = np.array([radius * np.cos(true_anomaly),
                            radius * np.sin(true_anomaly),
                            0.0])
        return _orbit_frame(orbit).rotate_vector(pos_orb)

    def _relative_velocity(self, body: Body, epoch: float) -> np.ndarray:
        """Inertial velocity relative to the parent (m/s)."""
        orbit = body.orbit
        if _is_fixed(orbit):
            return np.zeros(3)

        a = orbit.semi_major
        period = orbit.period
        e = orbit.eccentricity

        # mu consistent with the configured period: mu = 4 pi^2 a^3 / T^2
        mu = 4.0 * PI * PI * abs(a) ** 3 / (period * period)

        ecc_anomaly = self._eccentric_anomaly(orbit, epoch)
        true_anomaly = np.arctan2(np.sqrt(1.0 - e * e) * np.sin(ecc_anomaly),
                                  np.cos(ecc_anomaly) - e)

        h = np.sqrt(mu * abs(a) * (1.0 - e * e))
        v_radial = mu / h * e * np.sin(true_anomaly)
        v_transverse = mu / h * (1.0 + e * np.cos(true_anomaly))

        cos_nu = np.cos(true_anomaly)
        sin_nu = np.sin(true_anomaly)
        vel_orb = np.array([v_radial * cos_nu - v_transverse * sin_nu,
                            v_radial * sin_nu + v_transverse * cos_nu,
                            0.0])
        # A negative period runs the orbit backwards.
        vel_orb *= np.sign(period)

        return _orbit_frame(orbit).rotate_vector(vel_orb)

    # -------------------------------------------------------------------------
    # PUBLIC SOLVERS
    # -------------------------------------------------------------------------

    def solve_position(self, name: str, epoch: float) -> Optional[np.ndarray]:
        """
        Absolute position (int64 mm) of a body at *epoch*.

        The parent chain is walked root-first; a body with zero semi-major
        axis (or no period) returns its parent's position unchanged.

        Returns
        -------
        np.ndarray or None
            None if no body is called *name*.
        """
        if name not in self._bodies:
            return None

        position = np.zeros(3, dtype=np.int64)
        for body in self._ancestry(name):
            if not _is_fixed(body.orbit):
                position = saturating_add(position,
                                          to_millimeters(self._relative_position(body, epoch)))
        return position

    def solve_positions(self, epoch: float) -> Dict[str, np.ndarray]:
        """
        Positions (int64 mm) of every body at *epoch* in one sweep.

        Parents precede children in the table, so each ancestor is solved
        exactly once however many bodies share it.
        """
        positions: Dict[str, np.ndarray] = {}
        for body in self._bodies.values():
            if body.parent is None:
                base = np.zeros(3, dtype=np.int64)
            else:
                base = positions[body.parent]

            if _is_fixed(body.orbit):
                positions[body.name] = base.copy()
            else:
                positions[body.name] = saturating_add(
                    base, to_millimeters(self._relative_position(body, epoch))
                )
        return positions

    def solve_velocity(self, name: str, epoch: float,
                       include_parent: bool = False) -> Optional[np.ndarray]:
        """
        Orbital velocity (m/s, inertial axes) of a body at *epoch*.

        By default the velocity is relative to the parent. With
        *include_parent* the velocities of all ancestors are added, giving
        the velocity relative to the system root.

        Returns
        -------
        np.ndarray or None
            Zero vector for fixed bodies; None if no body is called *name*.
        """
        body = self._bodies.get(name)
        if body is None:
            return None

        if not include_parent:
            return self._relative_velocity(body, epoch)

        velocity = np.zeros(3)
        for ancestor in self._ancestry(name):
            velocity += self._relative_velocity(ancestor, epoch)
        return velocity

    def solve_rotation(self, name: str, epoch: float) -> Optional[Quaternion]:
        """
        Orientation of a body at *epoch*.

        The equator is placed in the orbital plane (equatorial node,
        obliquity, spin phase) and the orbital plane in inertial space
        (node, inclination, pericenter):

            q = Rz(Omega) Rx(i) Rz(omega) * Rz(Omega_eq) Rx(obliquity) Rz(phi - Omega_eq)

        where phi = 2 pi (t - t_rot) / T_rot grows linearly with time.

        Returns
        -------
        Quaternion or None
            Identity if the body does not spin; None if no body is called
            *name*.
        """
        body = self._bodies.get(name)
        if body is None:
            return None

        rot = body.rotation
        if rot.rotation_period == 0.0 or not np.isfinite(rot.rotation_period):
            return Quaternion.identity()

        elapsed = epoch - mjd_to_seconds(rot.rotation_epoch)
        spin_angle = _wrap_angle(TWO_PI * elapsed / rot.rotation_period)

        equator = (Quaternion.from_rotation_z(rot.eq_ascend_node)
                   * Quaternion.from_rotation_x(rot.obliquity)
                   * Quaternion.from_rotation_z(spin_angle - rot.eq_ascend_node))

        return _orbit_frame(body.orbit) * equator

    def __repr__(self) -> str:
        return f"Orrery(name={self.name!r}, bodies={len(self._bodies)})"
