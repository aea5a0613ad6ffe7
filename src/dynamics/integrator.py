"""
===============================================================================
ORRERY SIM - Rigid-Body Integrator
===============================================================================
Advances every free rigid body by one fixed step.

Translation uses velocity Verlet with the acceleration carried over from
the previous step:

    x_{n+1} = x_n + v_n dt + a_n dt^2 / 2          (applied in integer mm)
    a_{n+1} = F / m
    v_{n+1} = v_n + (a_n + a_{n+1}) dt / 2

Rotation uses symplectic Euler with the inverse inertia rotated into world
axes:

    I_world^-1 = R I_local^-1 R^T
    w_{n+1}    = w_n + I_world^-1 tau dt
    q_{n+1}    = exp(w_{n+1} dt) * q_n              (renormalised)

Force and torque accumulators are cleared afterwards. Docked children are
not integrated; they follow their parent.
===============================================================================
"""

import logging
from typing import Iterable

import numpy as np

from core.precision import saturating_add, to_millimeters
from core.quaternion import Quaternion
from dynamics.rigid_body import RigidBody

logger = logging.getLogger(__name__)


def integrate_body(body: RigidBody, dt: float) -> None:
    """Advance one body by *dt* seconds and clear its accumulators."""
    a_prev = body.prev_acceleration

    displacement = body.velocity * dt + 0.5 * a_prev * dt * dt
    body.transform.translation_mm = saturating_add(body.transform.translation_mm,
                                                   to_millimeters(displacement))

    a_new = body.force / body.mass
    body.velocity = body.velocity + 0.5 * (a_prev + a_new) * dt
    body.prev_acceleration = a_new

    dcm = body.transform.rotation.to_dcm()
    inertia_inv_world = dcm @ body.mass_props.inertia_inv @ dcm.T
    body.angular_velocity = body.angular_velocity + inertia_inv_world @ body.torque * dt

    spin = Quaternion.from_rotation_vector(body.angular_velocity * dt)
    body.transform.rotation = (spin * body.transform.rotation).normalize()

    body.clear_accumulators()


def integrate(bodies: Iterable[RigidBody], dt: float) -> int:
    """
    Integrate every body that is not docked to another and has mass.

    Parameters
    ----------
    bodies : iterable of RigidBody
    dt : float
        Step size (s), strictly positive.

    Returns
    -------
    int
        Number of bodies advanced.

    Raises
    ------
    ValueError
        If *dt* is not positive.
    """
    if not dt > 0.0:
        raise ValueError(f"time step must be positive, got {dt}")

    count = 0
    for body in bodies:
        if body.is_docked:
            continue
        if not body.mass > 0.0:
            # Dock-parent marker with no assembly yet.
            logger.debug("Massless body %s not integrated", body.name)
            body.clear_accumulators()
            continue
        if not np.all(np.isfinite(body.force)):
            logger.warning("Non-finite force on %s: %s", body.name, body.force)
        integrate_body(body, dt)
        count += 1
    return count
