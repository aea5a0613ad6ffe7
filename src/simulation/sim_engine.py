"""
===============================================================================
ORRERY SIM - Simulation Engine
===============================================================================
Owns every piece of simulation state (orrery, celestials, rigid bodies,
sphere-of-influence table, floating origin, clock, telemetry) and runs the
fixed-rate tick. The order below is part of the correctness contract:

    1. ORRERY     -- Place every celestial at the current epoch.
    2. GRAVITY    -- Compute forces and dominant bodies, then commit them.
    3. EXTERNAL   -- Registered force contributors add forces/torques.
    4. DOCKING    -- Center-of-gravity/inertia pass, then force pass.
    5. INTEGRATE  -- Advance free bodies; docked children follow parents.
    6. ORIGIN     -- Select the floating origin, re-base top-level
                     transforms into render space.
    7. LOGGING    -- Advance the clock and record end-of-tick telemetry.

Every tick has the same dt; the simulation epoch is the start epoch plus the
elapsed ticks times dt, so it never drifts from accumulated float sums.
===============================================================================
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

import numpy as np
import pandas as pd

from core.constants import DEFAULT_TICK_RATE, GRAVITATIONAL_CONSTANT
from core.precision import FloatingOrigin, PreciseTransform, RenderTransform, to_meters
from dynamics import docking
from dynamics.gravity import SphereOfInfluenceTable, apply_gravity
from dynamics.integrator import integrate
from dynamics.rigid_body import Celestial, MassProps, RigidBody
from orrery.solver import Orrery, mjd_to_seconds, seconds_to_mjd

logger = logging.getLogger(__name__)

ForceContributor = Callable[['SimulationContext', float], None]
OriginSelector = Callable[['SimulationContext'], Optional[PreciseTransform]]


# =============================================================================
# CLOCK
# =============================================================================

class SimulationClock:
    """
    Fixed-rate simulation clock.

    Parameters
    ----------
    rate_hz : float
        Ticks per simulated second, strictly positive.
    start_epoch : float
        Epoch (s) of tick zero.
    """

    def __init__(self, rate_hz: float = DEFAULT_TICK_RATE, start_epoch: float = 0.0) -> None:
        if not rate_hz > 0.0:
            raise ValueError(f"tick rate must be positive, got {rate_hz}")
        self.rate_hz = float(rate_hz)
        self.start_epoch = float(start_epoch)
        self.tick = 0

    @property
    def dt(self) -> float:
        return 1.0 / self.rate_hz

    @property
    def elapsed(self) -> float:
        """Simulated seconds since tick zero."""
        return self.tick * self.dt

    @property
    def epoch(self) -> float:
        return self.start_epoch + self.elapsed

    def advance(self) -> None:
        self.tick += 1

    def __repr__(self) -> str:
        return (f"SimulationClock(rate_hz={self.rate_hz}, tick={self.tick}, "
                f"epoch={self.epoch:.3f})")


# =============================================================================
# ORIGIN SELECTORS
# =============================================================================

def follow(name: str) -> OriginSelector:
    """Origin selector that keeps the floating origin on object *name*."""
    def _selector(ctx: 'SimulationContext') -> Optional[PreciseTransform]:
        return ctx.find_transform(name)
    return _selector


def fixed_origin(transform: PreciseTransform = None) -> OriginSelector:
    """Origin selector that pins the origin (identity by default)."""
    pinned = transform.copy() if transform is not None else PreciseTransform()

    def _selector(ctx: 'SimulationContext') -> Optional[PreciseTransform]:
        return pinned
    return _selector


# =============================================================================
# SIMULATION CONTEXT
# =============================================================================

class SimulationContext:
    """
    All mutable simulation state plus the tick schedule.

    Parameters
    ----------
    orrery : Orrery
        The star system; shared read-only.
    config : dict, optional
        Recognised keys:
            - 'rate_hz'            : float -- tick rate (default 101 Hz)
            - 'start_epoch'        : float -- epoch of tick zero (s)
            - 'start_mjd'          : float -- alternative to start_epoch
            - 'telemetry_interval' : int   -- ticks between records (default 1)
            - 'progress_interval'  : int   -- ticks between progress logs

    Attributes
    ----------
    celestials : dict
        Name -> Celestial, in orrery order.
    bodies : dict
        Name -> RigidBody.
    soi : SphereOfInfluenceTable
    origin : FloatingOrigin
    render_transforms : dict
        Name -> RenderTransform from the latest tick.
    telemetry : list of dict
        Raw records, converted to a DataFrame on request.
    """

    def __init__(self, orrery: Orrery, config: Optional[Dict[str, Any]] = None) -> None:
        self.orrery = orrery
        self.config = dict(config or {})

        if 'start_mjd' in self.config:
            start_epoch = mjd_to_seconds(float(self.config['start_mjd']))
        else:
            start_epoch = float(self.config.get('start_epoch', 0.0))
        self.clock = SimulationClock(self.config.get('rate_hz', DEFAULT_TICK_RATE), start_epoch)

        self._telemetry_interval = max(1, int(self.config.get('telemetry_interval', 1)))
        self._progress_interval = max(1, int(self.config.get('progress_interval', 10000)))

        self.celestials: Dict[str, Celestial] = {}
        self.bodies: Dict[str, RigidBody] = {}
        self.soi = SphereOfInfluenceTable()
        self.origin = FloatingOrigin()
        self.render_transforms: Dict[str, RenderTransform] = {}
        self.telemetry: List[Dict[str, Any]] = []

        self._force_contributors: List[ForceContributor] = []
        self._origin_selector: OriginSelector = fixed_origin()

        logger.info("SimulationContext created for '%s'.  rate=%.1f Hz  start MJD=%.5f",
                    orrery.name, self.clock.rate_hz, seconds_to_mjd(start_epoch))

    # =========================================================================
    # ENTITIES
    # =========================================================================

    def spawn_celestials(self) -> None:
        """Create one Celestial per orrery body, placed at the current epoch."""
        epoch = self.clock.epoch
        positions = self.orrery.solve_positions(epoch)
        for body in self.orrery:
            self.celestials[body.name] = Celestial(
                body.name,
                PreciseTransform(positions[body.name],
                                 self.orrery.solve_rotation(body.name, epoch)),
            )
        logger.info("Spawned %d celestials", len(self.celestials))

    def spawn(self, body: RigidBody) -> RigidBody:
        """
        Add a rigid body.

        Raises
        ------
        ValueError
            Duplicate name or non-positive mass.
        """
        if body.name in self.bodies or body.name in self.celestials:
            raise ValueError(f"an object named {body.name} already exists")
        if not body.mass > 0.0:
            raise ValueError(f"mass of {body.name} must be positive, got {body.mass}")
        self.bodies[body.name] = body
        logger.info("Spawned %s at %s mm", body.name, body.transform.translation_mm.tolist())
        return body

    def spawn_dock_parent(self, name: str,
                          transform: PreciseTransform = None) -> RigidBody:
        """
        Add a massless marker body that only exists to carry docked
        children. It takes the assembly's mass once something docks to it.
        """
        if name in self.bodies or name in self.celestials:
            raise ValueError(f"an object named {name} already exists")
        marker = RigidBody(name, transform.copy() if transform is not None else PreciseTransform(),
                           MassProps.massless())
        self.bodies[name] = marker
        logger.info("Spawned dock parent %s", name)
        return marker

    def spawn_orbiting(self, name: str, body_name: str, altitude: float,
                       mass: float = 1000.0, radius: float = 1.0) -> RigidBody:
        """
        Spawn a probe on a circular orbit *altitude* meters above a body's
        surface, on the side facing the body's parent.

        The probe is a uniform sphere of *radius* meters. It inherits the
        body's absolute orbital velocity plus the circular speed
        sqrt(G M / r), prograde about the inertial +Z axis.
        """
        body = self.orrery.get_body(body_name)
        if body is None:
            raise ValueError(f"no body named {body_name}")

        epoch = self.clock.epoch
        center_mm = self.orrery.solve_position(body_name, epoch)
        if body.parent is not None:
            toward = to_meters(self.orrery.solve_position(body.parent, epoch) - center_mm)
        else:
            toward = np.zeros(3)
        norm = np.linalg.norm(toward)
        radial = toward / norm if norm > 0.0 else np.array([1.0, 0.0, 0.0])

        r = body.radius + altitude
        ptf = PreciseTransform(center_mm)
        ptf = ptf.compose(PreciseTransform.from_meters(radial * r))

        prograde = np.cross([0.0, 0.0, 1.0], radial)
        if np.linalg.norm(prograde) < 1e-12:
            prograde = np.array([0.0, 1.0, 0.0])
        prograde /= np.linalg.norm(prograde)
        speed = np.sqrt(GRAVITATIONAL_CONSTANT * body.mass / r) if r > 0.0 else 0.0

        velocity = self.orrery.solve_velocity(body_name, epoch, include_parent=True) + prograde * speed
        probe = RigidBody(name, ptf, MassProps.solid_sphere(mass, radius), velocity=velocity)
        return self.spawn(probe)

    def despawn(self, name: str) -> Optional[RigidBody]:
        """Remove a rigid body, undocking any children first."""
        body = self.bodies.get(name)
        if body is None:
            return None
        for other in list(self.bodies.values()):
            if other.dock is not None and other.dock.parent == name:
                docking.undock(other, self.bodies)
        if body.dock is not None:
            docking.undock(body, self.bodies)
        del self.bodies[name]
        self.soi.remove(name)
        self.render_transforms.pop(name, None)
        logger.info("Despawned %s", name)
        return body

    def dock(self, child: str, parent: str, rel_tf: PreciseTransform = None) -> None:
        docking.dock(self.bodies[child], self.bodies[parent], rel_tf, self.bodies)

    def undock(self, child: str) -> None:
        docking.undock(self.bodies[child], self.bodies)

    def find_transform(self, name: str) -> Optional[PreciseTransform]:
        """Precise world transform of a rigid body or celestial, or None."""
        if name in self.bodies:
            return self.bodies[name].transform
        if name in self.celestials:
            return self.celestials[name].transform
        return None

    # =========================================================================
    # HOOKS
    # =========================================================================

    def add_force_contributor(self, contributor: ForceContributor) -> None:
        """Register fn(ctx, dt), called each tick after gravity."""
        self._force_contributors.append(contributor)

    def set_origin_selector(self, selector: OriginSelector) -> None:
        """Register fn(ctx) -> PreciseTransform or None (keep current origin)."""
        self._origin_selector = selector

    # =========================================================================
    # TICK
    # =========================================================================

    def step(self) -> None:
        """Execute one tick in the fixed order."""
        dt = self.clock.dt
        epoch = self.clock.epoch

        # 1. ORRERY
        positions = self.orrery.solve_positions(epoch)
        for name, cel in self.celestials.items():
            if name not in positions:
                continue
            cel.transform.translation_mm = positions[name]
            cel.transform.rotation = self.orrery.solve_rotation(name, epoch)

        # 2. GRAVITY
        apply_gravity(self.bodies, list(self.celestials.values()), self.orrery, self.soi)

        # 3. EXTERNAL
        for contributor in self._force_contributors:
            contributor(self, dt)

        # 4. DOCKING
        docking.run_docking(self.bodies)

        # 5. INTEGRATE
        integrate(self.bodies.values(), dt)
        docking.sync_dock_children(self.bodies)

        # 6. ORIGIN
        selected = self._origin_selector(self)
        if selected is not None:
            self.origin.set(selected)
        self.render_transforms = self.origin.rebase(self._top_level_transforms())

        self.clock.advance()

        # 7. LOGGING
        if self.clock.tick % self._telemetry_interval == 0:
            self._record_telemetry()

    def _top_level_transforms(self) -> Dict[str, PreciseTransform]:
        transforms = {name: cel.transform for name, cel in self.celestials.items()}
        for name, body in self.bodies.items():
            if body.dock is None:
                transforms[name] = body.transform
        return transforms

    def _record_telemetry(self) -> None:
        tick = self.clock.tick
        epoch = self.clock.epoch
        for name, body in self.bodies.items():
            pos = body.transform.translation_m
            q = body.transform.rotation.components
            self.telemetry.append({
                'tick': tick,
                'epoch': epoch,
                'name': name,
                'pos_x': pos[0], 'pos_y': pos[1], 'pos_z': pos[2],
                'vel_x': body.velocity[0], 'vel_y': body.velocity[1], 'vel_z': body.velocity[2],
                'quat_w': q[0], 'quat_x': q[1], 'quat_y': q[2], 'quat_z': q[3],
                'omega_x': body.angular_velocity[0],
                'omega_y': body.angular_velocity[1],
                'omega_z': body.angular_velocity[2],
                'mass': body.mass,
                'soi': self.soi.get(name),
                'docked_to': body.dock.parent if body.dock is not None else None,
            })

    def run(self, n_ticks: int) -> pd.DataFrame:
        """
        Run *n_ticks* ticks.

        Returns
        -------
        pd.DataFrame
            Telemetry recorded so far.
        """
        wall_start = time.time()
        logger.info("Simulation run started.  %d ticks at %.1f Hz", n_ticks, self.clock.rate_hz)

        for i in range(1, n_ticks + 1):
            self.step()
            if i % self._progress_interval == 0:
                logger.info("Tick %d/%d  epoch MJD %.5f  wall %.1f s",
                            i, n_ticks, seconds_to_mjd(self.clock.epoch),
                            time.time() - wall_start)

        logger.info("Simulation run finished.  %d ticks in %.2f s wall time",
                    n_ticks, time.time() - wall_start)
        return self.get_telemetry()

    # =========================================================================
    # TELEMETRY
    # =========================================================================

    def get_telemetry(self) -> pd.DataFrame:
        """
        Telemetry records as a DataFrame indexed by (tick, name).

        Columns: epoch, pos_x/y/z (m), vel_x/y/z, quat_w/x/y/z,
        omega_x/y/z, mass, soi, docked_to.
        """
        if not self.telemetry:
            logger.warning("No telemetry recorded.")
            return pd.DataFrame()

        df = pd.DataFrame(self.telemetry)
        df.set_index(['tick', 'name'], inplace=True)
        return df

    def save_telemetry(self, filepath: str) -> None:
        df = self.get_telemetry()
        df.to_csv(filepath)
        logger.info("Telemetry saved to %s  (%d records)", filepath, len(df))

    def __repr__(self) -> str:
        return (f"SimulationContext(orrery={self.orrery.name!r}, "
                f"bodies={len(self.bodies)}, tick={self.clock.tick})")
