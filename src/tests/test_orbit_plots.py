"""
===============================================================================
ORRERY SIM - Plotting Test Suite
===============================================================================
Smoke tests for the orbit-track and telemetry plots: sampled track shapes,
files written to disk, and rejection of empty inputs.
===============================================================================
"""

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import numpy as np
import pandas as pd
import pytest
from numpy.testing import assert_allclose

from core.constants import AU, MASS_EARTH, MASS_SOL, SECONDS_PER_DAY
from core.precision import PreciseTransform
from dynamics.rigid_body import MassProps, RigidBody
from orrery.config import Body, Orbit
from orrery.solver import Orrery
from simulation.sim_engine import SimulationContext
from visualization.orbit_plots import (
    plot_orbit_tracks,
    plot_telemetry_tracks,
    sample_orbit_tracks,
)


YEAR = 365.25 * SECONDS_PER_DAY


@pytest.fixture
def orrery():
    return Orrery("sol", [
        Body(name="Sun", mass=MASS_SOL),
        Body(name="Earth", parent="Sun", orbit=Orbit(semi_major=AU, period=YEAR),
             mass=MASS_EARTH, radius=6.371e6),
    ])


class TestOrbitTracks:

    def test_sample_shapes(self, orrery):
        epochs = np.linspace(0.0, YEAR, 13)
        tracks = sample_orbit_tracks(orrery, epochs)
        assert set(tracks) == {"Sun", "Earth"}
        assert tracks["Earth"].shape == (13, 3)
        assert_allclose(np.linalg.norm(tracks["Earth"], axis=1), 1.0, rtol=1e-9)
        assert_allclose(tracks["Sun"], np.zeros((13, 3)))

    def test_unknown_bodies_skipped(self, orrery):
        tracks = sample_orbit_tracks(orrery, [0.0], bodies=["Earth", "Vulcan"])
        assert list(tracks) == ["Earth"]

    def test_plot_written(self, orrery, tmp_path):
        path = tmp_path / "plots" / "orbits.png"
        tracks = plot_orbit_tracks(orrery, np.linspace(0.0, YEAR, 50), str(path))
        assert path.exists()
        assert tracks["Earth"].shape == (50, 3)

    def test_empty_epochs_rejected(self, orrery, tmp_path):
        with pytest.raises(ValueError):
            plot_orbit_tracks(orrery, [], str(tmp_path / "none.png"))


class TestTelemetryTracks:

    def test_plot_written(self, orrery, tmp_path):
        ctx = SimulationContext(orrery, {'rate_hz': 10.0})
        ctx.spawn_celestials()
        ctx.spawn(RigidBody("probe", PreciseTransform.from_meters([AU + 7.0e6, 0.0, 0.0]),
                            MassProps.from_inertia(100.0)))
        telemetry = ctx.run(5)
        path = tmp_path / "tracks.png"
        plot_telemetry_tracks(telemetry, str(path))
        assert path.exists()

    def test_empty_rejected(self, tmp_path):
        with pytest.raises(ValueError):
            plot_telemetry_tracks(pd.DataFrame(), str(tmp_path / "none.png"))
