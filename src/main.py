#!/usr/bin/env python3
"""
===============================================================================
ORRERY SIM - MAIN ENTRY POINT
===============================================================================
Loads a star system, optionally spawns a probe in orbit around one of its
bodies, runs the fixed-rate simulation and writes telemetry and plots.

USAGE:
    python main.py                                  # Default system, 1 s
    python main.py --config config/taale.star.yaml --ticks 10100
    python main.py --probe Ilmar --altitude 144000 --follow
    python main.py --plot output/orbits.png --plot-days 400

OUTPUTS:
    --telemetry PATH   - CSV telemetry (one row per object per tick)
    --plot PATH        - Orbit tracks of the star system
    --track-plot PATH  - Probe track from telemetry

DEPENDENCIES:
    numpy, pandas, matplotlib, pyyaml
===============================================================================
"""

import sys
import argparse
import logging
from pathlib import Path

import numpy as np

# ---------------------------------------------------------------------------
# Path setup: ensure all project modules are importable
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from core.constants import DEFAULT_TICK_RATE, SECONDS_PER_DAY
from orrery.config import load_orrery_config
from orrery.solver import Orrery, mjd_to_seconds
from simulation.sim_engine import SimulationContext, follow
from visualization.orbit_plots import plot_orbit_tracks, plot_telemetry_tracks

logger = logging.getLogger('ORRERY_MAIN')

DEFAULT_CONFIG = PROJECT_ROOT.parent / 'config' / 'taale.star.yaml'


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description='Orrery simulation: Keplerian star system with rigid-body vessels',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --ticks 1010                     10 s at 101 Hz
  python main.py --probe Ilmar --follow           Probe 144 km above Ilmar
  python main.py --plot output/orbits.png         Orbit tracks only
        """
    )
    parser.add_argument('--config', type=str, default=str(DEFAULT_CONFIG),
                        help='Star system file (.yaml or .toml)')
    parser.add_argument('--ticks', type=int, default=int(DEFAULT_TICK_RATE),
                        help='Number of ticks to run (default: one second)')
    parser.add_argument('--rate', type=float, default=DEFAULT_TICK_RATE,
                        help='Tick rate in Hz (default: 101)')
    parser.add_argument('--start-mjd', type=float, default=51544.5,
                        help='Start epoch as a Modified Julian Date')
    parser.add_argument('--probe', type=str, default=None,
                        help='Spawn a probe in circular orbit around this body')
    parser.add_argument('--altitude', type=float, default=144000.0,
                        help='Probe altitude above the surface (m)')
    parser.add_argument('--probe-mass', type=float, default=1000.0,
                        help='Probe mass (kg)')
    parser.add_argument('--follow', action='store_true',
                        help='Keep the floating origin on the probe')
    parser.add_argument('--telemetry', type=str, default=None,
                        help='Write telemetry CSV to this path')
    parser.add_argument('--telemetry-interval', type=int, default=1,
                        help='Ticks between telemetry records')
    parser.add_argument('--plot', type=str, default=None,
                        help='Write an orbit-track plot to this path')
    parser.add_argument('--plot-days', type=float, default=365.25,
                        help='Time span of the orbit-track plot (days)')
    parser.add_argument('--track-plot', type=str, default=None,
                        help='Write a telemetry track plot to this path')
    parser.add_argument('--log-level', type=str, default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging verbosity')
    return parser.parse_args(argv)


def main(argv=None):
    """
    Main entry point. Parses command line arguments, runs the simulation and
    writes the requested outputs.
    """
    args = parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    orrery = Orrery.from_config(load_orrery_config(args.config))

    ctx = SimulationContext(orrery, {
        'rate_hz': args.rate,
        'start_mjd': args.start_mjd,
        'telemetry_interval': args.telemetry_interval,
    })
    ctx.spawn_celestials()

    if args.probe is not None:
        ctx.spawn_orbiting('probe', args.probe, args.altitude, args.probe_mass)
        if args.follow:
            ctx.set_origin_selector(follow('probe'))

    telemetry = ctx.run(args.ticks)

    if args.telemetry and not telemetry.empty:
        Path(args.telemetry).parent.mkdir(parents=True, exist_ok=True)
        ctx.save_telemetry(args.telemetry)

    if args.track_plot and not telemetry.empty:
        plot_telemetry_tracks(telemetry, args.track_plot)

    if args.plot:
        start = mjd_to_seconds(args.start_mjd)
        epochs = np.linspace(start, start + args.plot_days * SECONDS_PER_DAY, 400)
        plot_orbit_tracks(orrery, epochs, args.plot)

    logger.info("Run complete: %d ticks, final epoch MJD %.5f",
                ctx.clock.tick, ctx.clock.epoch / SECONDS_PER_DAY)
    return 0


if __name__ == '__main__':
    sys.exit(main())
