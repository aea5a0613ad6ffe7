"""
Orbit-Track Plotting
Saves 3-D orbit tracks of a solved star system and vessel tracks from
simulation telemetry, using matplotlib with the non-interactive backend.
"""

import logging
import os

import numpy as np
import matplotlib
matplotlib.use('Agg')  # Non-interactive backend for saving
import matplotlib.pyplot as plt

from core.constants import AU
from core.precision import to_meters

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Styling helpers
# ---------------------------------------------------------------------------

PALETTE = ['#2E86AB', '#F18F01', '#2E7D32', '#C73E1D', '#7B1FA2', '#00838F']


def setup_style():
    """Set matplotlib rcParams shared by every figure."""
    plt.rcParams.update({
        'font.family': 'sans-serif',
        'font.sans-serif': ['Helvetica Neue', 'Arial', 'DejaVu Sans'],
        'font.size': 11,
        'axes.labelsize': 12,
        'axes.titlesize': 14,
        'axes.titleweight': 'bold',
        'legend.fontsize': 9,
    })


def save_figure(fig, filepath, dpi=150):
    """Save *fig* to *filepath*, creating directories as needed."""
    directory = os.path.dirname(filepath)
    if directory:
        os.makedirs(directory, exist_ok=True)
    fig.savefig(filepath, dpi=dpi, bbox_inches='tight',
                facecolor='white', edgecolor='none')
    plt.close(fig)
    logger.info("Figure saved to %s", filepath)


def _equal_aspect(ax, points):
    """Give a 3-D axes equal scale on all three axes."""
    lo = points.min(axis=0)
    hi = points.max(axis=0)
    center = 0.5 * (lo + hi)
    half = max(0.5 * float(np.max(hi - lo)), 1e-9)
    ax.set_xlim(center[0] - half, center[0] + half)
    ax.set_ylim(center[1] - half, center[1] + half)
    ax.set_zlim(center[2] - half, center[2] + half)


# ---------------------------------------------------------------------------
# Plots
# ---------------------------------------------------------------------------

def sample_orbit_tracks(orrery, epochs, bodies=None):
    """Solved positions (AU) per body over *epochs*, as name -> (N, 3)."""
    names = list(bodies) if bodies is not None else orrery.names
    tracks = {name: [] for name in names if name in orrery}
    for epoch in epochs:
        positions = orrery.solve_positions(epoch)
        for name in tracks:
            tracks[name].append(to_meters(positions[name]) / AU)
    return {name: np.array(track) for name, track in tracks.items()}


def plot_orbit_tracks(orrery, epochs, filepath, bodies=None, title=None):
    """3-D orbit tracks of the star system's bodies.

    Parameters
    ----------
    orrery : Orrery
    epochs : array_like
        Epochs (s) at which positions are sampled.
    filepath : str
        Output image path.
    bodies : list of str, optional
        Bodies to draw; defaults to every body. Unknown names are skipped.
    title : str, optional

    Returns
    -------
    dict
        The sampled tracks, name -> (N, 3) positions in AU.
    """
    epochs = np.asarray(epochs, dtype=np.float64)
    if epochs.size == 0:
        raise ValueError("at least one epoch is required")

    tracks = sample_orbit_tracks(orrery, epochs, bodies)

    setup_style()
    fig = plt.figure(figsize=(10, 8))
    ax = fig.add_subplot(111, projection='3d')

    for idx, (name, track) in enumerate(tracks.items()):
        colour = PALETTE[idx % len(PALETTE)]
        ax.plot(track[:, 0], track[:, 1], track[:, 2], color=colour,
                linewidth=1.4, label=name)
        ax.scatter(*track[-1], color=colour, s=25)

    if tracks:
        _equal_aspect(ax, np.concatenate(list(tracks.values())))

    ax.set_xlabel('X [AU]')
    ax.set_ylabel('Y [AU]')
    ax.set_zlabel('Z [AU]')
    ax.set_title(title or f"{orrery.name} orbit tracks")
    ax.legend(loc='upper left')
    save_figure(fig, filepath)
    return tracks


def plot_telemetry_tracks(telemetry, filepath, title='Vessel tracks'):
    """3-D position history (km) of every object in a telemetry DataFrame.

    *telemetry* is the frame returned by SimulationContext.get_telemetry().
    """
    if telemetry.empty:
        raise ValueError("telemetry is empty")

    frame = telemetry.reset_index()
    setup_style()
    fig = plt.figure(figsize=(10, 8))
    ax = fig.add_subplot(111, projection='3d')

    for idx, (name, group) in enumerate(frame.groupby('name', sort=False)):
        pos = group[['pos_x', 'pos_y', 'pos_z']].to_numpy() / 1000.0
        ax.plot(pos[:, 0], pos[:, 1], pos[:, 2],
                color=PALETTE[idx % len(PALETTE)], linewidth=1.4, label=name)

    ax.set_xlabel('X [km]')
    ax.set_ylabel('Y [km]')
    ax.set_zlabel('Z [km]')
    ax.set_title(title)
    ax.legend(loc='upper left')
    save_figure(fig, filepath)
