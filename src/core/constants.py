"""
===============================================================================
ORRERY SIM - Physical and Astronomical Constants
===============================================================================
Central repository for all physical constants and unit conversion factors
used by the orbit solver, the dynamics integrator and the configuration
loader. SI units throughout (meters, seconds, kilograms, radians).

Positions are stored as 64-bit integer millimeters; MILLIMETERS_PER_METER is
the single scale factor between the fixed-point and floating-point worlds.
===============================================================================
"""

import numpy as np


# =============================================================================
# MATHEMATICAL CONSTANTS
# =============================================================================
PI = np.pi
TWO_PI = 2.0 * np.pi
DEG2RAD = PI / 180.0
RAD2DEG = 180.0 / PI

# =============================================================================
# FUNDAMENTAL PHYSICAL CONSTANTS
# =============================================================================
GRAVITATIONAL_CONSTANT = 6.67430e-11   # m^3 / (kg * s^2)

# =============================================================================
# FIXED-POINT REPRESENTATION
# =============================================================================
MILLIMETERS_PER_METER = 1000.0
INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1

# Largest float64 strictly below 2^63; anything beyond saturates on the cast.
FLOAT_INT64_MAX = 9.223372036854774784e18

# =============================================================================
# MASS UNITS (kg)
# =============================================================================
MASS_EARTH = 5.9722e24
MASS_SOL = 1.9885e30

# =============================================================================
# DISTANCE UNITS (m)
# =============================================================================
KILOMETER = 1000.0
AU = 1.495978707e11
LIGHT_YEAR = 9.4607304725808e15
PARSEC = 3.08567758149137e16

# =============================================================================
# TIME UNITS (s)
# =============================================================================
SECONDS_PER_HOUR = 3600.0
SECONDS_PER_DAY = 86400.0
SECONDS_PER_JULIAN_YEAR = 31557600.0   # 365.25 d

# =============================================================================
# SOLVER AND CLOCK SETTINGS
# =============================================================================
# Newton iterations spent on Kepler's equation. Treated as a tunable budget,
# not a convergence guarantee; see orrery.solver.solve_kepler.
KEPLER_ITERATIONS = 50
KEPLER_STEP_TOLERANCE = 1e-15

# Fixed simulation rate (Hz). A prime keeps tick boundaries from aliasing
# with round-number orbital periods.
DEFAULT_TICK_RATE = 101.0
