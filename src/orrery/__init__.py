"""
===============================================================================
ORRERY SIM - Orrery Module
===============================================================================
Star-system definitions and the analytic Keplerian solver.

Submodules:
    config -- Body types, unit parsing, YAML/TOML loading
    solver -- Positions, velocities and orientations at any epoch
===============================================================================
"""
