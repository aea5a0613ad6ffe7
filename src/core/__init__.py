"""
===============================================================================
ORRERY SIM - Core Module
===============================================================================
Shared math and units.

Submodules:
    constants  -- Physical constants, unit factors, solver and clock settings
    quaternion -- Scalar-first unit quaternion
    precision  -- Integer-millimeter transforms and the floating origin
===============================================================================
"""
