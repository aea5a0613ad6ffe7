"""
===============================================================================
ORRERY SIM - Dynamics Module
===============================================================================
Rigid-body physics for everything the orrery does not move.

Submodules:
    rigid_body -- Mass properties, rigid-body state, dock relations
    gravity    -- Vectorised gravity pass and sphere-of-influence table
    integrator -- Velocity-Verlet translation, symplectic-Euler rotation
    docking    -- Two-pass aggregation of docked assemblies
===============================================================================
"""
