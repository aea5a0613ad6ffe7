"""
===============================================================================
ORRERY SIM - Simulation Module
===============================================================================
Simulation context, fixed-rate clock, tick schedule and telemetry.
===============================================================================
"""
