"""Orbit and telemetry track plots."""
