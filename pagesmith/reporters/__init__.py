"""Reporters - per-session flight records."""

from pagesmith.reporters.flight_recorder import FlightRecorder

__all__ = ["FlightRecorder"]
