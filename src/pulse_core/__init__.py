"""Pulse: multi-source marketing metrics aggregation."""

__version__ = "0.1.0"
