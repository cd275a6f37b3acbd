"""Meter reading cycles: assignment partitioning, progress and export gating."""

__version__ = "0.1.0"
