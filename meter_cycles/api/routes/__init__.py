"""API routers."""

from meter_cycles.api.routes import assignments, cycles

__all__ = ["assignments", "cycles"]
