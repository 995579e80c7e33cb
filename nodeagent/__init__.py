"""Device-side node model: params, node config, system, time, scenes and schedule services."""

__version__ = "0.1.0"

__all__ = ["config", "node", "params", "scenes", "schedule_model", "schedule_service", "services"]