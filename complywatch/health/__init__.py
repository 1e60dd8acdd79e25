"""Subsystem liveness supervision."""

from complywatch.health.supervisor import SYSTEM_FAILURE, HealthSupervisor, Subsystem

__all__ = ["SYSTEM_FAILURE", "HealthSupervisor", "Subsystem"]
