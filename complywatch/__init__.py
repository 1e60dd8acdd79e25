"""complywatch — compliance violation alerting, escalation and agent coordination."""

from complywatch.factory import create_system
from complywatch.system import ComplianceSystem, compliance_score

__all__ = ["ComplianceSystem", "compliance_score", "create_system"]
