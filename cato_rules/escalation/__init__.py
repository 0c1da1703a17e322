"""
Rules Engine Escalation Package
"""

from .escalation_scheduler import ESCALATION_ACTION_TYPES, EscalationScheduler

__all__ = ["ESCALATION_ACTION_TYPES", "EscalationScheduler"]
