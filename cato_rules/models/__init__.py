"""
Rules Engine Models Package

Exports all model classes for the rule evaluation and dispatch engine.
"""

from .rule import (
    WILDCARD_SOURCE,
    ActionType,
    Condition,
    ConditionOperator,
    ConditionResult,
    EscalationLevel,
    EscalationPolicy,
    Event,
    Rule,
    RuleAction,
    RuleEvaluationResult,
    SuppressionPolicy,
    TriggerGroup,
    TriggerGroupResult,
    ValidationResult,
    priority_to_severity
)
from .firing import (
    ActionContext,
    ActionExecution,
    ActionStatus,
    DispatchStatus,
    EscalationHistoryEntry,
    EventReference,
    FiringRecord,
    FiringStatus,
    new_firing_id
)

__all__ = [
    "WILDCARD_SOURCE",
    "ActionType",
    "Condition",
    "ConditionOperator",
    "ConditionResult",
    "EscalationLevel",
    "EscalationPolicy",
    "Event",
    "Rule",
    "RuleAction",
    "RuleEvaluationResult",
    "SuppressionPolicy",
    "TriggerGroup",
    "TriggerGroupResult",
    "ValidationResult",
    "priority_to_severity",
    "ActionContext",
    "ActionExecution",
    "ActionStatus",
    "DispatchStatus",
    "EscalationHistoryEntry",
    "EventReference",
    "FiringRecord",
    "FiringStatus",
    "new_firing_id"
]
