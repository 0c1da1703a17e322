"""
cATO Rules Package

Condition-based rule evaluation and action dispatch shared by POA&M workflow
automation, proactive alerting and notification routing.
"""

from .rules_engine import RulesEngine, create_engine
from .models import (
    ActionContext,
    ActionType,
    Condition,
    ConditionOperator,
    EscalationLevel,
    EscalationPolicy,
    Event,
    FiringRecord,
    Rule,
    RuleAction,
    SuppressionPolicy,
    TriggerGroup
)
from .parser import RuleParser
from .evaluator import ConditionEvaluator, RuleMatcher
from .actions import ActionDispatcher, SuppressionGate
from .escalation import EscalationScheduler
from .config import CatoRulesConfig, load_config

__version__ = "1.0.0"

__all__ = [
    "RulesEngine",
    "create_engine",
    "ActionContext",
    "ActionType",
    "Condition",
    "ConditionOperator",
    "EscalationLevel",
    "EscalationPolicy",
    "Event",
    "FiringRecord",
    "Rule",
    "RuleAction",
    "SuppressionPolicy",
    "TriggerGroup",
    "RuleParser",
    "ConditionEvaluator",
    "RuleMatcher",
    "ActionDispatcher",
    "SuppressionGate",
    "EscalationScheduler",
    "CatoRulesConfig",
    "load_config",
]
