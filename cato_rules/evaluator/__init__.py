"""
Rules Engine Evaluator Package

Exports the condition evaluator and rule matcher.
"""

from .condition_evaluator import (
    DEFAULT_PERCENTAGE_CHANGE_THRESHOLD,
    ConditionEvaluator,
    exceeds_percentage_change
)
from .rule_matcher import RuleMatcher

__all__ = [
    "DEFAULT_PERCENTAGE_CHANGE_THRESHOLD",
    "ConditionEvaluator",
    "RuleMatcher",
    "exceeds_percentage_change"
]
