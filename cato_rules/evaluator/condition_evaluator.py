"""
Condition Evaluator

Extracts metrics from heterogeneous event payloads and tests them against
operators. Nothing in here raises: a malformed condition evaluates false.
"""

import json
import logging
import math
from typing import Any, Callable, Dict, Mapping, Optional

from cato_rules.models import Condition, ConditionOperator, ConditionResult


logger = logging.getLogger(__name__)

# Deviation, in percent, above which percentage_change holds.
DEFAULT_PERCENTAGE_CHANGE_THRESHOLD = 10.0


def exceeds_percentage_change(
    value: Any,
    baseline: Any,
    threshold: float = DEFAULT_PERCENTAGE_CHANGE_THRESHOLD
) -> bool:
    """
    True if ``value`` deviates from ``baseline`` by more than ``threshold`` percent.

    The rule's comparison value is used as the baseline and the threshold is
    fixed, so a rule cannot express "changed by more than N%". A zero or
    non-numeric baseline never holds.
    """
    current = _to_number(value)
    base = _to_number(baseline)
    if current is None or base is None or base == 0:
        return False

    change = abs((current - base) / base * 100)
    return change > threshold


def _to_number(value: Any) -> Optional[float]:
    """Numeric coercion; None for anything that is not a number."""
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return float(text)
        except ValueError:
            return None
    return None


def _string_form(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(_string_form(v) for v in value)
    if isinstance(value, Mapping):
        return json.dumps(value, default=str, sort_keys=True)
    return str(value)


def _strict_equals(left: Any, right: Any) -> bool:
    # Booleans never equal numbers (True == 1 in Python).
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    return left == right


class ConditionEvaluator:
    """
    Evaluate single conditions against event data.
    """

    def __init__(self, percentage_change_threshold: float = DEFAULT_PERCENTAGE_CHANGE_THRESHOLD):
        """
        Initialize the condition evaluator.

        Args:
            percentage_change_threshold: Deviation (percent) for the percentage_change operator
        """
        self.percentage_change_threshold = percentage_change_threshold
        self._operators: Dict[str, Callable[[Any, Any], bool]] = {
            ConditionOperator.EQUALS.value: _strict_equals,
            ConditionOperator.NOT_EQUALS.value: lambda v, t: not _strict_equals(v, t),
            ConditionOperator.CONTAINS.value: self._contains,
            ConditionOperator.GREATER_THAN.value: lambda v, t: self._compare_numeric(v, t, '>'),
            ConditionOperator.LESS_THAN.value: lambda v, t: self._compare_numeric(v, t, '<'),
            ConditionOperator.IN.value: self._in,
            ConditionOperator.NOT_IN.value: self._not_in,
            ConditionOperator.PERCENTAGE_CHANGE.value: lambda v, t: exceeds_percentage_change(
                v, t, self.percentage_change_threshold
            ),
        }

    @property
    def supported_operators(self):
        return set(self._operators)

    def extract(self, data: Any, metric_path: str) -> Any:
        """
        Resolve a dot-separated path such as 'poam.milestones.0.status'.

        Mappings are navigated by key and lists by integer index. Returns None
        as soon as a segment is missing.
        """
        if not metric_path:
            return None

        current = data
        for part in metric_path.split('.'):
            if isinstance(current, Mapping):
                if part not in current:
                    return None
                current = current[part]
            elif isinstance(current, (list, tuple)):
                try:
                    index = int(part)
                except ValueError:
                    return None
                if not -len(current) <= index < len(current):
                    return None
                current = current[index]
            else:
                return None

        return current

    def evaluate(self, value: Any, operator: Any, target: Any) -> bool:
        """
        Test an extracted value against an operator and target.

        A missing value (None) fails every operator except not_equals against
        a present target.
        """
        op = operator.value if isinstance(operator, ConditionOperator) else operator

        if value is None:
            return op == ConditionOperator.NOT_EQUALS.value and target is not None

        handler = self._operators.get(op)
        if handler is None:
            logger.debug(f"Unknown operator '{operator}' evaluated as false")
            return False

        try:
            return bool(handler(value, target))
        except (TypeError, ValueError, ArithmeticError) as e:
            logger.debug(f"Operator '{op}' could not compare {value!r} with {target!r}: {e}")
            return False

    def evaluate_condition(self, condition: Condition, data: Any) -> bool:
        """Extract the condition's metric from ``data`` and evaluate it."""
        value = self.extract(data, condition.metric)
        return self.evaluate(value, condition.operator, condition.value)

    def check(self, condition: Condition, data: Any) -> ConditionResult:
        """Like evaluate_condition, but keeps the actual value for explanations."""
        value = self.extract(data, condition.metric)
        return ConditionResult(
            metric=condition.metric,
            operator=condition.operator,
            expected=condition.value,
            actual=value,
            matched=self.evaluate(value, condition.operator, condition.value)
        )

    def _compare_numeric(self, value: Any, target: Any, operator: str) -> bool:
        left = _to_number(value)
        right = _to_number(target)
        if left is None or right is None:
            return False

        if operator == '>':
            return left > right
        if operator == '<':
            return left < right
        return False

    def _contains(self, value: Any, target: Any) -> bool:
        if target is None:
            return False
        return _string_form(target) in _string_form(value)

    def _in(self, value: Any, target: Any) -> bool:
        if not isinstance(target, (list, tuple, set, frozenset)):
            return False
        return any(_strict_equals(value, item) for item in target)

    def _not_in(self, value: Any, target: Any) -> bool:
        if not isinstance(target, (list, tuple, set, frozenset)):
            return False
        return not self._in(value, target)
