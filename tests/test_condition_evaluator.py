import pytest

from cato_rules.evaluator import ConditionEvaluator, exceeds_percentage_change
from cato_rules.models import Condition


@pytest.fixture
def evaluator():
    return ConditionEvaluator()


def test_extract_nested_paths(evaluator):
    data = {"poam": {"milestones": [{"status": "late"}], "owner": None}}
    assert evaluator.extract(data, "poam.milestones.0.status") == "late"
    assert evaluator.extract(data, "poam.milestones.5.status") is None
    assert evaluator.extract(data, "poam.missing") is None
    assert evaluator.extract(data, "poam.owner.name") is None
    assert evaluator.extract(data, "") is None


@pytest.mark.parametrize("value,operator,target,expected", [
    ("High", "equals", "High", True),
    ("High", "equals", "high", False),
    (1, "equals", True, False),
    (True, "equals", True, True),
    ("Open", "not_equals", "Closed", True),
    ("Open", "not_equals", "Open", False),
    (75, "greater_than", 50, True),
    ("75", "greater_than", 50, True),
    (50, "greater_than", 50, False),
    (10, "less_than", 20, True),
    ("abc", "greater_than", 5, False),
    ("critical finding", "contains", "critical", True),
    (["AC-2", "AU-6"], "contains", "AU-6", True),
    ("Low", "contains", "High", False),
    ("AC-2", "in", ["AC-2", "AC-3"], True),
    ("AC-9", "in", ["AC-2", "AC-3"], False),
    ("AC-2", "in", "AC-2", False),
    ("AC-9", "not_in", ["AC-2"], True),
    ("AC-2", "not_in", ["AC-2"], False),
    ("AC-2", "not_in", "AC-2", False),
])
def test_operators(evaluator, value, operator, target, expected):
    assert evaluator.evaluate(value, operator, target) is expected


def test_missing_value_only_matches_not_equals(evaluator):
    for operator in ("equals", "contains", "greater_than", "less_than", "in", "not_in", "percentage_change"):
        assert evaluator.evaluate(None, operator, "x") is False
    assert evaluator.evaluate(None, "not_equals", "x") is True
    assert evaluator.evaluate(None, "not_equals", None) is False


def test_unknown_operator_is_false(evaluator):
    assert evaluator.evaluate("High", "matches_regex", "H.*") is False
    assert "matches_regex" not in evaluator.supported_operators


def test_percentage_change_uses_threshold():
    assert exceeds_percentage_change(115, 100) is True
    assert exceeds_percentage_change(85, 100) is True
    assert exceeds_percentage_change(105, 100) is False
    assert exceeds_percentage_change(105, 100, threshold=2) is True


def test_percentage_change_zero_or_invalid_baseline():
    assert exceeds_percentage_change(50, 0) is False
    assert exceeds_percentage_change(50, "n/a") is False
    assert exceeds_percentage_change("n/a", 100) is False


def test_configured_percentage_threshold():
    evaluator = ConditionEvaluator(percentage_change_threshold=50)
    assert evaluator.evaluate(140, "percentage_change", 100) is False
    assert evaluator.evaluate(160, "percentage_change", 100) is True


def test_check_keeps_actual_value(evaluator):
    condition = Condition(metric="score", operator="greater_than", value=80)
    result = evaluator.check(condition, {"score": 91})
    assert result.matched is True
    assert result.actual == 91
    assert result.expected == 80


def test_field_alias_accepted(evaluator):
    condition = Condition.model_validate({"field": "status", "operator": "equals", "value": "Open"})
    assert condition.metric == "status"
    assert evaluator.evaluate_condition(condition, {"status": "Open"}) is True
