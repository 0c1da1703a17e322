import pytest
from datetime import timedelta
from pathlib import Path

from cato_rules.exceptions import RuleParseError
from cato_rules.parser import RuleParser, parse_time_window

from conftest import make_rule

SINGLE_RULE = """
id: overdue-high-poam
tenant_id: tenant-a
name: Overdue high POA&M
description: Escalate high severity POA&Ms that are past due
priority: high
triggers:
  - type: threshold
    source: poam
    conditions:
      - field: severity
        operator: equals
        value: High
      - metric: days_overdue
        operator: greater_than
        value: 30
        time_window: 7d
actions:
  - type: assign
    params:
      assignee: isso@example.gov
  - type: notify
suppression:
  enabled: true
  window_minutes: 30
  max_firings_in_window: 1
escalation:
  enabled: true
  levels:
    - level: 1
      delay_minutes: 60
      recipients: [isso@example.gov]
"""

RULE_LIST = """
tenant_id: tenant-b
rules:
  - id: r1
    name: First
    triggers:
      - source: all
        conditions:
          - metric: status
            operator: equals
            value: Failed
    actions:
      - type: notify
  - id: r2
    name: Second
    tenant_id: tenant-c
    actions:
      - type: notify
"""


@pytest.fixture
def parser():
    return RuleParser()


def test_parse_single_rule_file(parser, tmp_path):
    path = tmp_path / "rule.yaml"
    path.write_text(SINGLE_RULE)

    [rule] = parser.parse_yaml_file(str(path))

    assert rule.id == "overdue-high-poam"
    assert rule.priority == 3
    assert rule.triggers[0].conditions[0].metric == "severity"
    assert rule.triggers[0].conditions[1].time_window == "7d"
    assert rule.actions[0].parameters == {"assignee": "isso@example.gov"}
    assert rule.suppression.window_minutes == 30
    assert rule.escalation_enabled is True
    assert rule.created_at is not None


def test_parse_rule_list_inherits_tenant(parser, tmp_path):
    path = tmp_path / "rules.yml"
    path.write_text(RULE_LIST)

    rules = parser.parse_yaml_file(str(path))

    assert [(r.id, r.tenant_id) for r in rules] == [("r1", "tenant-b"), ("r2", "tenant-c")]


@pytest.mark.parametrize("data,message", [
    ({"name": "x", "tenant_id": "t"}, "'id' is required"),
    ({"id": "x", "tenant_id": "t"}, "'name' is required"),
    ({"id": "x", "name": "x"}, "'tenant_id' is required"),
    ({"id": "x", "name": "x", "tenant_id": "t", "triggers": "poam"}, "Triggers must be a list"),
    ({"id": "x", "name": "x", "tenant_id": "t", "priority": "urgent"}, "Invalid rule x"),
])
def test_parse_errors(parser, data, message):
    with pytest.raises(RuleParseError, match=message):
        parser.parse_yaml_dict(data)


def test_default_tenant(tmp_path):
    rule = RuleParser(default_tenant_id="tenant-z").parse_yaml_dict({"id": "x", "name": "x"})
    assert rule.tenant_id == "tenant-z"


def test_invalid_yaml(parser, tmp_path):
    path = tmp_path / "broken.yaml"
    path.write_text("id: [unclosed")
    with pytest.raises(RuleParseError, match="Invalid YAML"):
        parser.parse_yaml_file(str(path))


def test_parse_directory_skips_bad_files(parser, tmp_path):
    (tmp_path / "a.yaml").write_text(SINGLE_RULE)
    (tmp_path / "b.yml").write_text(RULE_LIST)
    (tmp_path / "c.yaml").write_text("name: missing id")
    (tmp_path / "notes.txt").write_text("ignored")

    rules = parser.parse_multiple_files(str(tmp_path))

    assert [r.id for r in rules] == ["overdue-high-poam", "r1", "r2"]


def test_parse_missing_directory(parser, tmp_path):
    with pytest.raises(RuleParseError):
        parser.parse_multiple_files(str(tmp_path / "nope"))


def test_validate_rule_errors(parser):
    result = parser.validate_rule(make_rule(
        triggers=[],
        actions=[],
        escalation={"enabled": True, "levels": []}
    ))

    assert result.valid is False
    assert "Rule has no triggers defined" in result.errors
    assert "Rule has no actions defined" in result.errors
    assert "Escalation is enabled but has no levels" in result.errors


def test_validate_rule_warnings(parser):
    rule = make_rule(
        description="",
        triggers=[{"source": "poam", "conditions": [
            {"metric": "a", "operator": "regex", "value": "x"},
            {"metric": "b", "operator": "in", "value": "x"},
            {"metric": "c", "operator": "equals", "value": 1, "time_window": "fortnight"},
        ]}],
        actions=[{"type": "page_oncall"}],
        suppression={"enabled": True, "window_minutes": 60, "max_firings_in_window": 0},
    )
    result = parser.validate_rule(rule)

    assert result.valid is True
    assert len(result.warnings) == 6


def test_validate_good_rule(parser):
    result = parser.validate_rule(make_rule())
    assert result.valid is True
    assert result.warnings == []


def test_yaml_export_round_trips(parser, tmp_path):
    rule = make_rule(escalation={"enabled": True, "levels": [{"level": 1, "delay_minutes": 15}]})
    path = tmp_path / "out.yaml"
    parser.save_rule_to_file(rule, str(path))

    [loaded] = parser.parse_yaml_file(str(path))

    assert loaded.triggers == rule.triggers
    assert loaded.actions == rule.actions
    assert loaded.escalation == rule.escalation
    assert "trigger_count" not in path.read_text()


@pytest.mark.parametrize("window,expected", [
    ("30m", timedelta(minutes=30)),
    ("24h", timedelta(hours=24)),
    ("7d", timedelta(days=7)),
    ("2w", timedelta(weeks=2)),
    ("7 days", None),
    ("", None),
])
def test_parse_time_window(window, expected):
    assert parse_time_window(window) == expected


def test_example_rules_are_valid(parser):
    rules_dir = Path(__file__).resolve().parent.parent / "rules"
    rules = parser.parse_multiple_files(str(rules_dir))

    assert {r.id for r in rules} == {"overdue-high-poam", "compliance-score-drop", "emass-sync-failure"}
    for rule in rules:
        assert parser.validate_rule(rule).valid, rule.id
