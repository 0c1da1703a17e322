"""
Rule Parser

Parses rule definitions from YAML format.
"""

import logging
import re
import yaml
from typing import Dict, Any, List, Optional
from pathlib import Path
from datetime import datetime, timedelta

from pydantic import ValidationError as PydanticValidationError

from cato_rules.exceptions import RuleParseError
from cato_rules.models import (
    ActionType,
    ConditionOperator,
    Rule,
    ValidationResult
)


logger = logging.getLogger(__name__)

_TIME_WINDOW_RE = re.compile(r'^(\d+)([mhdw])$')
_TIME_WINDOW_UNITS = {
    'm': timedelta(minutes=1),
    'h': timedelta(hours=1),
    'd': timedelta(days=1),
    'w': timedelta(weeks=1),
}


def parse_time_window(window: str) -> Optional[timedelta]:
    """
    Parse a window such as '30m', '1h', '24h' or '7d'.

    Returns:
        The window as a timedelta, or None if the format is not recognised
    """
    match = _TIME_WINDOW_RE.match(window.strip()) if window else None
    if not match:
        return None
    return int(match.group(1)) * _TIME_WINDOW_UNITS[match.group(2)]


class RuleParser:
    """
    Parse rule definitions from YAML format.
    """

    def __init__(self, default_tenant_id: Optional[str] = None):
        """
        Initialize the rule parser.

        Args:
            default_tenant_id: Tenant assigned to rules that do not name one
        """
        self.default_tenant_id = default_tenant_id
        self.valid_operators = set(op.value for op in ConditionOperator)
        self.valid_action_types = set(a.value for a in ActionType)

    def parse_yaml_file(self, file_path: str) -> List[Rule]:
        """
        Parse rules from a YAML file.

        A file holds either one rule mapping or a ``rules:`` list.

        Raises:
            RuleParseError: If parsing fails
        """
        try:
            with open(file_path, 'r') as f:
                yaml_content = yaml.safe_load(f)
        except FileNotFoundError:
            raise RuleParseError(f"Rule file not found: {file_path}", component="RuleParser")
        except yaml.YAMLError as e:
            raise RuleParseError(f"Invalid YAML syntax in {file_path}: {e}", component="RuleParser")

        if not yaml_content:
            raise RuleParseError(f"Empty YAML file: {file_path}", component="RuleParser")

        if isinstance(yaml_content, dict) and 'rules' in yaml_content:
            tenant_id = yaml_content.get('tenant_id')
            entries = yaml_content['rules']
            if not isinstance(entries, list):
                raise RuleParseError(f"'rules' must be a list in {file_path}", component="RuleParser")
            return [self.parse_yaml_dict(entry, tenant_id=tenant_id) for entry in entries]

        return [self.parse_yaml_dict(yaml_content)]

    def parse_yaml_dict(self, yaml_data: Dict[str, Any], tenant_id: Optional[str] = None) -> Rule:
        """
        Parse a rule from a YAML dictionary.

        Args:
            yaml_data: YAML data as dictionary
            tenant_id: Tenant to use when the rule does not name one

        Raises:
            RuleParseError: If required fields are missing or invalid
        """
        if not isinstance(yaml_data, dict):
            raise RuleParseError("Rule definition must be a mapping", component="RuleParser")

        rule_id = yaml_data.get('id')
        if not rule_id:
            raise RuleParseError("Rule 'id' is required", component="RuleParser")

        if not yaml_data.get('name'):
            raise RuleParseError(f"Rule 'name' is required ({rule_id})", component="RuleParser")

        data = dict(yaml_data)
        data['tenant_id'] = data.get('tenant_id') or tenant_id or self.default_tenant_id
        if not data['tenant_id']:
            raise RuleParseError(f"Rule 'tenant_id' is required ({rule_id})", component="RuleParser")

        if not isinstance(data.get('triggers', []), list):
            raise RuleParseError(f"Triggers must be a list ({rule_id})", component="RuleParser")
        if not isinstance(data.get('actions', []), list):
            raise RuleParseError(f"Actions must be a list ({rule_id})", component="RuleParser")

        now = datetime.now()
        data.setdefault('created_at', now)
        data.setdefault('updated_at', now)

        try:
            return Rule.model_validate(data)
        except PydanticValidationError as e:
            raise RuleParseError(
                f"Invalid rule {rule_id}: {e}",
                component="RuleParser",
                tenant_id=data['tenant_id'],
                context={"rule_id": rule_id}
            )

    def validate_rule(self, rule: Rule) -> ValidationResult:
        """
        Validate a rule.

        Malformed constructs the engine tolerates (unknown operators, unknown
        action types) are reported as warnings: they never match or always fail.
        """
        errors = []
        warnings = []

        if not rule.triggers:
            errors.append("Rule has no triggers defined")

        for index, group in enumerate(rule.triggers):
            if not group.conditions:
                errors.append(f"Trigger group {index} has no conditions")
            for condition in group.conditions:
                if condition.operator not in self.valid_operators:
                    warnings.append(
                        f"Unknown operator '{condition.operator}' on '{condition.metric}' will never match"
                    )
                if condition.operator in (ConditionOperator.IN.value, ConditionOperator.NOT_IN.value) \
                        and not isinstance(condition.value, list):
                    warnings.append(
                        f"Operator '{condition.operator}' on '{condition.metric}' needs a list value"
                    )
                if condition.operator == ConditionOperator.PERCENTAGE_CHANGE.value:
                    warnings.append(
                        f"percentage_change on '{condition.metric}' compares against a fixed threshold; "
                        "the value is used as the baseline"
                    )
                if condition.time_window and parse_time_window(condition.time_window) is None:
                    warnings.append(f"Unrecognised time window '{condition.time_window}'")

        if not rule.actions:
            errors.append("Rule has no actions defined")

        for action in rule.actions:
            if action.type not in self.valid_action_types:
                warnings.append(f"Unknown action type '{action.type}' will always fail")

        if rule.suppression.enabled:
            if rule.suppression.max_firings_in_window == 0:
                warnings.append("Suppression limit is 0 - every firing will be suppressed")
            if rule.suppression.window_minutes == 0:
                warnings.append("Suppression window is 0 minutes - suppression has no effect")

        if rule.escalation and rule.escalation.enabled:
            if not rule.escalation.levels:
                errors.append("Escalation is enabled but has no levels")
            levels = [lvl.level for lvl in rule.escalation.levels]
            if len(levels) != len(set(levels)):
                errors.append("Escalation levels must be unique")
            delays = [lvl.delay_minutes for lvl in rule.escalation.sorted_levels()]
            if delays != sorted(delays):
                warnings.append("Escalation delays should grow with the level")

        if not rule.description:
            warnings.append("Rule has no description")

        return ValidationResult(
            valid=len(errors) == 0,
            errors=errors,
            warnings=warnings
        )

    def parse_multiple_files(self, directory: str) -> List[Rule]:
        """
        Parse all YAML rule files in a directory.

        Files that fail to parse are logged and skipped.

        Raises:
            RuleParseError: If the directory does not exist
        """
        rules = []
        rule_dir = Path(directory)

        if not rule_dir.exists():
            raise RuleParseError(f"Directory not found: {directory}", component="RuleParser")

        files = sorted(list(rule_dir.glob('*.yaml')) + list(rule_dir.glob('*.yml')))
        for yaml_file in files:
            try:
                rules.extend(self.parse_yaml_file(str(yaml_file)))
            except RuleParseError as e:
                logger.warning(f"Failed to parse {yaml_file}: {e}")

        logger.info(f"Loaded {len(rules)} rules from {directory}")
        return rules

    def rule_to_yaml(self, rule: Rule) -> str:
        """
        Convert a rule to YAML string.

        Engine-maintained statistics are left out.
        """
        rule_dict = rule.to_dict()

        for key in ('created_at', 'updated_at', 'trigger_count', 'last_triggered'):
            rule_dict.pop(key, None)
        if rule_dict.get('escalation') is None:
            rule_dict.pop('escalation', None)

        return yaml.safe_dump(rule_dict, default_flow_style=False, sort_keys=False)

    def save_rule_to_file(self, rule: Rule, file_path: str):
        """
        Save a rule to YAML file.
        """
        yaml_content = self.rule_to_yaml(rule)

        with open(file_path, 'w') as f:
            f.write(yaml_content)
