"""
Rule Matcher

Decides whether a rule fires for an event: AND within a trigger group,
OR across groups.
"""

from datetime import datetime
from typing import Optional

from cato_rules.evaluator.condition_evaluator import ConditionEvaluator
from cato_rules.models import Event, Rule, RuleEvaluationResult, TriggerGroupResult


class RuleMatcher:
    """
    Match rules against events.
    """

    def __init__(self, condition_evaluator: Optional[ConditionEvaluator] = None):
        self.condition_evaluator = condition_evaluator or ConditionEvaluator()

    def matches(self, rule: Rule, event: Event) -> bool:
        """
        Check whether any applicable trigger group of the rule holds for the event.

        Disabled rules, rules without triggers and groups without conditions
        never match.
        """
        if not rule.enabled or not rule.triggers:
            return False

        for group in rule.triggers:
            if not group.applies_to(event.source) or not group.conditions:
                continue

            if all(
                self.condition_evaluator.evaluate_condition(condition, event.data)
                for condition in group.conditions
            ):
                return True

        return False

    def explain(self, rule: Rule, event: Event) -> RuleEvaluationResult:
        """
        Evaluate every group and condition without short-circuiting.

        Used to test a rule against a sample event; the ``matched`` flag
        agrees with :meth:`matches`.
        """
        if not rule.enabled:
            return RuleEvaluationResult(rule_id=rule.id, matched=False, reason="rule is disabled")
        if not rule.triggers:
            return RuleEvaluationResult(rule_id=rule.id, matched=False, reason="rule has no triggers")

        groups = []
        for index, group in enumerate(rule.triggers):
            applicable = group.applies_to(event.source)
            checks = [
                self.condition_evaluator.check(condition, event.data)
                for condition in group.conditions
            ] if applicable else []
            groups.append(TriggerGroupResult(
                index=index,
                source=group.source,
                applicable=applicable,
                matched=applicable and bool(checks) and all(c.matched for c in checks),
                conditions=checks
            ))

        matched = any(g.matched for g in groups)
        reason = None
        if not any(g.applicable for g in groups):
            reason = f"no trigger group listens to source '{event.source}'"

        return RuleEvaluationResult(
            rule_id=rule.id,
            matched=matched,
            groups=groups,
            evaluation_time=datetime.now(),
            reason=reason
        )
