"""
Escalation Scheduler

Re-notifies broader audiences about firings that stay unresolved. Escalation
is driven by elapsed time only; trigger conditions are never re-evaluated.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from cato_rules.actions.action_dispatcher import ActionDispatcher
from cato_rules.models import (
    ActionContext,
    ActionType,
    EscalationHistoryEntry,
    EscalationLevel,
    Event,
    FiringRecord,
    Rule,
    RuleAction
)
from cato_rules.resilience import call_with_timeout
from cato_rules.stores.base import FiringStore, RuleStore


logger = logging.getLogger(__name__)

ESCALATION_ACTION_TYPES = (ActionType.NOTIFY.value, ActionType.ESCALATE.value)
RECIPIENT_KEYS = ("recipients", "escalate_to", "escalateTo")


class EscalationScheduler:
    """
    Computes escalation times and performs due escalations.
    """

    def __init__(
        self,
        dispatcher: ActionDispatcher,
        firing_store: Optional[FiringStore] = None,
        rule_store: Optional[RuleStore] = None,
        store_timeout_seconds: Optional[float] = 10.0,
        clock: Callable[[], datetime] = datetime.now
    ):
        """
        Initialize the escalation scheduler.

        Args:
            dispatcher: Runs the notify/escalate handlers for a new level
            firing_store: Source of open firings and sink for their updates
            rule_store: Resolves the rule of a stored firing
            store_timeout_seconds: Time budget for one store call
            clock: Returns the current time
        """
        self.dispatcher = dispatcher
        self.firing_store = firing_store
        self.rule_store = rule_store
        self.store_timeout_seconds = store_timeout_seconds
        self.clock = clock

    def next_level(self, rule: Rule, record: FiringRecord) -> Optional[EscalationLevel]:
        """The level the firing escalates to next, or None when escalation is over."""
        if not rule.escalation_enabled:
            return None
        return rule.escalation.next_level(record.escalation_level)

    def next_escalation_time(self, rule: Rule, record: FiringRecord) -> Optional[datetime]:
        """``fired_at`` plus the next level's delay."""
        level = self.next_level(rule, record)
        if level is None:
            return None
        return record.fired_at + timedelta(minutes=level.delay_minutes)

    def is_due(self, rule: Rule, record: FiringRecord, now: Optional[datetime] = None) -> bool:
        if record.suppressed or not record.is_open:
            return False
        due_at = self.next_escalation_time(rule, record)
        return due_at is not None and (now or self.clock()) >= due_at

    def level_parameters(self, action: RuleAction, level: EscalationLevel) -> Dict[str, Any]:
        """
        Parameters for re-running ``action`` at ``level``.

        The level's recipients replace every recipient key of the action and
        its channels replace the action's channels. A level that leaves either
        empty keeps the action's own values.
        """
        parameters = dict(action.parameters)
        parameters["escalation_level"] = level.level

        if level.recipients:
            for key in RECIPIENT_KEYS:
                parameters.pop(key, None)
            parameters["recipients"] = list(level.recipients)
            if action.type == ActionType.ESCALATE.value:
                parameters["escalate_to"] = list(level.recipients)

        if level.channels:
            parameters["channels"] = list(level.channels)

        return parameters

    async def escalate_if_due(
        self,
        rule: Rule,
        record: FiringRecord,
        now: Optional[datetime] = None
    ) -> Optional[EscalationHistoryEntry]:
        """
        Escalate the firing by one level if that level's time has come.

        Stops for acknowledged or resolved firings and after the highest level.
        The record is modified in place and written back to the firing store.

        Returns:
            The new history entry, or None if nothing was escalated
        """
        now = now or self.clock()

        if not self.is_due(rule, record, now):
            if record.is_open:
                record.next_escalation = self.next_escalation_time(rule, record)
            return None

        level = self.next_level(rule, record)
        context = ActionContext(
            tenant_id=record.tenant_id,
            rule=rule,
            event=Event(
                source=record.event.source,
                data=record.event.data,
                timestamp=record.event.timestamp,
                type=record.event.type
            ),
            firing_id=record.id,
            escalation_level=level.level
        )

        actions = [a for a in rule.actions if a.type in ESCALATION_ACTION_TYPES]
        if not actions:
            actions = [RuleAction(type=ActionType.NOTIFY.value)]

        executions = []
        for action in actions:
            executions.append(await self.dispatcher.run_action(
                action, context, parameters=self.level_parameters(action, level)
            ))

        entry = EscalationHistoryEntry(
            level=level.level,
            escalated_at=now,
            recipients=list(level.recipients),
            channels=list(level.channels),
            actions=executions
        )
        record.escalation_history.append(entry)
        record.escalation_level = level.level
        record.next_escalation = self.next_escalation_time(rule, record)

        logger.warning(
            f"Firing {record.id} of rule {rule.id} escalated to level {level.level} "
            f"({', '.join(level.recipients) or 'no recipients'})"
        )

        await self._update(record)
        return entry

    async def run_due(self, tenant_id: str, now: Optional[datetime] = None) -> List[FiringRecord]:
        """
        Escalate every open firing of a tenant that is due.

        A firing overdue for several levels is escalated through each of them.
        One failing firing does not stop the others.

        Returns:
            Firings that were escalated at least once
        """
        if self.firing_store is None or self.rule_store is None:
            raise ValueError("run_due needs both a firing store and a rule store")

        now = now or self.clock()
        records = await call_with_timeout(
            self.firing_store.list_open(tenant_id),
            self.store_timeout_seconds,
            collaborator="FiringStore",
            tenant_id=tenant_id
        )

        rules: Dict[str, Optional[Rule]] = {}
        escalated = []

        for record in records:
            try:
                if record.rule_id not in rules:
                    rules[record.rule_id] = await call_with_timeout(
                        self.rule_store.get_rule(tenant_id, record.rule_id),
                        self.store_timeout_seconds,
                        collaborator="RuleStore",
                        tenant_id=tenant_id
                    )
                rule = rules[record.rule_id]
                if rule is None:
                    logger.warning(f"Firing {record.id} refers to unknown rule {record.rule_id}")
                    continue

                escalated_once = False
                while True:
                    await self._refresh_lifecycle(record)
                    if await self.escalate_if_due(rule, record, now) is None:
                        break
                    escalated_once = True
                if escalated_once:
                    escalated.append(record)

            except Exception:
                logger.exception(f"Escalation failed for firing {record.id} (tenant {tenant_id})")

        return escalated

    async def _update(self, record: FiringRecord) -> None:
        if self.firing_store is None:
            return

        try:
            await call_with_timeout(
                self.firing_store.update(record),
                self.store_timeout_seconds,
                collaborator="FiringStore",
                tenant_id=record.tenant_id
            )
        except Exception:
            logger.exception(f"Failed to store escalation of firing {record.id}")

    async def _refresh_lifecycle(self, record: FiringRecord) -> None:
        """Pick up an acknowledge or resolve made since the record was read."""
        stored = await call_with_timeout(
            self.firing_store.get(record.tenant_id, record.id),
            self.store_timeout_seconds,
            collaborator="FiringStore",
            tenant_id=record.tenant_id
        )
        if stored is not None:
            record.merge_lifecycle(stored)
