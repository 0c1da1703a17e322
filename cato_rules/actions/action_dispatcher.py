"""
Action Dispatcher

Executes the actions of a fired rule through registered capability handlers
and keeps the firing record of the outcome.
"""

import asyncio
import inspect
import json
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from cato_rules.exceptions import UnknownActionTypeError
from cato_rules.models import (
    ActionContext,
    ActionExecution,
    ActionStatus,
    DispatchStatus,
    Event,
    EventReference,
    FiringRecord,
    Rule,
    RuleAction,
    new_firing_id
)
from cato_rules.resilience import call_with_timeout
from cato_rules.stores.base import FiringRecordSink, RuleStore


logger = logging.getLogger(__name__)

CapabilityHandler = Callable[[Dict[str, Any], ActionContext], Union[Any, Awaitable[Any]]]


class ActionDispatcher:
    """
    Run rule actions independently: a failing action is recorded and the
    next one still runs.
    """

    def __init__(
        self,
        handlers: Optional[Dict[str, CapabilityHandler]] = None,
        rule_store: Optional[RuleStore] = None,
        sink: Optional[FiringRecordSink] = None,
        action_timeout_seconds: Optional[float] = 30.0,
        sink_timeout_seconds: Optional[float] = 10.0,
        rule_store_timeout_seconds: Optional[float] = 10.0,
        concurrent: bool = False,
        clock: Callable[[], datetime] = datetime.now
    ):
        """
        Initialize the action dispatcher.

        Args:
            handlers: Capability handler per action type
            rule_store: Receives the trigger-count increment of each firing
            sink: Persists firing records
            action_timeout_seconds: Time budget for one handler call
            sink_timeout_seconds: Time budget for one sink call
            rule_store_timeout_seconds: Time budget for the trigger-count update
            concurrent: Run a rule's actions concurrently instead of in order
            clock: Returns the current time
        """
        self.handlers: Dict[str, CapabilityHandler] = dict(handlers or {})
        self.rule_store = rule_store
        self.sink = sink
        self.action_timeout_seconds = action_timeout_seconds
        self.sink_timeout_seconds = sink_timeout_seconds
        self.rule_store_timeout_seconds = rule_store_timeout_seconds
        self.concurrent = concurrent
        self.clock = clock

    def register(self, action_type: str, handler: CapabilityHandler) -> None:
        """Register (or replace) the handler for an action type."""
        self.handlers[action_type] = handler
        logger.debug(f"Registered capability handler: {action_type}")

    def register_many(self, handlers: Dict[str, CapabilityHandler]) -> None:
        for action_type, handler in handlers.items():
            self.register(action_type, handler)

    def list_action_types(self) -> List[str]:
        return list(self.handlers.keys())

    def create_record(self, rule: Rule, event: Event, suppressed: bool = False) -> FiringRecord:
        """
        Build the firing record for a match, every action pending.

        Suppressed records carry no actions and are marked skipped.
        """
        fired_at = self.clock()
        record = FiringRecord(
            id=new_firing_id(rule.tenant_id),
            tenant_id=rule.tenant_id,
            rule_id=rule.id,
            rule_name=rule.name,
            event=EventReference.from_event(event),
            fired_at=fired_at,
            suppressed=suppressed,
            severity=rule.severity,
            title=self._format_title(rule, event),
            message=self._format_message(rule, event, fired_at)
        )

        if suppressed:
            record.dispatch_status = DispatchStatus.SKIPPED
            return record

        record.actions_executed = [ActionExecution(type=action.type) for action in rule.actions]

        if rule.escalation_enabled:
            first = rule.escalation.next_level(record.escalation_level)
            if first is not None:
                record.next_escalation = fired_at + timedelta(minutes=first.delay_minutes)

        return record

    async def dispatch(self, rule: Rule, event: Event) -> FiringRecord:
        """
        Execute every action of a fired, unsuppressed rule.

        The record is saved before the first action runs and updated after the
        last one, whatever the outcome. The rule's trigger count is bumped once.
        """
        record = self.create_record(rule, event)
        await self._persist("save", record)

        context = ActionContext(
            tenant_id=rule.tenant_id,
            rule=rule,
            event=event,
            firing_id=record.id,
            escalation_level=record.escalation_level
        )

        logger.info(f"Executing {len(rule.actions)} action(s) for rule: {rule.id}")
        record.actions_executed = await self.run_actions(rule.actions, context)

        all_completed = all(a.status == ActionStatus.COMPLETED for a in record.actions_executed)
        record.dispatch_status = DispatchStatus.COMPLETED if all_completed else DispatchStatus.FAILED

        await self._persist("update", record)
        await self._record_trigger(rule, record.fired_at)

        return record

    async def run_actions(self, actions: List[RuleAction], context: ActionContext) -> List[ActionExecution]:
        """Run actions sequentially or concurrently; results keep the action order."""
        if self.concurrent:
            return list(await asyncio.gather(*(self.run_action(a, context) for a in actions)))

        results = []
        for action in actions:
            results.append(await self.run_action(action, context))
        return results

    async def run_action(
        self,
        action: RuleAction,
        context: ActionContext,
        parameters: Optional[Dict[str, Any]] = None
    ) -> ActionExecution:
        """
        Execute a single action. Never raises: failures become a failed entry.

        Args:
            action: Action to execute
            context: Firing context handed to the handler
            parameters: Overrides ``action.parameters`` (used by escalation)
        """
        execution = ActionExecution(type=action.type)
        params = dict(action.parameters if parameters is None else parameters)

        try:
            handler = self.handlers.get(action.type)
            if handler is None:
                raise UnknownActionTypeError(
                    f"Unknown action type: {action.type}",
                    component="ActionDispatcher",
                    tenant_id=context.tenant_id
                )

            result = handler(params, context)
            if inspect.isawaitable(result):
                result = await call_with_timeout(
                    result,
                    self.action_timeout_seconds,
                    collaborator=f"{action.type} handler",
                    tenant_id=context.tenant_id
                )

            execution.status = ActionStatus.COMPLETED
            execution.result = result
            logger.info(f"Action {action.type} completed for rule {context.rule.id}")

        except Exception as e:
            execution.status = ActionStatus.FAILED
            execution.error = str(e) or type(e).__name__
            logger.error(
                f"Action {action.type} failed for rule {context.rule.id} "
                f"(tenant {context.tenant_id}, firing {context.firing_id}): {execution.error}"
            )

        execution.executed_at = self.clock()
        return execution

    async def _persist(self, operation: str, record: FiringRecord) -> None:
        if self.sink is None:
            return

        try:
            await call_with_timeout(
                getattr(self.sink, operation)(record),
                self.sink_timeout_seconds,
                collaborator="FiringRecordSink",
                tenant_id=record.tenant_id
            )
        except Exception:
            logger.exception(f"Failed to {operation} firing record {record.id} for rule {record.rule_id}")

    async def _record_trigger(self, rule: Rule, fired_at: datetime) -> None:
        if self.rule_store is None:
            return

        try:
            await call_with_timeout(
                self.rule_store.increment_trigger_count(rule.tenant_id, rule.id, fired_at),
                self.rule_store_timeout_seconds,
                collaborator="RuleStore",
                tenant_id=rule.tenant_id
            )
        except Exception:
            logger.exception(f"Failed to update trigger statistics for rule {rule.id}")

    def _format_title(self, rule: Rule, event: Event) -> str:
        return f"[{rule.severity.upper()}] {event.source.upper()} Alert: {rule.name}"

    def _format_message(self, rule: Rule, event: Event, fired_at: datetime) -> str:
        message = f'Alert triggered for rule "{rule.name}" at {fired_at.isoformat(timespec="seconds")}.\n\n'
        message += f"Source: {event.source}\n"
        message += f"Description: {rule.description}\n"

        if event.data:
            message += "\nTrigger Data:\n"
            message += json.dumps(event.data, indent=2, default=str)

        return message
