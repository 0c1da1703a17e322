"""
Rules Engine Main Class

Single entry point shared by POA&M workflow automation, proactive alerting
and notification routing: match, suppress, dispatch.
"""

import logging
from collections import Counter
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from cato_rules.actions import ActionDispatcher, CapabilityHandler, SuppressionGate
from cato_rules.config import CatoRulesConfig, EngineConfig, load_config
from cato_rules.escalation import EscalationScheduler
from cato_rules.evaluator import ConditionEvaluator, RuleMatcher
from cato_rules.exceptions import RuleNotFoundError, RuleStoreUnavailableError
from cato_rules.handlers import build_router
from cato_rules.logging_setup import setup_logging
from cato_rules.models import Event, FiringRecord, Rule, RuleEvaluationResult
from cato_rules.resilience import call_with_timeout
from cato_rules.stores import (
    FiringRecordSink,
    FiringStore,
    HistoryQuery,
    InMemoryRuleStore,
    RuleStore,
    SqliteFiringStore
)


class RulesEngine:
    """
    Main rules engine façade.

    Collaborators are injected once at process start; the engine keeps no
    state between evaluation passes besides what they store.
    """

    def __init__(
        self,
        rule_store: RuleStore,
        history_query: HistoryQuery,
        sink: Optional[FiringRecordSink] = None,
        handlers: Optional[Dict[str, CapabilityHandler]] = None,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize rules engine.

        Args:
            rule_store: Source of tenant rules
            history_query: Unresolved-firing counts for suppression
            sink: Firing record persistence (defaults to history_query when it is one)
            handlers: Capability handler per action type
            config: Timeouts and dispatch mode
            clock: Returns the current time
            logger: Optional logger instance
        """
        self.config = config or EngineConfig()
        self.logger = logger or logging.getLogger(__name__)
        self.rule_store = rule_store

        if sink is None and isinstance(history_query, FiringRecordSink):
            sink = history_query

        self.matcher = RuleMatcher(ConditionEvaluator(self.config.percentage_change_threshold))
        self.suppression_gate = SuppressionGate(
            history_query,
            timeout_seconds=self.config.history_query_timeout_seconds,
            clock=clock
        )
        self.dispatcher = ActionDispatcher(
            handlers=handlers,
            rule_store=rule_store,
            sink=sink,
            action_timeout_seconds=self.config.action_timeout_seconds,
            sink_timeout_seconds=self.config.sink_timeout_seconds,
            rule_store_timeout_seconds=self.config.rule_store_timeout_seconds,
            concurrent=self.config.concurrent_actions,
            clock=clock
        )
        self.escalation = EscalationScheduler(
            self.dispatcher,
            firing_store=sink if isinstance(sink, FiringStore) else None,
            rule_store=rule_store,
            store_timeout_seconds=self.config.sink_timeout_seconds,
            clock=clock
        )

    @classmethod
    def from_config(
        cls,
        config: CatoRulesConfig,
        handlers: Optional[Dict[str, CapabilityHandler]] = None
    ) -> "RulesEngine":
        """Build an engine over the YAML rule directory and the SQLite firing store."""
        rule_store = InMemoryRuleStore.from_directory(
            config.storage.rules_path,
            max_attempts=config.engine.increment_max_attempts
        )
        firing_store = SqliteFiringStore(
            config.storage.firings_db_path,
            retention_days=config.storage.retention_days
        )
        return cls(rule_store, firing_store, handlers=handlers, config=config.engine)

    def register_handler(self, action_type: str, handler: CapabilityHandler) -> None:
        self.dispatcher.register(action_type, handler)

    async def load_rules(self, tenant_id: str) -> List[Rule]:
        """
        Load the tenant's enabled rules, highest priority first.

        Raises:
            RuleStoreUnavailableError: If the rule store fails or times out
        """
        try:
            rules = await call_with_timeout(
                self.rule_store.get_enabled_rules(tenant_id),
                self.config.rule_store_timeout_seconds,
                collaborator="RuleStore",
                tenant_id=tenant_id
            )
        except Exception as e:
            self.logger.error(f"Failed to load rules for tenant {tenant_id}: {e}")
            raise RuleStoreUnavailableError(
                f"Rule store unavailable for tenant {tenant_id}: {e}",
                component="RuleStore",
                tenant_id=tenant_id
            ) from e

        return sorted(rules, key=lambda r: r.priority, reverse=True)

    async def evaluate(self, tenant_id: str, event: Event) -> List[FiringRecord]:
        """
        Evaluate an event against every enabled rule of the tenant.

        Returns:
            One record per matching rule, in dispatch order. Suppressed matches
            are included with ``suppressed=True`` and no actions.

        Raises:
            RuleStoreUnavailableError: If the tenant's rules cannot be loaded
        """
        rules = await self.load_rules(tenant_id)
        results: List[FiringRecord] = []

        for rule in rules:
            try:
                record = await self.evaluate_rule(rule, event)
            except Exception:
                self.logger.exception(
                    f"Evaluation of rule {rule.id} failed for event from {event.source}"
                )
                continue

            if record is not None:
                results.append(record)

        fired = sum(1 for r in results if not r.suppressed)
        if results:
            self.logger.info(
                f"{fired} rule(s) fired, {len(results) - fired} suppressed "
                f"for tenant {tenant_id} ({event.source})"
            )

        return results

    async def evaluate_rule(self, rule: Rule, event: Event) -> Optional[FiringRecord]:
        """Match, suppress and dispatch a single rule. None if it does not match."""
        if not self.matcher.matches(rule, event):
            return None

        if await self.suppression_gate.is_suppressed(rule, event):
            return self.dispatcher.create_record(rule, event, suppressed=True)

        return await self.dispatcher.dispatch(rule, event)

    async def test_rule(self, tenant_id: str, rule_id: str, event: Event) -> RuleEvaluationResult:
        """
        Test a rule against an event without suppression or dispatch.

        Raises:
            RuleNotFoundError: If the rule does not exist
        """
        rule = await call_with_timeout(
            self.rule_store.get_rule(tenant_id, rule_id),
            self.config.rule_store_timeout_seconds,
            collaborator="RuleStore",
            tenant_id=tenant_id
        )
        if rule is None:
            raise RuleNotFoundError(f"Rule not found: {rule_id}", component="RulesEngine", tenant_id=tenant_id)

        return self.matcher.explain(rule, event)

    async def run_escalations(self, tenant_id: str, now: Optional[datetime] = None) -> List[FiringRecord]:
        """Escalate the tenant's open firings that are due."""
        return await self.escalation.run_due(tenant_id, now)

    async def get_active_firings(
        self,
        tenant_id: str,
        severities: Optional[List[str]] = None,
        sources: Optional[List[str]] = None
    ) -> List[FiringRecord]:
        """Open firings of the tenant, optionally narrowed by severity and source."""
        return await call_with_timeout(
            self._firing_store().list_open(tenant_id, severities=severities, sources=sources),
            self.config.sink_timeout_seconds,
            collaborator="FiringStore",
            tenant_id=tenant_id
        )

    async def get_firing_summary(self, tenant_id: str, since: Optional[datetime] = None) -> Dict[str, Any]:
        """Firing counts of the tenant by status, severity and source."""
        return await call_with_timeout(
            self._firing_store().get_firing_summary(tenant_id, since=since),
            self.config.sink_timeout_seconds,
            collaborator="FiringStore",
            tenant_id=tenant_id
        )

    def _firing_store(self) -> FiringStore:
        if self.escalation.firing_store is None:
            raise ValueError("The engine was built without a firing store")
        return self.escalation.firing_store

    async def get_summary(self, tenant_id: str) -> Dict[str, Any]:
        """
        Get summary of the tenant's active rule set.
        """
        rules = await self.load_rules(tenant_id)

        sources = Counter(group.source for rule in rules for group in rule.triggers)
        action_types = Counter(action.type for rule in rules for action in rule.actions)

        return {
            'tenant_id': tenant_id,
            'enabled_rules': len(rules),
            'suppression_enabled': sum(1 for r in rules if r.suppression.enabled),
            'escalation_enabled': sum(1 for r in rules if r.escalation_enabled),
            'sources': dict(sources),
            'action_types': dict(action_types),
            'registered_handlers': self.dispatcher.list_action_types(),
            'total_triggers': sum(r.trigger_count for r in rules)
        }


def create_engine(
    config_path: Optional[str] = None,
    handlers: Optional[Dict[str, CapabilityHandler]] = None,
    configure_logging: bool = True
) -> RulesEngine:
    """
    Load configuration and build a ready-to-use engine.

    Without explicit handlers the engine routes ``notify`` and ``escalate``
    through the configured notification channels.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    config = load_config(config_path)
    if configure_logging:
        setup_logging(config.system.log_level)

    if handlers is None:
        handlers = build_router(config.notification).as_registry()

    engine = RulesEngine.from_config(config, handlers=handlers)
    logging.getLogger(__name__).info(
        f"Rules engine ready ({config.system.environment}, rules from {config.storage.rules_path})"
    )
    return engine
