"""
In-Memory Stores

Process-local rule and firing stores. The rule store applies the same
compare-and-set discipline a document database adapter uses with etags.
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional

from cato_rules.exceptions import ConcurrentUpdateError, FiringStoreError, RuleNotFoundError
from cato_rules.models import FiringRecord, FiringStatus, Rule
from cato_rules.parser import RuleParser
from cato_rules.resilience import retry_on_exception
from cato_rules.stores.base import FiringStore, RuleStore


logger = logging.getLogger(__name__)


class InMemoryRuleStore(RuleStore):
    """
    Rules held in a per-tenant dictionary.

    Readers always receive copies, so a rule handed to one evaluation pass is
    never mutated by another.
    """

    def __init__(self, rules: Optional[List[Rule]] = None, max_attempts: int = 5):
        self.max_attempts = max_attempts
        self._rules: Dict[str, Dict[str, Rule]] = {}
        for rule in rules or []:
            self.add_rule(rule)

    @classmethod
    def from_directory(cls, directory: str, parser: Optional[RuleParser] = None,
                       max_attempts: int = 5) -> "InMemoryRuleStore":
        """Build a store from a directory of YAML rule files."""
        parser = parser or RuleParser()
        return cls(parser.parse_multiple_files(directory), max_attempts=max_attempts)

    def add_rule(self, rule: Rule) -> None:
        now = datetime.now()
        stored = rule.model_copy(deep=True)
        stored.created_at = stored.created_at or now
        stored.updated_at = now
        self._rules.setdefault(rule.tenant_id, {})[rule.id] = stored
        logger.info(f"Added rule: {rule.id} (tenant {rule.tenant_id})")

    def update_rule(self, rule: Rule) -> Rule:
        """
        Replace a rule, conditional on the caller holding the current version.

        Raises:
            RuleNotFoundError: If the rule does not exist
            ConcurrentUpdateError: If the rule changed since it was read
        """
        current = self._require(rule.tenant_id, rule.id)
        if current.version != rule.version:
            raise ConcurrentUpdateError(
                f"Rule {rule.id} is at version {current.version}, update was based on {rule.version}",
                component="InMemoryRuleStore",
                tenant_id=rule.tenant_id,
                context={"rule_id": rule.id}
            )

        stored = rule.model_copy(deep=True)
        stored.version = current.version + 1
        stored.created_at = current.created_at
        stored.updated_at = datetime.now()
        self._rules[rule.tenant_id][rule.id] = stored
        return stored.model_copy(deep=True)

    def remove_rule(self, tenant_id: str, rule_id: str) -> None:
        tenant_rules = self._rules.get(tenant_id, {})
        if rule_id in tenant_rules:
            del tenant_rules[rule_id]
            logger.info(f"Removed rule: {rule_id} (tenant {tenant_id})")

    def list_rules(self, tenant_id: str, enabled_only: bool = False) -> List[Rule]:
        rules = list(self._rules.get(tenant_id, {}).values())
        if enabled_only:
            rules = [r for r in rules if r.enabled]
        return [r.model_copy(deep=True) for r in rules]

    async def get_enabled_rules(self, tenant_id: str) -> List[Rule]:
        return self.list_rules(tenant_id, enabled_only=True)

    async def get_rule(self, tenant_id: str, rule_id: str) -> Optional[Rule]:
        rule = self._rules.get(tenant_id, {}).get(rule_id)
        return rule.model_copy(deep=True) if rule else None

    @retry_on_exception((ConcurrentUpdateError,))
    async def increment_trigger_count(self, tenant_id: str, rule_id: str, fired_at: datetime) -> None:
        snapshot = self._require(tenant_id, rule_id).model_copy(deep=True)
        # Yield between read and write, as a remote store would.
        await asyncio.sleep(0)

        snapshot.trigger_count += 1
        if snapshot.last_triggered is None or fired_at > snapshot.last_triggered:
            snapshot.last_triggered = fired_at
        self.update_rule(snapshot)

    def _require(self, tenant_id: str, rule_id: str) -> Rule:
        rule = self._rules.get(tenant_id, {}).get(rule_id)
        if rule is None:
            raise RuleNotFoundError(
                f"Rule not found: {rule_id}",
                component="InMemoryRuleStore",
                tenant_id=tenant_id
            )
        return rule


class InMemoryFiringStore(FiringStore):
    """Firing records kept in a dictionary keyed by firing id."""

    def __init__(self):
        self._records: Dict[str, FiringRecord] = {}

    async def save(self, record: FiringRecord) -> None:
        self._records[record.id] = record.model_copy(deep=True)

    async def update(self, record: FiringRecord) -> None:
        current = self._records.get(record.id)
        if current is None:
            raise FiringStoreError(
                f"Firing record not found: {record.id}",
                component="InMemoryFiringStore",
                tenant_id=record.tenant_id
            )
        incoming = record.model_copy(deep=True)
        incoming.merge_lifecycle(current)
        self._records[record.id] = incoming

    async def get(self, tenant_id: str, firing_id: str) -> Optional[FiringRecord]:
        record = self._records.get(firing_id)
        if record is None or record.tenant_id != tenant_id:
            return None
        return record.model_copy(deep=True)

    async def find_firings(
        self,
        tenant_id: str,
        severities: Optional[List[str]] = None,
        statuses: Optional[List[FiringStatus]] = None,
        sources: Optional[List[str]] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[FiringRecord]:
        records = [
            r for r in self._records.values()
            if r.tenant_id == tenant_id
            and (severities is None or r.severity in severities)
            and (statuses is None or r.status in statuses)
            and (sources is None or r.event.source in sources)
            and (since is None or r.fired_at >= since)
        ]
        records.sort(key=lambda r: r.fired_at, reverse=True)
        if limit is not None:
            records = records[:limit]
        return [r.model_copy(deep=True) for r in records]

    def list_firings(self, tenant_id: str, rule_id: Optional[str] = None) -> List[FiringRecord]:
        records = [
            r for r in self._records.values()
            if r.tenant_id == tenant_id and (rule_id is None or r.rule_id == rule_id)
        ]
        return sorted((r.model_copy(deep=True) for r in records), key=lambda r: r.fired_at)

    async def count_unresolved_firings(self, tenant_id: str, rule_id: str, since: datetime) -> int:
        return sum(
            1 for r in self._records.values()
            if r.tenant_id == tenant_id
            and r.rule_id == rule_id
            and r.fired_at >= since
            and r.status != FiringStatus.RESOLVED
        )

    async def acknowledge(self, tenant_id: str, firing_id: str, acknowledged_by: str,
                          at: Optional[datetime] = None) -> FiringRecord:
        record = self._require(tenant_id, firing_id)
        record.status = FiringStatus.ACKNOWLEDGED
        record.acknowledged_by = acknowledged_by
        record.acknowledged_at = at or datetime.now()
        return record.model_copy(deep=True)

    async def resolve(self, tenant_id: str, firing_id: str, resolved_by: str,
                      at: Optional[datetime] = None) -> FiringRecord:
        record = self._require(tenant_id, firing_id)
        record.status = FiringStatus.RESOLVED
        record.resolved_by = resolved_by
        record.resolved_at = at or datetime.now()
        return record.model_copy(deep=True)

    def _require(self, tenant_id: str, firing_id: str) -> FiringRecord:
        record = self._records.get(firing_id)
        if record is None or record.tenant_id != tenant_id:
            raise FiringStoreError(
                f"Firing record not found: {firing_id}",
                component="InMemoryFiringStore",
                tenant_id=tenant_id
            )
        return record
