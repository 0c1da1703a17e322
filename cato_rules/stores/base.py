"""
Collaborator Interfaces

The engine reaches persistence only through these narrow async interfaces;
document-database adapters implement them outside this package.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from cato_rules.models import FiringRecord, FiringStatus, Rule


class RuleStore(ABC):
    """Source of tenant rules and owner of their firing statistics."""

    @abstractmethod
    async def get_enabled_rules(self, tenant_id: str) -> List[Rule]:
        """Return every enabled rule of the tenant."""
        raise NotImplementedError

    @abstractmethod
    async def increment_trigger_count(self, tenant_id: str, rule_id: str, fired_at: datetime) -> None:
        """
        Bump ``trigger_count`` and set ``last_triggered``.

        Must be atomic or conditional so two concurrent firings of the same
        rule never lose an increment.
        """
        raise NotImplementedError

    async def get_rule(self, tenant_id: str, rule_id: str) -> Optional[Rule]:
        """Return one rule, or None. The default only sees enabled rules."""
        for rule in await self.get_enabled_rules(tenant_id):
            if rule.id == rule_id:
                return rule
        return None


class HistoryQuery(ABC):
    """Read side of firing history used by the suppression gate."""

    @abstractmethod
    async def count_unresolved_firings(self, tenant_id: str, rule_id: str, since: datetime) -> int:
        """Count firings of the rule at or after ``since`` whose status is not resolved."""
        raise NotImplementedError


class FiringRecordSink(ABC):
    """Write side of firing history."""

    @abstractmethod
    async def save(self, record: FiringRecord) -> None:
        raise NotImplementedError

    @abstractmethod
    async def update(self, record: FiringRecord) -> None:
        raise NotImplementedError


class FiringStore(HistoryQuery, FiringRecordSink):
    """
    Full firing history: suppression counts, persistence, and the status
    transitions performed by external actors.

    ``update`` never undoes such a transition: once the stored record is
    acknowledged or resolved, its status fields win over the incoming copy.
    """

    @abstractmethod
    async def get(self, tenant_id: str, firing_id: str) -> Optional[FiringRecord]:
        raise NotImplementedError

    @abstractmethod
    async def find_firings(
        self,
        tenant_id: str,
        severities: Optional[List[str]] = None,
        statuses: Optional[List[FiringStatus]] = None,
        sources: Optional[List[str]] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[FiringRecord]:
        """
        Non-suppressed firings of a tenant, newest first.

        Every filter left as None matches everything.
        """
        raise NotImplementedError

    async def list_open(
        self,
        tenant_id: str,
        severities: Optional[List[str]] = None,
        sources: Optional[List[str]] = None
    ) -> List[FiringRecord]:
        """Firings that are neither acknowledged nor resolved, oldest first."""
        records = await self.find_firings(
            tenant_id,
            severities=severities,
            statuses=[FiringStatus.ACTIVE],
            sources=sources
        )
        return sorted(records, key=lambda r: r.fired_at)

    async def get_firing_summary(self, tenant_id: str, since: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Counts of a tenant's firings by status, severity and source.

        Args:
            tenant_id: Tenant to summarize
            since: Only firings at or after this time (all history if None)

        Returns:
            Dictionary with totals, per-status and per-severity counts, the
            busiest sources and the mean resolution time in minutes
        """
        records = await self.find_firings(tenant_id, since=since)

        by_status = {status.value: 0 for status in FiringStatus}
        by_severity: Dict[str, int] = {}
        by_source: Dict[str, int] = {}
        resolution_minutes = []

        for record in records:
            by_status[record.status.value] += 1
            by_severity[record.severity] = by_severity.get(record.severity, 0) + 1
            by_source[record.event.source] = by_source.get(record.event.source, 0) + 1
            if record.status == FiringStatus.RESOLVED and record.resolved_at:
                resolution_minutes.append((record.resolved_at - record.fired_at).total_seconds() / 60)

        top_sources = sorted(by_source.items(), key=lambda item: item[1], reverse=True)[:5]

        return {
            'tenant_id': tenant_id,
            'total_firings': len(records),
            'by_status': by_status,
            'by_severity': by_severity,
            'critical_firings': by_severity.get('critical', 0),
            'top_sources': [{'source': source, 'count': count} for source, count in top_sources],
            'average_resolution_minutes': (
                sum(resolution_minutes) / len(resolution_minutes) if resolution_minutes else 0.0
            )
        }

    @abstractmethod
    async def acknowledge(self, tenant_id: str, firing_id: str, acknowledged_by: str,
                          at: Optional[datetime] = None) -> FiringRecord:
        raise NotImplementedError

    @abstractmethod
    async def resolve(self, tenant_id: str, firing_id: str, resolved_by: str,
                      at: Optional[datetime] = None) -> FiringRecord:
        raise NotImplementedError
