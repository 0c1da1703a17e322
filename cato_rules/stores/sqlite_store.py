"""
SQLite Firing Store

Persists firing records and answers suppression-window history queries.
"""

import asyncio
import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from cato_rules.exceptions import FiringStoreError, HistoryQueryError
from cato_rules.models import FiringRecord, FiringStatus
from cato_rules.stores.base import FiringStore


logger = logging.getLogger(__name__)


class SqliteFiringStore(FiringStore):
    """
    Firing history in a local SQLite database.

    The full record is kept as JSON; the columns used in WHERE clauses are
    duplicated next to it. Blocking SQLite calls run in a worker thread.
    """

    def __init__(self, db_path: str = "cato_firings.db", retention_days: int = 90):
        """
        Initialize the firing store.

        Args:
            db_path: Path to SQLite database file
            retention_days: Days of resolved history kept by ``clear_old_firings``
        """
        self.db_path = db_path
        self.retention_days = retention_days
        self._init_database()

    def _init_database(self):
        """Initialize database schema."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS firing_records (
                    id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    rule_id TEXT NOT NULL,
                    fired_at TIMESTAMP NOT NULL,
                    status TEXT NOT NULL,
                    payload TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_firing_records_rule
                ON firing_records(tenant_id, rule_id, fired_at)
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_firing_records_status
                ON firing_records(tenant_id, status)
            """)

            conn.commit()

    async def save(self, record: FiringRecord) -> None:
        try:
            await asyncio.to_thread(self._upsert, record)
        except sqlite3.Error as e:
            raise FiringStoreError(
                f"Failed to save firing record {record.id}: {e}",
                component="SqliteFiringStore",
                tenant_id=record.tenant_id
            )

    async def update(self, record: FiringRecord) -> None:
        try:
            updated = await asyncio.to_thread(self._update, record)
        except sqlite3.Error as e:
            raise FiringStoreError(
                f"Failed to update firing record {record.id}: {e}",
                component="SqliteFiringStore",
                tenant_id=record.tenant_id
            )

        if not updated:
            raise FiringStoreError(
                f"Firing record not found: {record.id}",
                component="SqliteFiringStore",
                tenant_id=record.tenant_id
            )

    def _update(self, record: FiringRecord) -> bool:
        with sqlite3.connect(self.db_path) as conn:
            # Read and write under one write lock.
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute("""
                SELECT payload FROM firing_records
                WHERE id = ? AND tenant_id = ?
            """, (record.id, record.tenant_id)).fetchone()
            if row is None:
                conn.rollback()
                return False

            incoming = record.model_copy(deep=True)
            incoming.merge_lifecycle(FiringRecord.model_validate_json(row[0]))

            conn.execute("""
                UPDATE firing_records
                SET status = ?, payload = ?
                WHERE id = ? AND tenant_id = ?
            """, (incoming.status.value, incoming.model_dump_json(), record.id, record.tenant_id))
            conn.commit()
            return True

    def _upsert(self, record: FiringRecord) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                INSERT INTO firing_records (id, tenant_id, rule_id, fired_at, status, payload)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    status = excluded.status,
                    payload = excluded.payload
            """, (
                record.id,
                record.tenant_id,
                record.rule_id,
                record.fired_at.isoformat(),
                record.status.value,
                record.model_dump_json()
            ))
            conn.commit()

    async def get(self, tenant_id: str, firing_id: str) -> Optional[FiringRecord]:
        return await asyncio.to_thread(self._get, tenant_id, firing_id)

    def _get(self, tenant_id: str, firing_id: str) -> Optional[FiringRecord]:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute("""
                SELECT payload FROM firing_records
                WHERE tenant_id = ? AND id = ?
            """, (tenant_id, firing_id)).fetchone()

        if row:
            return FiringRecord.model_validate_json(row[0])
        return None

    async def find_firings(
        self,
        tenant_id: str,
        severities: Optional[List[str]] = None,
        statuses: Optional[List[FiringStatus]] = None,
        sources: Optional[List[str]] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[FiringRecord]:
        try:
            records = await asyncio.to_thread(self._find, tenant_id, statuses, since)
        except sqlite3.Error as e:
            raise FiringStoreError(
                f"Failed to query firing records: {e}",
                component="SqliteFiringStore",
                tenant_id=tenant_id
            )

        records = [
            r for r in records
            if (severities is None or r.severity in severities)
            and (sources is None or r.event.source in sources)
        ]
        if limit is not None:
            records = records[:limit]
        return records

    def _find(self, tenant_id: str, statuses: Optional[List[FiringStatus]],
              since: Optional[datetime]) -> List[FiringRecord]:
        query = "SELECT payload FROM firing_records WHERE tenant_id = ?"
        params: List[Any] = [tenant_id]

        if statuses is not None:
            if not statuses:
                return []
            query += f" AND status IN ({', '.join('?' for _ in statuses)})"
            params.extend(FiringStatus(s).value for s in statuses)

        if since is not None:
            query += " AND fired_at >= ?"
            params.append(since.isoformat())

        query += " ORDER BY fired_at DESC"

        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()

        return [FiringRecord.model_validate_json(row[0]) for row in rows]

    async def count_unresolved_firings(self, tenant_id: str, rule_id: str, since: datetime) -> int:
        try:
            return await asyncio.to_thread(self._count_unresolved, tenant_id, rule_id, since)
        except sqlite3.Error as e:
            raise HistoryQueryError(
                f"Failed to count firings for rule {rule_id}: {e}",
                component="SqliteFiringStore",
                tenant_id=tenant_id
            )

    def _count_unresolved(self, tenant_id: str, rule_id: str, since: datetime) -> int:
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute("""
                SELECT COUNT(*) FROM firing_records
                WHERE tenant_id = ?
                AND rule_id = ?
                AND fired_at >= ?
                AND status != ?
            """, (tenant_id, rule_id, since.isoformat(), FiringStatus.RESOLVED.value))

            return cursor.fetchone()[0]

    async def acknowledge(self, tenant_id: str, firing_id: str, acknowledged_by: str,
                          at: Optional[datetime] = None) -> FiringRecord:
        record = await self._require(tenant_id, firing_id)
        record.status = FiringStatus.ACKNOWLEDGED
        record.acknowledged_by = acknowledged_by
        record.acknowledged_at = at or datetime.now()
        await self.save(record)
        return record

    async def resolve(self, tenant_id: str, firing_id: str, resolved_by: str,
                      at: Optional[datetime] = None) -> FiringRecord:
        record = await self._require(tenant_id, firing_id)
        record.status = FiringStatus.RESOLVED
        record.resolved_by = resolved_by
        record.resolved_at = at or datetime.now()
        await self.save(record)
        return record

    async def _require(self, tenant_id: str, firing_id: str) -> FiringRecord:
        record = await self.get(tenant_id, firing_id)
        if record is None:
            raise FiringStoreError(
                f"Firing record not found: {firing_id}",
                component="SqliteFiringStore",
                tenant_id=tenant_id
            )
        return record

    async def clear_old_firings(self, days_to_keep: Optional[int] = None) -> int:
        """
        Delete resolved firing records older than the retention period.

        Args:
            days_to_keep: Number of days of history to keep (defaults to the
                store's ``retention_days``)

        Returns:
            Number of deleted records
        """
        days = self.retention_days if days_to_keep is None else days_to_keep
        cutoff_date = datetime.now() - timedelta(days=days)

        try:
            deleted = await asyncio.to_thread(self._delete_resolved_before, cutoff_date)
        except sqlite3.Error as e:
            raise FiringStoreError(
                f"Failed to clear old firing records: {e}",
                component="SqliteFiringStore"
            )

        logger.info(f"Cleared {deleted} resolved firing record(s) older than {days} days")
        return deleted

    def _delete_resolved_before(self, cutoff_date: datetime) -> int:
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute("""
                DELETE FROM firing_records
                WHERE fired_at < ?
                AND status = ?
            """, (cutoff_date.isoformat(), FiringStatus.RESOLVED.value))
            conn.commit()
            return cursor.rowcount

    async def get_rule_stats(self, tenant_id: str, rule_id: str) -> Dict[str, Any]:
        """
        Get firing statistics for a rule.

        Returns:
            Dictionary with total, per-status counts and the last firing time
        """
        rows, last = await asyncio.to_thread(self._rule_stats, tenant_id, rule_id)

        by_status = {status.value: 0 for status in FiringStatus}
        by_status.update({status: count for status, count in rows})

        return {
            'rule_id': rule_id,
            'total_firings': sum(by_status.values()),
            'by_status': by_status,
            'last_fired': last
        }

    def _rule_stats(self, tenant_id: str, rule_id: str):
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute("""
                SELECT status, COUNT(*) FROM firing_records
                WHERE tenant_id = ? AND rule_id = ?
                GROUP BY status
            """, (tenant_id, rule_id)).fetchall()

            last = conn.execute("""
                SELECT MAX(fired_at) FROM firing_records
                WHERE tenant_id = ? AND rule_id = ?
            """, (tenant_id, rule_id)).fetchone()[0]

        return rows, last
