"""
Suppression Gate

Withholds dispatch for a matched rule while too many of its recent firings
are still unresolved.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from cato_rules.models import Event, Rule
from cato_rules.resilience import call_with_timeout
from cato_rules.stores.base import HistoryQuery


logger = logging.getLogger(__name__)


class SuppressionGate:
    """
    Rolling-window limit on unresolved firings per rule.

    The gate fails open: if the history cannot be read the firing goes
    through, and the failure is logged.
    """

    def __init__(
        self,
        history_query: HistoryQuery,
        timeout_seconds: Optional[float] = 5.0,
        clock: Callable[[], datetime] = datetime.now
    ):
        """
        Initialize the suppression gate.

        Args:
            history_query: Source of unresolved firing counts
            timeout_seconds: Time budget for one history query
            clock: Returns the current time
        """
        self.history_query = history_query
        self.timeout_seconds = timeout_seconds
        self.clock = clock

    def window_start(self, rule: Rule) -> datetime:
        return self.clock() - timedelta(minutes=rule.suppression.window_minutes)

    async def is_suppressed(self, rule: Rule, event: Event) -> bool:
        """
        Check whether a matched rule must be withheld for this event.

        Returns:
            True if the rule already has ``max_firings_in_window`` unresolved
            firings inside its window
        """
        if not rule.suppression.enabled:
            return False

        since = self.window_start(rule)
        try:
            count = await call_with_timeout(
                self.history_query.count_unresolved_firings(rule.tenant_id, rule.id, since),
                self.timeout_seconds,
                collaborator="HistoryQuery",
                tenant_id=rule.tenant_id
            )
        except Exception as e:
            logger.error(
                f"Suppression check failed for rule {rule.id} (tenant {rule.tenant_id}, "
                f"source {event.source}, id {event.source_id}); not suppressing: {e}"
            )
            return False

        suppressed = count >= rule.suppression.max_firings_in_window
        if suppressed:
            logger.info(
                f"Rule {rule.id} suppressed: {count} unresolved firing(s) since "
                f"{since.isoformat()} (limit {rule.suppression.max_firings_in_window})"
            )
        return suppressed
