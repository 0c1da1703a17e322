import asyncio
import pytest
from datetime import timedelta
from unittest.mock import AsyncMock

from cato_rules.actions import SuppressionGate
from cato_rules.exceptions import HistoryQueryError
from cato_rules.models import EventReference, FiringRecord, FiringStatus

from conftest import TENANT, make_rule, poam_event

pytestmark = pytest.mark.anyio

SUPPRESSION = {"enabled": True, "window_minutes": 60, "max_firings_in_window": 2}


def _firing(firing_id, fired_at, status=FiringStatus.ACTIVE, rule_id="rule-1"):
    return FiringRecord(
        id=firing_id,
        tenant_id=TENANT,
        rule_id=rule_id,
        rule_name="Rule",
        event=EventReference.from_event(poam_event()),
        fired_at=fired_at,
        status=status
    )


async def test_disabled_suppression_never_queries():
    history = AsyncMock()
    gate = SuppressionGate(history)
    assert await gate.is_suppressed(make_rule(), poam_event()) is False
    history.count_unresolved_firings.assert_not_called()


async def test_suppressed_at_limit(firing_store, clock):
    rule = make_rule(suppression=SUPPRESSION)
    gate = SuppressionGate(firing_store, clock=clock)

    await firing_store.save(_firing("f1", clock.now - timedelta(minutes=10)))
    assert await gate.is_suppressed(rule, poam_event()) is False

    await firing_store.save(_firing("f2", clock.now - timedelta(minutes=5)))
    assert await gate.is_suppressed(rule, poam_event()) is True


async def test_old_and_resolved_firings_do_not_count(firing_store, clock):
    rule = make_rule(suppression=SUPPRESSION)
    gate = SuppressionGate(firing_store, clock=clock)

    await firing_store.save(_firing("old", clock.now - timedelta(minutes=90)))
    await firing_store.save(_firing("done", clock.now - timedelta(minutes=5), status=FiringStatus.RESOLVED))
    await firing_store.save(_firing("other", clock.now - timedelta(minutes=5), rule_id="rule-2"))
    await firing_store.save(_firing("open", clock.now - timedelta(minutes=5)))

    assert await gate.is_suppressed(rule, poam_event()) is False


async def test_acknowledged_firings_still_count(firing_store, clock):
    rule = make_rule(suppression={"enabled": True, "window_minutes": 60, "max_firings_in_window": 1})
    gate = SuppressionGate(firing_store, clock=clock)

    await firing_store.save(_firing("ack", clock.now - timedelta(minutes=5), status=FiringStatus.ACKNOWLEDGED))
    assert await gate.is_suppressed(rule, poam_event()) is True


async def test_window_start_is_relative_to_clock(clock):
    rule = make_rule(suppression=SUPPRESSION)
    history = AsyncMock()
    history.count_unresolved_firings.return_value = 0

    gate = SuppressionGate(history, clock=clock)
    await gate.is_suppressed(rule, poam_event())

    history.count_unresolved_firings.assert_awaited_once_with(TENANT, "rule-1", clock.now - timedelta(minutes=60))


async def test_query_failure_fails_open():
    history = AsyncMock()
    history.count_unresolved_firings.side_effect = HistoryQueryError("db down", component="HistoryQuery")

    gate = SuppressionGate(history)
    assert await gate.is_suppressed(make_rule(suppression=SUPPRESSION), poam_event()) is False


async def test_query_timeout_fails_open():
    class SlowHistory:
        async def count_unresolved_firings(self, tenant_id, rule_id, since):
            await asyncio.sleep(5)
            return 100

    gate = SuppressionGate(SlowHistory(), timeout_seconds=0.01)
    assert await gate.is_suppressed(make_rule(suppression=SUPPRESSION), poam_event()) is False
