import asyncio
import pytest
from unittest.mock import AsyncMock

from cato_rules import RulesEngine, create_engine
from cato_rules.config import EngineConfig
from cato_rules.exceptions import RuleNotFoundError, RuleStoreUnavailableError
from cato_rules.models import ActionStatus, DispatchStatus, Event
from cato_rules.stores import InMemoryFiringStore, InMemoryRuleStore, RuleStore

from conftest import TENANT, RecordingHandler, make_rule

pytestmark = pytest.mark.anyio


def _engine(rule_store, firing_store, clock, handlers=None, **config):
    handlers = handlers or {"notify": RecordingHandler(result="sent")}
    return RulesEngine(rule_store, firing_store, handlers=handlers, config=EngineConfig(**config), clock=clock)


def _high(**extra):
    data = {"severity": "High", "id": "P-1"}
    data.update(extra)
    return Event(source="poam", data=data)


async def test_matching_event_fires_notify(rule_store, firing_store, clock):
    rule_store.add_rule(make_rule("R1", actions=[{"type": "notify"}]))
    engine = _engine(rule_store, firing_store, clock)

    results = await engine.evaluate(TENANT, _high())

    assert len(results) == 1
    record = results[0]
    assert record.rule_id == "R1"
    assert record.suppressed is False
    assert [(a.type, a.status) for a in record.actions_executed] == [("notify", ActionStatus.COMPLETED)]
    assert record.event.source_id == "P-1"
    assert (await firing_store.get(TENANT, record.id)) is not None


async def test_non_matching_event_returns_nothing(rule_store, firing_store, clock):
    rule_store.add_rule(make_rule("R1"))
    engine = _engine(rule_store, firing_store, clock)

    assert await engine.evaluate(TENANT, Event(source="poam", data={"severity": "Low"})) == []
    assert firing_store.list_firings(TENANT) == []


async def test_disabled_rules_never_fire(firing_store, clock):
    class LeakyStore(RuleStore):
        """Returns disabled rules too."""

        async def get_enabled_rules(self, tenant_id):
            return [make_rule("off", enabled=False)]

        async def increment_trigger_count(self, tenant_id, rule_id, fired_at):
            pass

    engine = _engine(LeakyStore(), firing_store, clock)
    assert await engine.evaluate(TENANT, _high()) == []


async def test_empty_triggers_never_fire(rule_store, firing_store, clock):
    rule_store.add_rule(make_rule("R1", triggers=[]))
    engine = _engine(rule_store, firing_store, clock)

    assert await engine.evaluate(TENANT, _high()) == []


async def test_third_event_in_window_is_suppressed(rule_store, firing_store, clock):
    rule_store.add_rule(make_rule(
        "R1", suppression={"enabled": True, "window_minutes": 60, "max_firings_in_window": 2}
    ))
    notify = RecordingHandler()
    engine = _engine(rule_store, firing_store, clock, handlers={"notify": notify})

    results = []
    for minute in (0, 5, 10):
        clock.advance(minutes=minute)
        results.extend(await engine.evaluate(TENANT, _high()))

    assert [r.suppressed for r in results] == [False, False, True]
    assert results[2].dispatch_status == DispatchStatus.SKIPPED
    assert results[2].actions_executed == []
    assert len(notify.calls) == 2
    assert len(firing_store.list_firings(TENANT)) == 2
    assert (await rule_store.get_rule(TENANT, "R1")).trigger_count == 2


async def test_second_event_suppressed_after_ten_minutes(rule_store, firing_store, clock):
    rule_store.add_rule(make_rule(
        "R1", suppression={"enabled": True, "window_minutes": 30, "max_firings_in_window": 1}
    ))
    engine = _engine(rule_store, firing_store, clock)

    first = await engine.evaluate(TENANT, _high())
    clock.advance(minutes=10)
    second = await engine.evaluate(TENANT, _high())

    assert first[0].suppressed is False
    assert second[0].suppressed is True


async def test_resolving_lifts_suppression(rule_store, firing_store, clock):
    rule_store.add_rule(make_rule(
        "R1", suppression={"enabled": True, "window_minutes": 30, "max_firings_in_window": 1}
    ))
    engine = _engine(rule_store, firing_store, clock)

    first = await engine.evaluate(TENANT, _high())
    await firing_store.resolve(TENANT, first[0].id, "isso@example.gov")
    clock.advance(minutes=10)

    assert (await engine.evaluate(TENANT, _high()))[0].suppressed is False


async def test_three_actions_with_middle_failure(rule_store, firing_store, clock):
    rule_store.add_rule(make_rule("R1", actions=[
        {"type": "assign", "parameters": {"assignee": "owner"}},
        {"type": "add_comment", "parameters": {"comment": "auto"}},
        {"type": "notify"},
    ]))
    handlers = {
        "assign": RecordingHandler(),
        "add_comment": RecordingHandler(error=ValueError("comment rejected")),
        "notify": RecordingHandler(),
    }
    engine = _engine(rule_store, firing_store, clock, handlers=handlers)

    record = (await engine.evaluate(TENANT, _high()))[0]

    assert [a.status for a in record.actions_executed] == [
        ActionStatus.COMPLETED, ActionStatus.FAILED, ActionStatus.COMPLETED
    ]
    assert record.dispatch_status == DispatchStatus.FAILED


async def test_reevaluation_is_structurally_identical(rule_store, firing_store, clock):
    rule_store.add_rule(make_rule("R1"))
    engine = _engine(rule_store, firing_store, clock)

    event = _high()
    first = await engine.evaluate(TENANT, event)
    second = await engine.evaluate(TENANT, event)

    assert first[0].id != second[0].id
    assert first[0].model_dump(exclude={"id"}) == second[0].model_dump(exclude={"id"})


async def test_rules_run_in_priority_order(rule_store, firing_store, clock):
    rule_store.add_rule(make_rule("low", priority="low"))
    rule_store.add_rule(make_rule("critical", priority="critical"))
    rule_store.add_rule(make_rule("medium", priority=2))
    engine = _engine(rule_store, firing_store, clock)

    results = await engine.evaluate(TENANT, _high())

    assert [r.rule_id for r in results] == ["critical", "medium", "low"]
    assert results[0].severity == "critical"


async def test_tenants_are_isolated(rule_store, firing_store, clock):
    rule_store.add_rule(make_rule("R1"))
    engine = _engine(rule_store, firing_store, clock)

    assert await engine.evaluate("tenant-b", _high()) == []


async def test_rule_store_failure_raises():
    rule_store = AsyncMock(spec=RuleStore)
    rule_store.get_enabled_rules.side_effect = ConnectionError("cosmos unreachable")
    engine = RulesEngine(rule_store, InMemoryFiringStore())

    with pytest.raises(RuleStoreUnavailableError) as exc_info:
        await engine.evaluate(TENANT, _high())

    assert exc_info.value.tenant_id == TENANT
    assert exc_info.value.component == "RuleStore"
    assert isinstance(exc_info.value.__cause__, ConnectionError)


async def test_rule_store_timeout_raises(firing_store):
    class SlowStore(InMemoryRuleStore):
        async def get_enabled_rules(self, tenant_id):
            await asyncio.sleep(5)
            return []

    engine = RulesEngine(SlowStore(), firing_store, config=EngineConfig(rule_store_timeout_seconds=0.01))

    with pytest.raises(RuleStoreUnavailableError):
        await engine.evaluate(TENANT, _high())


async def test_history_failure_fails_open(rule_store, clock):
    rule_store.add_rule(make_rule(
        "R1", suppression={"enabled": True, "window_minutes": 30, "max_firings_in_window": 1}
    ))
    history = AsyncMock()
    history.count_unresolved_firings.side_effect = RuntimeError("query failed")
    sink = InMemoryFiringStore()
    engine = RulesEngine(rule_store, history, sink=sink, handlers={"notify": RecordingHandler()}, clock=clock)

    results = await engine.evaluate(TENANT, _high())

    assert results[0].suppressed is False
    assert len(sink.list_firings(TENANT)) == 1


async def test_test_rule_explains_without_dispatch(rule_store, firing_store, clock):
    rule_store.add_rule(make_rule("R1"))
    notify = RecordingHandler()
    engine = _engine(rule_store, firing_store, clock, handlers={"notify": notify})

    result = await engine.test_rule(TENANT, "R1", _high())

    assert result.matched is True
    assert notify.calls == []
    assert firing_store.list_firings(TENANT) == []

    with pytest.raises(RuleNotFoundError):
        await engine.test_rule(TENANT, "missing", _high())


async def test_summary(rule_store, firing_store, clock):
    rule_store.add_rule(make_rule("R1"))
    rule_store.add_rule(make_rule("R2", suppression={"enabled": True}))
    rule_store.add_rule(make_rule("R3", enabled=False))
    engine = _engine(rule_store, firing_store, clock)
    await engine.evaluate(TENANT, _high())

    summary = await engine.get_summary(TENANT)

    assert summary["enabled_rules"] == 2
    assert summary["suppression_enabled"] == 1
    assert summary["sources"] == {"poam": 2}
    assert summary["action_types"] == {"notify": 2}
    assert summary["total_triggers"] == 2


async def test_run_escalations(rule_store, firing_store, clock):
    rule_store.add_rule(make_rule("R1", escalation={
        "enabled": True,
        "levels": [{"level": 1, "delay_minutes": 30, "recipients": ["ao@example.gov"]}]
    }))
    engine = _engine(rule_store, firing_store, clock)
    record = (await engine.evaluate(TENANT, _high()))[0]

    assert await engine.run_escalations(TENANT) == []

    clock.advance(minutes=30)
    escalated = await engine.run_escalations(TENANT)

    assert [r.id for r in escalated] == [record.id]
    assert (await firing_store.get(TENANT, record.id)).escalation_level == 1


async def test_create_engine_from_environment(tmp_path, monkeypatch):
    rules_dir = tmp_path / "rules"
    rules_dir.mkdir()
    (rules_dir / "sync.yaml").write_text(
        "id: sync-failed\nname: Sync failed\ntenant_id: tenant-a\npriority: critical\n"
        "triggers:\n  - source: sync_health\n    conditions:\n"
        "      - metric: status\n        operator: in\n        value: [failed, error]\n"
        "actions:\n  - type: notify\n    parameters:\n      message: 'Sync job {job} {status}'\n"
    )
    monkeypatch.setenv("CATO_RULES_RULES_PATH", str(rules_dir))
    monkeypatch.setenv("CATO_RULES_FIRINGS_DB_PATH", str(tmp_path / "firings.db"))

    engine = create_engine(configure_logging=False)
    [record] = await engine.evaluate(TENANT, Event(source="sync_health", data={"job": "emass", "status": "failed"}))

    assert record.actions_executed[0].status == ActionStatus.COMPLETED
    assert record.actions_executed[0].result["delivery"]["log"]["sent"] is True
    assert (await engine.escalation.firing_store.get(TENANT, record.id)) is not None


async def test_active_firings_and_summary(rule_store, firing_store, clock):
    rule_store.add_rule(make_rule("R1", priority="critical"))
    rule_store.add_rule(make_rule("R2", priority="medium"))
    engine = _engine(rule_store, firing_store, clock)

    critical, medium = await engine.evaluate(TENANT, _high())
    await firing_store.resolve(TENANT, medium.id, "isso@example.gov")

    active = await engine.get_active_firings(TENANT)
    assert [r.id for r in active] == [critical.id]
    assert await engine.get_active_firings(TENANT, severities=["warning"]) == []

    summary = await engine.get_firing_summary(TENANT)
    assert summary["total_firings"] == 2
    assert summary["by_status"]["resolved"] == 1
    assert summary["critical_firings"] == 1


async def test_firing_queries_need_a_firing_store(rule_store, clock):
    engine = RulesEngine(rule_store, AsyncMock(), clock=clock)

    with pytest.raises(ValueError):
        await engine.get_firing_summary(TENANT)


async def test_from_config_passes_retention(tmp_path, monkeypatch):
    (tmp_path / "rules").mkdir()
    monkeypatch.setenv("CATO_RULES_RULES_PATH", str(tmp_path / "rules"))
    monkeypatch.setenv("CATO_RULES_FIRINGS_DB_PATH", str(tmp_path / "firings.db"))
    monkeypatch.setenv("CATO_RULES_RETENTION_DAYS", "30")

    engine = create_engine(handlers={}, configure_logging=False)

    assert engine.escalation.firing_store.retention_days == 30
