import pytest
from datetime import datetime, timedelta

from cato_rules.models import Event, Rule
from cato_rules.stores import InMemoryFiringStore, InMemoryRuleStore

TENANT = "tenant-a"


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FixedClock:
    """Settable clock for time-dependent components."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingHandler:
    """Capability handler that remembers every call."""

    def __init__(self, result=None, error: Exception = None):
        self.calls = []
        self.result = result
        self.error = error

    async def __call__(self, parameters, context):
        self.calls.append((parameters, context))
        if self.error is not None:
            raise self.error
        return self.result


def make_rule(rule_id: str = "rule-1", **overrides) -> Rule:
    data = {
        "id": rule_id,
        "tenant_id": TENANT,
        "name": f"Rule {rule_id}",
        "description": "High severity POA&M overdue",
        "priority": 3,
        "triggers": [{
            "source": "poam",
            "conditions": [{"metric": "severity", "operator": "equals", "value": "High"}]
        }],
        "actions": [{"type": "notify", "parameters": {"channels": ["log"]}}],
    }
    data.update(overrides)
    return Rule.model_validate(data)


def poam_event(**data) -> Event:
    payload = {"id": "POAM-1", "severity": "High", "status": "Open"}
    payload.update(data)
    return Event(source="poam", data=payload, timestamp=datetime(2026, 1, 1, 9, 0))


@pytest.fixture
def clock():
    return FixedClock(datetime(2026, 1, 1, 10, 0))


@pytest.fixture
def rule_store():
    return InMemoryRuleStore()


@pytest.fixture
def firing_store():
    return InMemoryFiringStore()
