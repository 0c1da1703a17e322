"""
Firing Models

Records produced when a rule fires, plus the context handed to capability handlers.
"""

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime

from cato_rules.models.rule import Event, Rule


class ActionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class FiringStatus(str, Enum):
    """Lifecycle status, moved past ACTIVE only by external actors."""
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


class DispatchStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ActionExecution(BaseModel):
    """
    Outcome of one action of a fired rule.
    """
    type: str
    status: ActionStatus = ActionStatus.PENDING
    result: Any = None
    error: Optional[str] = None
    executed_at: Optional[datetime] = None


class EventReference(BaseModel):
    source: str
    type: Optional[str] = None
    timestamp: datetime
    source_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_event(cls, event: Event) -> "EventReference":
        return cls(
            source=event.source,
            type=event.type,
            timestamp=event.timestamp,
            source_id=event.source_id,
            data=dict(event.data)
        )


class EscalationHistoryEntry(BaseModel):
    level: int
    escalated_at: datetime
    recipients: List[str] = Field(default_factory=list)
    channels: List[str] = Field(default_factory=list)
    actions: List[ActionExecution] = Field(default_factory=list)


LIFECYCLE_FIELDS = ("status", "acknowledged_by", "acknowledged_at", "resolved_by", "resolved_at")


def new_firing_id(tenant_id: str) -> str:
    return f"firing-{tenant_id}-{uuid.uuid4().hex[:12]}"


class FiringRecord(BaseModel):
    """
    The engine's output for one rule match.

    Non-suppressed records are persisted through the firing record sink;
    suppressed ones are returned to the caller only.
    """
    id: str
    tenant_id: str
    rule_id: str
    rule_name: str
    event: EventReference
    fired_at: datetime
    suppressed: bool = False

    status: FiringStatus = FiringStatus.ACTIVE
    dispatch_status: DispatchStatus = DispatchStatus.PENDING
    actions_executed: List[ActionExecution] = Field(default_factory=list)

    severity: str = "info"
    title: str = ""
    message: str = ""

    escalation_level: int = 0
    next_escalation: Optional[datetime] = None
    escalation_history: List[EscalationHistoryEntry] = Field(default_factory=list)

    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        """True while neither acknowledged nor resolved."""
        return self.status == FiringStatus.ACTIVE

    def merge_lifecycle(self, stored: "FiringRecord") -> None:
        """Take over an acknowledge or resolve already recorded on ``stored``."""
        if stored.is_open:
            return
        for name in LIFECYCLE_FIELDS:
            setattr(self, name, getattr(stored, name))


@dataclass
class ActionContext:
    """What a capability handler knows about the firing it acts for."""
    tenant_id: str
    rule: Rule
    event: Event
    firing_id: str
    escalation_level: int = 0

    @property
    def source_id(self) -> Optional[str]:
        return self.event.source_id
