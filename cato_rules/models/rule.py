"""
Rule Models

Defines data models for tenant-owned rules and the events they are evaluated against.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Union
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from datetime import datetime


WILDCARD_SOURCE = "all"

NAMED_PRIORITIES = {
    "low": 1,
    "medium": 2,
    "high": 3,
    "critical": 4,
}


class ConditionOperator(str, Enum):
    """Operators for condition evaluation."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IN = "in"
    NOT_IN = "not_in"
    PERCENTAGE_CHANGE = "percentage_change"


class ActionType(str, Enum):
    """Action types a rule can dispatch."""
    ASSIGN = "assign"
    ESCALATE = "escalate"
    NOTIFY = "notify"
    UPDATE_PRIORITY = "update_priority"
    CREATE_MILESTONE = "create_milestone"
    ADD_COMMENT = "add_comment"


class Condition(BaseModel):
    """
    A single condition in a trigger group.

    Example:
        metric: "poam.severity"
        operator: "equals"
        value: "High"

    The operator is kept as a plain string: an operator the evaluator does not
    know simply never matches.
    """
    metric: str = Field(
        ...,
        validation_alias=AliasChoices("metric", "field"),
        description="Dot-separated path into the event data"
    )
    operator: str = Field(..., description="Comparison operator")
    value: Any = Field(default=None, description="Value to compare against")
    time_window: Optional[str] = Field(default=None, description="Optional window such as '1h' or '7d'")

    @field_validator('metric')
    @classmethod
    def validate_metric(cls, v: str) -> str:
        """Validate metric path."""
        if not v or not isinstance(v, str):
            raise ValueError("Metric must be a non-empty string")
        return v

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        result = {
            "metric": self.metric,
            "operator": self.operator,
            "value": self.value
        }
        if self.time_window:
            result["time_window"] = self.time_window
        return result


class TriggerGroup(BaseModel):
    """
    Source-scoped set of AND-combined conditions.
    """
    type: Optional[str] = Field(default=None, description="Trigger kind (threshold, event, new_finding, ...)")
    source: str = Field(default=WILDCARD_SOURCE, description="Event source tag or 'all'")
    conditions: List[Condition] = Field(default_factory=list)

    def applies_to(self, source: str) -> bool:
        """Check whether this group listens to events from the given source."""
        return self.source == WILDCARD_SOURCE or self.source == source

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        result = {
            "source": self.source,
            "conditions": [c.to_dict() for c in self.conditions]
        }
        if self.type:
            result["type"] = self.type
        return result


class RuleAction(BaseModel):
    """
    Action to execute when a rule fires.
    """
    type: str = Field(..., description="Action type (e.g., 'notify', 'assign')")
    parameters: Dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("parameters", "params"),
        description="Action parameters"
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "type": self.type,
            "parameters": self.parameters
        }


class SuppressionPolicy(BaseModel):
    """Rolling-window limit on unresolved firings of one rule."""
    enabled: bool = False
    window_minutes: int = Field(default=60, ge=0)
    max_firings_in_window: int = Field(default=1, ge=0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "window_minutes": self.window_minutes,
            "max_firings_in_window": self.max_firings_in_window
        }


class EscalationLevel(BaseModel):
    level: int = Field(..., ge=1)
    delay_minutes: int = Field(..., ge=0)
    recipients: List[str] = Field(default_factory=list)
    channels: List[str] = Field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level,
            "delay_minutes": self.delay_minutes,
            "recipients": self.recipients,
            "channels": self.channels
        }


class EscalationPolicy(BaseModel):
    """Time-delayed re-notification levels for unresolved firings."""
    enabled: bool = False
    levels: List[EscalationLevel] = Field(default_factory=list)

    def sorted_levels(self) -> List[EscalationLevel]:
        """Levels in ascending order of their level number."""
        return sorted(self.levels, key=lambda lvl: lvl.level)

    def next_level(self, current_level: int) -> Optional[EscalationLevel]:
        """Lowest configured level above ``current_level``; None once the top is reached."""
        for lvl in self.sorted_levels():
            if lvl.level > current_level:
                return lvl
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "levels": [lvl.to_dict() for lvl in self.sorted_levels()]
        }


class Rule(BaseModel):
    """
    Tenant-owned policy mapping trigger conditions to actions.
    """
    id: str = Field(..., description="Unique rule identifier")
    tenant_id: str = Field(..., description="Owning tenant")
    name: str = Field(..., description="Human-readable rule name")
    description: str = Field(default="", description="Rule description")
    enabled: bool = Field(default=True, description="Whether rule is active")
    priority: int = Field(default=0, description="Dispatch ordering hint, higher first")

    triggers: List[TriggerGroup] = Field(default_factory=list)
    actions: List[RuleAction] = Field(default_factory=list)

    suppression: SuppressionPolicy = Field(default_factory=SuppressionPolicy)
    escalation: Optional[EscalationPolicy] = None

    trigger_count: int = Field(default=0, ge=0)
    last_triggered: Optional[datetime] = None
    version: int = Field(default=0, ge=0, description="Optimistic concurrency token")

    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator('id', 'tenant_id')
    @classmethod
    def validate_identifier(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Identifier must be a non-empty string")
        return v

    @field_validator('priority', mode='before')
    @classmethod
    def validate_priority(cls, v: Union[int, str]) -> int:
        """Accept numeric priorities and the named low/medium/high/critical levels."""
        if isinstance(v, str):
            key = v.strip().lower()
            if key in NAMED_PRIORITIES:
                return NAMED_PRIORITIES[key]
            if key.lstrip('-').isdigit():
                return int(key)
            raise ValueError(f"Invalid priority: {v}")
        return v

    @property
    def escalation_enabled(self) -> bool:
        return bool(self.escalation and self.escalation.enabled and self.escalation.levels)

    @property
    def severity(self) -> str:
        return priority_to_severity(self.priority)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "enabled": self.enabled,
            "priority": self.priority,
            "triggers": [t.to_dict() for t in self.triggers],
            "actions": [a.to_dict() for a in self.actions],
            "suppression": self.suppression.to_dict(),
            "escalation": self.escalation.to_dict() if self.escalation else None,
            "trigger_count": self.trigger_count,
            "last_triggered": self.last_triggered.isoformat() if self.last_triggered else None,
            "tags": self.tags,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None
        }


class Event(BaseModel):
    """
    Immutable input to one evaluation pass.
    """
    model_config = ConfigDict(frozen=True)

    source: str
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.now)
    type: Optional[str] = None

    @property
    def source_id(self) -> Optional[str]:
        """Identifier of the triggering entity (e.g. a POA&M id), if the payload has one."""
        value = self.data.get("id")
        return str(value) if value is not None else None


def priority_to_severity(priority: int) -> str:
    """Map a rule priority onto an alert severity."""
    if priority >= 4:
        return "critical"
    if priority == 3:
        return "error"
    if priority == 2:
        return "warning"
    return "info"


class ConditionResult(BaseModel):
    metric: str
    operator: str
    expected: Any = None
    actual: Any = None
    matched: bool


class TriggerGroupResult(BaseModel):
    index: int
    source: str
    applicable: bool
    matched: bool
    conditions: List[ConditionResult] = Field(default_factory=list)


class RuleEvaluationResult(BaseModel):
    """
    Result of evaluating a rule without dispatching it.
    """
    rule_id: str
    matched: bool
    groups: List[TriggerGroupResult] = Field(default_factory=list)
    evaluation_time: datetime = Field(default_factory=datetime.now)
    reason: Optional[str] = None


class ValidationResult(BaseModel):
    """
    Result of validating a rule.
    """
    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
