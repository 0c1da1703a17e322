"""
POA&M Workflow Handlers
Capability handlers for workflow rules that act on a Plan of Action and
Milestones item: assign, escalate, update priority, create milestone, add
comment, and notify stakeholders through the notification router.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from cato_rules.exceptions import ActionExecutionError
from cato_rules.handlers.notifications import NotificationRouter
from cato_rules.models import ActionContext


logger = logging.getLogger("CatoRulesPoamWorkflow")

POAM_ID_KEYS = ("poam_id", "poamId")


class PoamClient(ABC):
    """Operations the workflow handlers perform on the POA&M system of record."""

    @abstractmethod
    async def assign(self, tenant_id: str, poam_id: str, assignee: str) -> Any:
        pass

    @abstractmethod
    async def escalate(self, tenant_id: str, poam_id: str, escalate_to: List[str], level: int) -> Any:
        pass

    @abstractmethod
    async def update_priority(self, tenant_id: str, poam_id: str, priority: str) -> Any:
        pass

    @abstractmethod
    async def create_milestone(self, tenant_id: str, poam_id: str, milestone: Dict[str, Any]) -> Any:
        pass

    @abstractmethod
    async def add_comment(self, tenant_id: str, poam_id: str, comment: str) -> Any:
        pass


class InMemoryPoamClient(PoamClient):
    """Records every call; used for local runs and tests."""

    def __init__(self):
        self.calls: List[Dict[str, Any]] = []

    def _record(self, operation: str, tenant_id: str, poam_id: str, **details) -> Dict[str, Any]:
        entry = {"operation": operation, "tenant_id": tenant_id, "poam_id": poam_id, **details}
        self.calls.append(entry)
        return entry

    async def assign(self, tenant_id, poam_id, assignee):
        return self._record("assign", tenant_id, poam_id, assignee=assignee)

    async def escalate(self, tenant_id, poam_id, escalate_to, level):
        return self._record("escalate", tenant_id, poam_id, escalate_to=escalate_to, level=level)

    async def update_priority(self, tenant_id, poam_id, priority):
        return self._record("update_priority", tenant_id, poam_id, priority=priority)

    async def create_milestone(self, tenant_id, poam_id, milestone):
        return self._record("create_milestone", tenant_id, poam_id, milestone=milestone)

    async def add_comment(self, tenant_id, poam_id, comment):
        return self._record("add_comment", tenant_id, poam_id, comment=comment)


class PoamWorkflowHandlers:
    """
    Binds POA&M workflow action types to a ``PoamClient``.
    """

    def __init__(self, poam_client: PoamClient, router: Optional[NotificationRouter] = None):
        self.poam_client = poam_client
        self.router = router or NotificationRouter()

    def as_registry(self) -> Dict[str, Any]:
        """Handler per action type, ready for ``ActionDispatcher.register_many``."""
        return {
            "assign": self.assign,
            "escalate": self.escalate,
            "notify": self.notify,
            "update_priority": self.update_priority,
            "create_milestone": self.create_milestone,
            "add_comment": self.add_comment
        }

    def poam_id(self, parameters: Dict[str, Any], context: ActionContext) -> str:
        """The POA&M the action applies to: explicit parameter, event data, then event id."""
        for source in (parameters, context.event.data):
            for key in POAM_ID_KEYS:
                if source.get(key):
                    return str(source[key])

        if context.source_id:
            return context.source_id

        raise ActionExecutionError(
            f"No POA&M id in event for rule {context.rule.id}",
            component="PoamWorkflowHandlers",
            tenant_id=context.tenant_id
        )

    def _require(self, parameters: Dict[str, Any], key: str, context: ActionContext) -> Any:
        value = parameters.get(key)
        if value in (None, ""):
            raise ActionExecutionError(
                f"Missing '{key}' parameter for rule {context.rule.id}",
                component="PoamWorkflowHandlers",
                tenant_id=context.tenant_id
            )
        return value

    async def assign(self, parameters: Dict[str, Any], context: ActionContext) -> Any:
        poam_id = self.poam_id(parameters, context)
        assignee = self._require(parameters, "assignee", context)
        logger.info(f"Assigning POA&M {poam_id} to {assignee}")
        return await self.poam_client.assign(context.tenant_id, poam_id, assignee)

    async def escalate(self, parameters: Dict[str, Any], context: ActionContext) -> Any:
        poam_id = self.poam_id(parameters, context)
        escalate_to = parameters.get("escalate_to") or parameters.get("escalateTo") or parameters.get("recipients") or []
        if isinstance(escalate_to, str):
            escalate_to = [escalate_to]
        level = int(parameters.get("escalation_level", context.escalation_level))

        logger.info(f"Escalating POA&M {poam_id} to {', '.join(escalate_to) or 'default owners'} (level {level})")
        return await self.poam_client.escalate(context.tenant_id, poam_id, list(escalate_to), level)

    async def notify(self, parameters: Dict[str, Any], context: ActionContext) -> Any:
        return await self.router.notify(parameters, context)

    async def update_priority(self, parameters: Dict[str, Any], context: ActionContext) -> Any:
        poam_id = self.poam_id(parameters, context)
        priority = str(self._require(parameters, "priority", context))
        logger.info(f"Updating POA&M {poam_id} priority to {priority}")
        return await self.poam_client.update_priority(context.tenant_id, poam_id, priority)

    async def create_milestone(self, parameters: Dict[str, Any], context: ActionContext) -> Any:
        poam_id = self.poam_id(parameters, context)
        milestone = {k: v for k, v in parameters.items() if k not in POAM_ID_KEYS}
        self._require(milestone, "title", context)
        logger.info(f"Creating milestone for POA&M {poam_id}")
        return await self.poam_client.create_milestone(context.tenant_id, poam_id, milestone)

    async def add_comment(self, parameters: Dict[str, Any], context: ActionContext) -> Any:
        poam_id = self.poam_id(parameters, context)
        comment = self._require(parameters, "comment", context)
        return await self.poam_client.add_comment(context.tenant_id, poam_id, comment)
