"""
Notification Handlers: Multi-Channel Alert Delivery
Capability handlers for the ``notify`` and ``escalate`` action types, used by
proactive alerting and notification routing.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from cato_rules.config import NotificationConfig
from cato_rules.exceptions import NotificationError
from cato_rules.models import ActionContext
from cato_rules.resilience import exponential_backoff


logger = logging.getLogger("CatoRulesNotifications")

DEFAULT_TEMPLATE = "[{severity}] {rule_name} fired for {source}"


class Notification:
    """A rendered message addressed to a set of recipients."""

    def __init__(
        self,
        tenant_id: str,
        rule_id: str,
        firing_id: str,
        title: str,
        message: str,
        severity: str,
        recipients: List[str],
        escalation_level: int = 0
    ):
        self.tenant_id = tenant_id
        self.rule_id = rule_id
        self.firing_id = firing_id
        self.title = title
        self.message = message
        self.severity = severity
        self.recipients = recipients
        self.escalation_level = escalation_level

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "rule_id": self.rule_id,
            "firing_id": self.firing_id,
            "title": self.title,
            "message": self.message,
            "severity": self.severity,
            "recipients": self.recipients,
            "escalation_level": self.escalation_level
        }


class NotificationChannel:
    """Base class for notification channels."""

    name = "channel"

    async def send(self, notification: Notification) -> Dict[str, Any]:
        """
        Send notification through this channel.

        Args:
            notification: Rendered notification

        Returns:
            Dict: Delivery details for the firing record

        Raises:
            NotificationError: If sending fails
        """
        raise NotImplementedError


class LogChannel(NotificationChannel):
    """Writes notifications to the application log."""

    name = "log"

    _levels = {
        "critical": logging.CRITICAL,
        "error": logging.ERROR,
        "warning": logging.WARNING,
        "info": logging.INFO
    }

    async def send(self, notification: Notification) -> Dict[str, Any]:
        level = self._levels.get(notification.severity, logging.INFO)
        recipients = ", ".join(notification.recipients) or "default recipients"
        logger.log(level, f"[LOG] {notification.title} -> {recipients}")
        return {"sent": True, "sent_at": datetime.now().isoformat()}


class WebhookChannel(NotificationChannel):
    """Posts notifications as JSON to an HTTP endpoint."""

    name = "webhook"

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 10.0,
        max_retries: int = 2,
        base_delay: float = 1.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.client = client
        self._post = exponential_backoff(max_retries=max_retries, base_delay=base_delay)(self._post_once)

    async def send(self, notification: Notification) -> Dict[str, Any]:
        payload = {
            "alert": notification.to_dict(),
            "timestamp": datetime.now().isoformat(),
            "source": "cato-rules"
        }

        try:
            status_code = await self._post(payload)
        except Exception as e:
            raise NotificationError(
                f"Webhook notification failed: {e}",
                component="WebhookChannel",
                tenant_id=notification.tenant_id,
                context={"firing_id": notification.firing_id, "url": self.url}
            ) from e

        logger.info(f"[WEBHOOK] Notification sent: {notification.firing_id}")
        return {"sent": True, "sent_at": datetime.now().isoformat(), "response_status": status_code}

    async def _post_once(self, payload: Dict[str, Any]) -> int:
        if self.client is not None:
            response = await self.client.post(self.url, json=payload, timeout=self.timeout_seconds)
        else:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(self.url, json=payload)

        response.raise_for_status()
        return response.status_code


def render_message(template: str, values: Dict[str, Any]) -> str:
    """Fill ``{placeholders}`` from values; the raw template is kept if one is missing."""
    try:
        return template.format(**values)
    except (KeyError, IndexError, ValueError) as e:
        logger.warning(f"Could not render notification template {template!r}: {e}")
        return template


class NotificationRouter:
    """
    Routes notifications to named channels.

    ``notify`` and ``escalate`` are capability handlers: register them with
    the dispatcher under the matching action types.
    """

    def __init__(
        self,
        channels: Optional[Dict[str, NotificationChannel]] = None,
        default_channels: Optional[List[str]] = None
    ):
        self.channels: Dict[str, NotificationChannel] = dict(channels or {"log": LogChannel()})
        self.default_channels = list(default_channels or self.channels.keys())
        logger.info(f"Notification router initialized with channels: {list(self.channels)}")

    def add_channel(self, channel: NotificationChannel) -> None:
        self.channels[channel.name] = channel

    def build_notification(self, parameters: Dict[str, Any], context: ActionContext) -> Notification:
        rule = context.rule
        event = context.event

        values: Dict[str, Any] = {k: v for k, v in event.data.items() if isinstance(k, str)}
        values.update({
            "rule_id": rule.id,
            "rule_name": rule.name,
            "tenant_id": context.tenant_id,
            "source": event.source,
            "source_id": context.source_id or "",
            "severity": rule.severity,
            "escalation_level": context.escalation_level
        })

        title = render_message(parameters.get("title", DEFAULT_TEMPLATE), values)
        message = render_message(parameters.get("message", rule.description or title), values)

        recipients = parameters.get("recipients") or []
        if isinstance(recipients, str):
            recipients = [recipients]

        return Notification(
            tenant_id=context.tenant_id,
            rule_id=rule.id,
            firing_id=context.firing_id,
            title=title,
            message=message,
            severity=rule.severity,
            recipients=list(recipients),
            escalation_level=int(parameters.get("escalation_level", context.escalation_level))
        )

    async def deliver(self, notification: Notification, channel_names: List[str]) -> Dict[str, Dict[str, Any]]:
        """
        Send to every named channel concurrently.

        Returns:
            Dict: Channel name to delivery status

        Raises:
            NotificationError: If no channel succeeded
        """
        names = list(dict.fromkeys(channel_names))
        outcomes = await asyncio.gather(
            *(self._send(name, notification) for name in names),
            return_exceptions=True
        )

        delivery: Dict[str, Dict[str, Any]] = {}
        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"[{name}] Notification failed: {outcome}")
                delivery[name] = {"sent": False, "error": str(outcome)}
            else:
                delivery[name] = outcome

        if not any(status.get("sent") for status in delivery.values()):
            raise NotificationError(
                "All notification channels failed",
                component="NotificationRouter",
                tenant_id=notification.tenant_id,
                context={"delivery": delivery, "firing_id": notification.firing_id}
            )

        return delivery

    async def notify(self, parameters: Dict[str, Any], context: ActionContext) -> Dict[str, Any]:
        notification = self.build_notification(parameters, context)
        channels = parameters.get("channels") or self.default_channels
        if isinstance(channels, str):
            channels = [channels]

        delivery = await self.deliver(notification, channels)
        return {"title": notification.title, "recipients": notification.recipients, "delivery": delivery}

    async def escalate(self, parameters: Dict[str, Any], context: ActionContext) -> Dict[str, Any]:
        parameters = dict(parameters)
        parameters.setdefault("title", "[ESCALATION L{escalation_level}] " + DEFAULT_TEMPLATE)
        result = await self.notify(parameters, context)
        result["escalation_level"] = int(parameters.get("escalation_level", context.escalation_level))
        return result

    def as_registry(self) -> Dict[str, Any]:
        return {"notify": self.notify, "escalate": self.escalate}

    async def _send(self, name: str, notification: Notification) -> Dict[str, Any]:
        channel = self.channels.get(name)
        if channel is None:
            raise NotificationError(f"Unknown notification channel: {name}", component="NotificationRouter")
        return await channel.send(notification)


def build_router(config: NotificationConfig, client: Optional[httpx.AsyncClient] = None) -> NotificationRouter:
    """Create a router with the log channel and, when a URL is configured, the webhook channel."""
    channels: Dict[str, NotificationChannel] = {"log": LogChannel()}
    if config.webhook_url:
        channels["webhook"] = WebhookChannel(
            config.webhook_url,
            timeout_seconds=config.webhook_timeout_seconds,
            max_retries=config.webhook_max_retries,
            client=client
        )

    default_channels = [name for name in config.default_channels if name in channels] or ["log"]
    return NotificationRouter(channels, default_channels)
