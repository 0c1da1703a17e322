"""
Capability handler bindings for the engine's call sites.
"""

from .notifications import (
    LogChannel,
    Notification,
    NotificationChannel,
    NotificationRouter,
    WebhookChannel,
    build_router,
    render_message
)
from .poam_workflow import InMemoryPoamClient, PoamClient, PoamWorkflowHandlers

__all__ = [
    "LogChannel",
    "Notification",
    "NotificationChannel",
    "NotificationRouter",
    "WebhookChannel",
    "build_router",
    "render_message",
    "InMemoryPoamClient",
    "PoamClient",
    "PoamWorkflowHandlers",
]
