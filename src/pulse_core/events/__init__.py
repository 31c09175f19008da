"""RevenueCat event ingress and notification rendering."""
from .ingress import EventIngressService, IngressStatus
from .notifications import NOTIFY_EVENTS, format_notification

__all__ = [
    "EventIngressService",
    "IngressStatus",
    "NOTIFY_EVENTS",
    "format_notification",
]
