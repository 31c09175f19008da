"""RevenueCat event ingress.

Real-time path beside the daily batch: validate, store once by event_id,
notify for production events worth a message.
"""
import logging
from enum import Enum
from typing import Any, Optional, Protocol

from pydantic import ValidationError

from ..schemas.revenuecat import RevenueCatEvent
from ..storage.store import MetricsStore
from .notifications import NOTIFY_EVENTS, format_notification


logger = logging.getLogger(__name__)


class Notifier(Protocol):
    channel: str

    async def send(self, text: str) -> bool: ...


class IngressStatus(str, Enum):
    """Outcome of one webhook delivery."""

    PROCESSED = "processed"  # stored and notified
    DUPLICATE = "duplicate"
    IGNORED = "ignored"  # malformed or not storable
    STORED = "stored"  # stored without a confirmed notification


class EventIngressService:
    """Handles one webhook envelope at a time; safe under concurrent delivery."""

    def __init__(self, store: MetricsStore, notifier: Optional[Notifier] = None) -> None:
        """Initialize service.

        Args:
            store: Store enforcing event_id uniqueness
            notifier: Delivery collaborator; None stores without notifying
        """
        self.store = store
        self.notifier = notifier

    def _app_name(self, revenuecat_app_id: Optional[str]) -> Optional[str]:
        if not revenuecat_app_id:
            return None
        for app in self.store.list_apps(active_only=False):
            if app.revenuecat_app_id == revenuecat_app_id:
                return app.name
        return None

    async def handle(self, payload: Any) -> tuple[IngressStatus, Optional[str]]:
        """Process one webhook payload.

        Never raises for payload, storage or delivery problems.

        Args:
            payload: Decoded JSON body (``{"api_version": ..., "event": {...}}``)

        Returns:
            (status, event_id); event_id is None for malformed payloads
        """
        raw_event = payload.get("event") if isinstance(payload, dict) else None
        try:
            event = RevenueCatEvent.model_validate(raw_event)
        except ValidationError as exc:
            logger.warning(
                "Invalid event payload: missing id or type (%s errors)", exc.error_count()
            )
            return IngressStatus.IGNORED, None

        logger.info(
            "Received event: %s (%s) for app %s", event.type, event.id, event.app_id
        )

        try:
            inserted = self.store.insert_event(event.to_record(payload))
        except Exception as exc:
            logger.error("Failed to store event %s: %s", event.id, exc, exc_info=True)
            return IngressStatus.IGNORED, event.id

        if not inserted:
            logger.info("Duplicate event %s, skipping", event.id)
            return IngressStatus.DUPLICATE, event.id

        if not event.is_production:
            logger.info("Sandbox event %s, stored but not notified", event.type)
            return IngressStatus.STORED, event.id

        if event.type not in NOTIFY_EVENTS or self.notifier is None:
            return IngressStatus.STORED, event.id

        return await self._notify(event), event.id

    async def _notify(self, event: RevenueCatEvent) -> IngressStatus:
        message = format_notification(event, self._app_name(event.app_id))

        try:
            sent = await self.notifier.send(message)
        except Exception as exc:
            logger.error("Notification dispatch failed for %s: %s", event.id, exc)
            sent = False

        logger.info("Notification %s for %s", "sent" if sent else "failed", event.type)
        if not sent:
            return IngressStatus.STORED

        try:
            self.store.mark_event_notified(event.id)
            self.store.record_notification(
                self.notifier.channel,
                f"revenuecat_{event.type.lower()}",
                message,
                reference_id=event.id,
            )
        except Exception as exc:
            logger.error(
                "Failed to record notification for %s: %s", event.id, exc, exc_info=True
            )
        return IngressStatus.PROCESSED
