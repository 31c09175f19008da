"""Pydantic models for webhook payloads and report responses."""
from .reports import (
    IngestionLogModel,
    SnapshotResponse,
    TopPerformersResponse,
    TrendsResponse,
)
from .revenuecat import RevenueCatEvent, WebhookAck

__all__ = [
    "IngestionLogModel",
    "RevenueCatEvent",
    "SnapshotResponse",
    "TopPerformersResponse",
    "TrendsResponse",
    "WebhookAck",
]
