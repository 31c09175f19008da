"""Pydantic models for RevenueCat webhook payloads."""
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RevenueCatEvent(BaseModel):
    """RevenueCat webhook ``event`` object.

    Only ``id`` and ``type`` are required; RevenueCat sends ``null`` for
    fields that do not apply to an event type.
    """

    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1, description="Globally unique event id")
    type: str = Field(..., min_length=1, description="INITIAL_PURCHASE, RENEWAL, ...")
    app_id: Optional[str] = None
    app_user_id: Optional[str] = None
    product_id: Optional[str] = None
    price: Optional[float] = None
    currency: Optional[str] = None
    price_in_purchased_currency: Optional[float] = None
    country_code: Optional[str] = None
    store: Optional[str] = Field(None, description="APP_STORE, PLAY_STORE, STRIPE, ...")
    environment: Optional[str] = Field(None, description="PRODUCTION or SANDBOX")
    original_transaction_id: Optional[str] = None
    period_type: Optional[str] = None
    commission_percentage: Optional[float] = None
    takehome_percentage: Optional[float] = None
    entitlement_ids: Optional[list[str]] = None
    event_timestamp_ms: Optional[int] = None

    @property
    def is_production(self) -> bool:
        return (self.environment or "PRODUCTION").upper() == "PRODUCTION"

    @property
    def event_timestamp(self) -> Optional[str]:
        if not self.event_timestamp_ms:
            return None
        return datetime.fromtimestamp(
            self.event_timestamp_ms / 1000, tz=timezone.utc
        ).isoformat()

    def to_record(self, payload: dict) -> dict:
        """Row for the ``revenuecat_events`` table."""
        return {
            "event_id": self.id,
            "event_type": self.type,
            "app_id": self.app_id or "",
            "app_user_id": self.app_user_id or "",
            "product_id": self.product_id or "",
            "price": self.price or 0,
            "currency": self.currency or "USD",
            "price_in_purchased_currency": self.price_in_purchased_currency or 0,
            "country_code": self.country_code or "",
            "store": self.store or "",
            "environment": (self.environment or "PRODUCTION").upper(),
            "transaction_id": self.original_transaction_id or "",
            "period_type": self.period_type,
            "commission_percentage": self.commission_percentage,
            "takehome_percentage": self.takehome_percentage,
            "entitlement_ids": self.entitlement_ids or [],
            "event_timestamp": self.event_timestamp,
            "webhook_payload": payload,
            "notified": False,
        }


class WebhookAck(BaseModel):
    """Acknowledgement returned for every authorized webhook delivery."""

    received: bool = True
    status: str = Field(..., description="processed|duplicate|ignored|stored")
    event_id: Optional[str] = None
