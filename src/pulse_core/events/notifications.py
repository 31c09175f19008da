"""Operator notification text for RevenueCat lifecycle events."""
from typing import Optional

from ..schemas.revenuecat import RevenueCatEvent

# event type -> (emoji, label)
EVENT_CONFIG: dict[str, tuple[str, str]] = {
    "INITIAL_PURCHASE": ("\U0001F4B0", "New Purchase"),
    "NON_RENEWING_PURCHASE": ("\U0001F4B0", "One-Time Purchase"),
    "RENEWAL": ("\U0001F504", "Subscription Renewed"),
    "CANCELLATION": ("❌", "Subscription Cancelled"),
    "UNCANCELLATION": ("✅", "Cancellation Reversed"),
    "BILLING_ISSUE": ("⚠️", "Billing Issue"),
    "EXPIRATION": ("\U0001F4C5", "Subscription Expired"),
    "TRANSFER": ("➡️", "Subscription Transferred"),
    "PRODUCT_CHANGE": ("\U0001F500", "Plan Changed"),
    "SUBSCRIPTION_PAUSED": ("⏸️", "Subscription Paused"),
    "TRIAL_STARTED": ("\U0001F195", "Trial Started"),
    "TRIAL_CONVERTED": ("\U0001F389", "Trial Converted"),
    "TRIAL_CANCELLED": ("❌", "Trial Cancelled"),
}

NOTIFY_EVENTS = frozenset(
    {
        "INITIAL_PURCHASE",
        "NON_RENEWING_PURCHASE",
        "RENEWAL",
        "CANCELLATION",
        "BILLING_ISSUE",
        "EXPIRATION",
        "UNCANCELLATION",
        "PRODUCT_CHANGE",
        "TRIAL_STARTED",
        "TRIAL_CONVERTED",
    }
)

STORE_NAMES = {"APP_STORE": "App Store", "PLAY_STORE": "Play Store"}

DEFAULT_TAKEHOME = 0.85


def event_label(event_type: str) -> tuple[str, str]:
    return EVENT_CONFIG.get(event_type, ("\U0001F4E8", event_type.replace("_", " ")))


def store_name(store: Optional[str]) -> str:
    if not store:
        return "Unknown"
    return STORE_NAMES.get(store, store)


def format_notification(event: RevenueCatEvent, app_name: Optional[str] = None) -> str:
    """Render a Markdown message for one event.

    Args:
        event: Validated webhook event
        app_name: Friendly app name; falls back to the RevenueCat app id

    Returns:
        Message text
    """
    emoji, label = event_label(event.type)

    lines = [
        f"{emoji} *{label}*",
        "",
        f"*App:* {app_name or event.app_id or 'Unknown'}",
        f"*Product:* `{event.product_id or 'N/A'}`",
    ]

    if event.price and event.price > 0:
        currency = event.currency or "USD"
        takehome = event.price * (event.takehome_percentage or DEFAULT_TAKEHOME)
        lines.append(f"*Price:* {currency} {event.price:.2f}")
        lines.append(f"*Net Revenue:* {currency} {takehome:.2f}")

    lines.append(f"*Store:* {store_name(event.store)}")

    if event.country_code:
        lines.append(f"*Country:* {event.country_code}")
    if event.period_type:
        lines.append(f"*Period:* {event.period_type}")

    return "\n".join(lines)
