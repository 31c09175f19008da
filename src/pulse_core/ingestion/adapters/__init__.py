"""Provider adapters, one module per provider family."""
from typing import Optional

import aiohttp

from ...config import Settings
from ...storage.store import MetricsStore
from ..base import SourceAdapter
from ..raw_archive import RawArchive
from .app_store import AppStoreAdapter
from .brevo import BrevoAdapter
from .costs import (
    AnthropicCostAdapter,
    CartesiaCostAdapter,
    ElevenLabsCostAdapter,
    NeonCostAdapter,
    SupabaseCostAdapter,
)
from .email_inbox import EmailInboxAdapter
from .firebase import FirebaseAdapter
from .google_cloud import GoogleCloudCostAdapter
from .google_play import GooglePlayAdapter
from .revenuecat import RevenueCatAdapter
from .search_console import SearchConsoleAdapter
from .umami import UmamiAdapter
from .website import WebsiteAdapter

# Registry order is the order sources are listed and reported in.
ADAPTER_CLASSES: tuple[type[SourceAdapter], ...] = (
    AppStoreAdapter,
    GooglePlayAdapter,
    RevenueCatAdapter,
    FirebaseAdapter,
    WebsiteAdapter,
    SearchConsoleAdapter,
    UmamiAdapter,
    BrevoAdapter,
    EmailInboxAdapter,
    AnthropicCostAdapter,
    ElevenLabsCostAdapter,
    CartesiaCostAdapter,
    GoogleCloudCostAdapter,
    SupabaseCostAdapter,
    NeonCostAdapter,
)


def default_adapters(
    store: MetricsStore,
    session: aiohttp.ClientSession,
    settings: Settings,
    archive: Optional[RawArchive] = None,
) -> list[SourceAdapter]:
    """Instantiate every known adapter against shared dependencies."""
    return [cls(store, session, settings, archive) for cls in ADAPTER_CLASSES]


__all__ = [
    "ADAPTER_CLASSES",
    "AnthropicCostAdapter",
    "AppStoreAdapter",
    "BrevoAdapter",
    "CartesiaCostAdapter",
    "ElevenLabsCostAdapter",
    "EmailInboxAdapter",
    "FirebaseAdapter",
    "GoogleCloudCostAdapter",
    "GooglePlayAdapter",
    "NeonCostAdapter",
    "RevenueCatAdapter",
    "SearchConsoleAdapter",
    "SupabaseCostAdapter",
    "UmamiAdapter",
    "WebsiteAdapter",
    "default_adapters",
]
