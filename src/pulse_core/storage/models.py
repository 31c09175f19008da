"""Reference entities and audit records persisted by the store."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


# Currency every summed revenue figure is expressed in.
REPORTING_CURRENCY = "USD"


class AppType(str, Enum):
    """Kinds of tracked product."""

    MOBILE = "mobile"
    WEB = "web"
    DESKTOP = "desktop"
    API = "api"


class IngestionStatus(str, Enum):
    """Ingestion log lifecycle states."""

    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class App:
    """Tracked product and its analytics property references."""

    id: str
    slug: str
    name: str
    type: AppType = AppType.MOBILE
    platforms: tuple[str, ...] = ()
    apple_app_id: Optional[str] = None
    google_package_name: Optional[str] = None
    revenuecat_app_id: Optional[str] = None
    ga4_property_id: Optional[str] = None
    search_console_site: Optional[str] = None
    umami_website_id: Optional[str] = None
    email_domain: Optional[str] = None
    website_url: Optional[str] = None
    is_active: bool = True

    def has_platform(self, platform: str) -> bool:
        return platform in self.platforms


@dataclass(frozen=True)
class Provider:
    """External cost/usage source."""

    id: str
    slug: str
    name: str
    category: str = "other"
    is_active: bool = True


@dataclass
class IngestionLogEntry:
    """One adapter invocation for one date."""

    source: str
    date: str
    started_at: str
    status: IngestionStatus = IngestionStatus.RUNNING
    provider_id: Optional[str] = None
    app_id: Optional[str] = None
    completed_at: Optional[str] = None
    records_processed: int = 0
    error_message: Optional[str] = None
    error_details: dict = field(default_factory=dict)
    id: Optional[int] = None
