"""Runtime settings loaded from environment variables."""
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo


logger = logging.getLogger(__name__)

DEFAULT_FX_API_URL = "https://api.frankfurter.app"


def _resolve_timezone(tz_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name)
    except Exception:
        logger.warning("Invalid PULSE_TIMEZONE '%s', using UTC", tz_name)
        return ZoneInfo("UTC")


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid %s '%s', using %s", name, raw, default)
        return default


def _list_env(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if not raw:
        return default
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def revenuecat_key_env_name(app_slug: str) -> str:
    """Environment variable holding a per-app RevenueCat secret key."""
    return "REVENUECAT_API_KEY_" + app_slug.upper().replace("-", "_")


@dataclass
class Settings:
    """Process-wide configuration.

    Built once by the entry point and passed to whatever needs it.
    Credential fields are ``None`` when the provider is not configured.
    """

    db_path: Path = Path("data/pulse.db")
    raw_dir: Path = Path("data/pulse/raw")
    timezone: str = "UTC"
    backfill_days: int = 3
    entity_delay_ms: int = 100

    app_store_key_id: Optional[str] = None
    app_store_issuer_id: Optional[str] = None
    app_store_private_key: Optional[str] = None
    app_store_vendor_number: Optional[str] = None

    google_play_service_account_json: Optional[str] = None
    google_play_reports_bucket: Optional[str] = None

    revenuecat_api_key: Optional[str] = None
    revenuecat_app_keys: dict[str, str] = field(default_factory=dict)

    firebase_service_account_json: Optional[str] = None

    umami_api_url: Optional[str] = None
    umami_api_token: Optional[str] = None

    brevo_api_key: Optional[str] = None

    anthropic_admin_api_key: Optional[str] = None
    elevenlabs_api_key: Optional[str] = None
    cartesia_api_key: Optional[str] = None
    neon_api_key: Optional[str] = None
    supabase_management_api_key: Optional[str] = None
    google_cloud_project: Optional[str] = None
    google_cloud_billing_dataset: Optional[str] = None
    google_cloud_billing_account_id: Optional[str] = None

    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None

    email_imap_host: Optional[str] = None
    email_imap_port: int = 993
    email_imap_user: Optional[str] = None
    email_imap_password: Optional[str] = None
    email_sent_folders: tuple[str, ...] = ("[Gmail]/Sent Mail", "Sent")

    fx_api_url: str = DEFAULT_FX_API_URL

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the current process environment."""
        app_keys = {
            name: value
            for name, value in os.environ.items()
            if name.startswith("REVENUECAT_API_KEY_") and value
        }

        return cls(
            db_path=Path(os.getenv("PULSE_DB_PATH", "data/pulse.db")),
            raw_dir=Path(os.getenv("PULSE_RAW_DIR", "data/pulse/raw")),
            timezone=os.getenv("PULSE_TIMEZONE", "UTC"),
            backfill_days=_int_env("PULSE_BACKFILL_DAYS", 3),
            entity_delay_ms=_int_env("PULSE_ENTITY_DELAY_MS", 100),
            app_store_key_id=os.getenv("APP_STORE_CONNECT_KEY_ID"),
            app_store_issuer_id=os.getenv("APP_STORE_CONNECT_ISSUER_ID"),
            app_store_private_key=os.getenv("APP_STORE_CONNECT_PRIVATE_KEY"),
            app_store_vendor_number=os.getenv("APP_STORE_CONNECT_VENDOR_NUMBER"),
            google_play_service_account_json=os.getenv(
                "GOOGLE_PLAY_SERVICE_ACCOUNT_JSON"
            ),
            google_play_reports_bucket=os.getenv("GOOGLE_PLAY_REPORTS_BUCKET"),
            revenuecat_api_key=os.getenv("REVENUECAT_SECRET_API_KEY"),
            revenuecat_app_keys=app_keys,
            firebase_service_account_json=os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON"),
            umami_api_url=os.getenv("UMAMI_API_URL"),
            umami_api_token=os.getenv("UMAMI_API_TOKEN"),
            brevo_api_key=os.getenv("BREVO_API_KEY"),
            anthropic_admin_api_key=os.getenv("ANTHROPIC_ADMIN_API_KEY"),
            elevenlabs_api_key=os.getenv("ELEVENLABS_API_KEY"),
            cartesia_api_key=os.getenv("CARTESIA_API_KEY"),
            neon_api_key=os.getenv("NEON_API_KEY"),
            supabase_management_api_key=os.getenv("SUPABASE_MANAGEMENT_API_KEY"),
            google_cloud_project=os.getenv("GOOGLE_CLOUD_PROJECT"),
            google_cloud_billing_dataset=os.getenv("GOOGLE_CLOUD_BILLING_DATASET"),
            google_cloud_billing_account_id=os.getenv(
                "GOOGLE_CLOUD_BILLING_ACCOUNT_ID"
            ),
            telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN"),
            telegram_chat_id=os.getenv("TELEGRAM_CHAT_ID"),
            email_imap_host=os.getenv("EMAIL_IMAP_HOST"),
            email_imap_port=_int_env("EMAIL_IMAP_PORT", 993),
            email_imap_user=os.getenv("EMAIL_IMAP_USER"),
            email_imap_password=os.getenv("EMAIL_IMAP_PASSWORD"),
            email_sent_folders=_list_env(
                "EMAIL_IMAP_SENT_FOLDERS", ("[Gmail]/Sent Mail", "Sent")
            ),
            fx_api_url=os.getenv("PULSE_FX_API_URL", DEFAULT_FX_API_URL),
        )

    @property
    def tzinfo(self) -> ZoneInfo:
        return _resolve_timezone(self.timezone)

    def revenuecat_key_for(self, app_slug: str) -> Optional[str]:
        """Per-app RevenueCat key, falling back to the shared secret key."""
        return (
            self.revenuecat_app_keys.get(revenuecat_key_env_name(app_slug))
            or self.revenuecat_api_key
        )

    def secrets(self) -> list[Optional[str]]:
        """Every configured secret, for log redaction."""
        return [
            self.app_store_private_key,
            self.google_play_service_account_json,
            self.revenuecat_api_key,
            self.firebase_service_account_json,
            self.umami_api_token,
            self.brevo_api_key,
            self.anthropic_admin_api_key,
            self.elevenlabs_api_key,
            self.cartesia_api_key,
            self.neon_api_key,
            self.supabase_management_api_key,
            self.telegram_bot_token,
            self.email_imap_password,
            *self.revenuecat_app_keys.values(),
        ]
