"""SQLite schema definitions for the pulse metrics store.

Database: data/pulse.db (WAL mode)

Every daily metric table carries a UNIQUE constraint equal to its natural
key. Dimension columns are NOT NULL DEFAULT '' so an aggregate ("no
dimension") row is a concrete key value the constraint can compare.
"""
import logging
import sqlite3
from pathlib import Path


logger = logging.getLogger(__name__)


SCHEMA_VERSION = 1

# Natural key per daily metric table, in constraint order.
TABLE_KEYS: dict[str, tuple[str, ...]] = {
    "daily_revenue": ("app_id", "date", "platform", "country", "currency"),
    "daily_subscriptions": ("app_id", "date", "platform", "product_id"),
    "daily_installs": ("app_id", "date", "platform", "country"),
    "daily_active_users": ("app_id", "date", "platform"),
    "daily_feature_usage": ("app_id", "date", "platform", "feature_name"),
    "daily_provider_costs": ("provider_id", "app_id", "date"),
    "daily_website_traffic": ("app_id", "date", "source", "medium", "campaign"),
    "daily_search_console": ("app_id", "date", "query", "page"),
    "daily_email_metrics": ("app_id", "date", "email_type"),
    "daily_web_analytics": ("app_id", "date", "website_id"),
}

# Key columns where "" stands for "aggregate / not scoped".
DIMENSION_FIELDS: dict[str, tuple[str, ...]] = {
    "daily_revenue": ("platform", "country", "currency"),
    "daily_subscriptions": ("platform", "product_id"),
    "daily_installs": ("platform", "country"),
    "daily_active_users": ("platform",),
    "daily_feature_usage": ("platform", "feature_name"),
    "daily_provider_costs": ("app_id",),
    "daily_website_traffic": ("source", "medium", "campaign"),
    "daily_search_console": ("query", "page"),
    "daily_email_metrics": ("app_id", "email_type"),
    "daily_web_analytics": ("website_id",),
}

JSON_COLUMNS = frozenset(
    {
        "raw_data",
        "cost_breakdown",
        "usage_breakdown",
        "top_pages",
        "top_referrers",
        "top_countries",
        "top_browsers",
        "platforms",
        "error_details",
        "webhook_payload",
        "entitlement_ids",
    }
)

SEEDED_PROVIDERS = (
    ("anthropic", "Anthropic", "ai"),
    ("elevenlabs", "ElevenLabs", "ai"),
    ("cartesia", "Cartesia", "ai"),
    ("google_cloud", "Google Cloud", "cloud"),
    ("supabase", "Supabase", "database"),
    ("neon", "Neon", "database"),
    ("resend", "Resend", "email"),
    ("revenuecat", "RevenueCat", "payments"),
)


def connect(db_path: str | Path) -> sqlite3.Connection:
    """Open a WAL-mode connection with dict-friendly rows.

    The connection may be handed to the API server thread; callers keep
    access to it on one thread at a time.
    """
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


def init_database(db_path: str | Path) -> None:
    """Initialize metrics database with schema.

    Creates tables if they don't exist.
    Enables WAL mode for concurrent reads.

    Args:
        db_path: Path to SQLite database file
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)

    try:
        conn.execute("PRAGMA journal_mode=WAL")
        ensure_schema(conn)
    finally:
        conn.close()


def ensure_schema(conn: sqlite3.Connection) -> None:
    """Apply the schema to an open connection if it is behind."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY,
            applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    cursor = conn.execute("SELECT MAX(version) FROM schema_version")
    current_version = cursor.fetchone()[0] or 0

    if current_version < SCHEMA_VERSION:
        _apply_schema(conn)
        _seed_providers(conn)
        conn.execute(
            "INSERT INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,),
        )
        conn.commit()
        logger.info("Database schema initialized (version %s)", SCHEMA_VERSION)
    else:
        logger.debug("Database schema up to date (version %s)", current_version)


def _apply_schema(conn: sqlite3.Connection) -> None:
    """Apply database schema.

    Args:
        conn: SQLite connection (in transaction)
    """
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS apps (
            id TEXT PRIMARY KEY,
            slug TEXT NOT NULL UNIQUE,
            name TEXT NOT NULL,
            type TEXT NOT NULL DEFAULT 'mobile',
            platforms TEXT NOT NULL DEFAULT '[]',
            apple_app_id TEXT,
            google_package_name TEXT,
            revenuecat_app_id TEXT,
            ga4_property_id TEXT,
            search_console_site TEXT,
            umami_website_id TEXT,
            email_domain TEXT,
            website_url TEXT,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS providers (
            id TEXT PRIMARY KEY,
            slug TEXT NOT NULL UNIQUE,
            name TEXT NOT NULL,
            category TEXT NOT NULL DEFAULT 'other',
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS daily_revenue (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            app_id TEXT NOT NULL,
            date TEXT NOT NULL,
            platform TEXT NOT NULL DEFAULT '',
            country TEXT NOT NULL DEFAULT '',
            currency TEXT NOT NULL DEFAULT 'USD',
            gross_revenue REAL NOT NULL DEFAULT 0,
            net_revenue REAL NOT NULL DEFAULT 0,
            refunds REAL NOT NULL DEFAULT 0,
            iap_revenue REAL NOT NULL DEFAULT 0,
            subscription_revenue REAL NOT NULL DEFAULT 0,
            ad_revenue REAL NOT NULL DEFAULT 0,
            transaction_count INTEGER NOT NULL DEFAULT 0,
            paying_users INTEGER NOT NULL DEFAULT 0,
            raw_data TEXT,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(app_id, date, platform, country, currency)
        )
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS daily_subscriptions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            app_id TEXT NOT NULL,
            date TEXT NOT NULL,
            platform TEXT NOT NULL DEFAULT '',
            product_id TEXT NOT NULL DEFAULT '',
            active_subscriptions INTEGER NOT NULL DEFAULT 0,
            active_trials INTEGER NOT NULL DEFAULT 0,
            new_trials INTEGER NOT NULL DEFAULT 0,
            trial_conversions INTEGER NOT NULL DEFAULT 0,
            trial_cancellations INTEGER NOT NULL DEFAULT 0,
            new_subscriptions INTEGER NOT NULL DEFAULT 0,
            renewals INTEGER NOT NULL DEFAULT 0,
            cancellations INTEGER NOT NULL DEFAULT 0,
            expirations INTEGER NOT NULL DEFAULT 0,
            reactivations INTEGER NOT NULL DEFAULT 0,
            billing_retries INTEGER NOT NULL DEFAULT 0,
            mrr REAL NOT NULL DEFAULT 0,
            raw_data TEXT,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(app_id, date, platform, product_id)
        )
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS daily_installs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            app_id TEXT NOT NULL,
            date TEXT NOT NULL,
            platform TEXT NOT NULL DEFAULT '',
            country TEXT NOT NULL DEFAULT '',
            installs INTEGER NOT NULL DEFAULT 0,
            uninstalls INTEGER NOT NULL DEFAULT 0,
            updates INTEGER NOT NULL DEFAULT 0,
            product_page_views INTEGER NOT NULL DEFAULT 0,
            impressions INTEGER NOT NULL DEFAULT 0,
            raw_data TEXT,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(app_id, date, platform, country)
        )
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS daily_active_users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            app_id TEXT NOT NULL,
            date TEXT NOT NULL,
            platform TEXT NOT NULL DEFAULT '',
            dau INTEGER NOT NULL DEFAULT 0,
            wau INTEGER NOT NULL DEFAULT 0,
            mau INTEGER NOT NULL DEFAULT 0,
            sessions INTEGER NOT NULL DEFAULT 0,
            avg_session_duration_seconds REAL NOT NULL DEFAULT 0,
            new_users INTEGER NOT NULL DEFAULT 0,
            returning_users INTEGER NOT NULL DEFAULT 0,
            d1_retention REAL,
            d7_retention REAL,
            d30_retention REAL,
            raw_data TEXT,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(app_id, date, platform)
        )
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS daily_feature_usage (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            app_id TEXT NOT NULL,
            date TEXT NOT NULL,
            platform TEXT NOT NULL DEFAULT '',
            feature_name TEXT NOT NULL DEFAULT '',
            event_count INTEGER NOT NULL DEFAULT 0,
            unique_users INTEGER NOT NULL DEFAULT 0,
            raw_data TEXT,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(app_id, date, platform, feature_name)
        )
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS daily_provider_costs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            provider_id TEXT NOT NULL,
            app_id TEXT NOT NULL DEFAULT '',
            date TEXT NOT NULL,
            cost REAL NOT NULL DEFAULT 0,
            currency TEXT NOT NULL DEFAULT 'USD',
            usage_quantity REAL,
            usage_unit TEXT,
            cost_breakdown TEXT,
            usage_breakdown TEXT,
            raw_data TEXT,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(provider_id, app_id, date)
        )
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS daily_website_traffic (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            app_id TEXT NOT NULL,
            date TEXT NOT NULL,
            source TEXT NOT NULL DEFAULT '',
            medium TEXT NOT NULL DEFAULT '',
            campaign TEXT NOT NULL DEFAULT '',
            sessions INTEGER NOT NULL DEFAULT 0,
            users INTEGER NOT NULL DEFAULT 0,
            new_users INTEGER NOT NULL DEFAULT 0,
            pageviews INTEGER NOT NULL DEFAULT 0,
            bounce_rate REAL NOT NULL DEFAULT 0,
            avg_session_duration_seconds REAL NOT NULL DEFAULT 0,
            conversions INTEGER NOT NULL DEFAULT 0,
            raw_data TEXT,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(app_id, date, source, medium, campaign)
        )
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS daily_search_console (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            app_id TEXT NOT NULL,
            date TEXT NOT NULL,
            query TEXT NOT NULL DEFAULT '',
            page TEXT NOT NULL DEFAULT '',
            clicks INTEGER NOT NULL DEFAULT 0,
            impressions INTEGER NOT NULL DEFAULT 0,
            ctr REAL NOT NULL DEFAULT 0,
            position REAL NOT NULL DEFAULT 0,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(app_id, date, query, page)
        )
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS daily_email_metrics (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            app_id TEXT NOT NULL DEFAULT '',
            date TEXT NOT NULL,
            email_type TEXT NOT NULL DEFAULT '',
            emails_sent INTEGER NOT NULL DEFAULT 0,
            delivered INTEGER NOT NULL DEFAULT 0,
            opened INTEGER NOT NULL DEFAULT 0,
            clicked INTEGER NOT NULL DEFAULT 0,
            bounced INTEGER NOT NULL DEFAULT 0,
            unsubscribed INTEGER NOT NULL DEFAULT 0,
            received INTEGER NOT NULL DEFAULT 0,
            tickets_opened INTEGER NOT NULL DEFAULT 0,
            avg_response_time_minutes REAL,
            raw_data TEXT,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(app_id, date, email_type)
        )
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS daily_web_analytics (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            app_id TEXT NOT NULL,
            date TEXT NOT NULL,
            website_id TEXT NOT NULL DEFAULT '',
            pageviews INTEGER NOT NULL DEFAULT 0,
            visitors INTEGER NOT NULL DEFAULT 0,
            visits INTEGER NOT NULL DEFAULT 0,
            bounce_rate REAL NOT NULL DEFAULT 0,
            avg_duration_seconds REAL NOT NULL DEFAULT 0,
            top_pages TEXT,
            top_referrers TEXT,
            top_countries TEXT,
            top_browsers TEXT,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(app_id, date, website_id)
        )
        """
    )

    for table in TABLE_KEYS:
        conn.execute(
            f"CREATE INDEX IF NOT EXISTS idx_{table}_date ON {table}(date)"
        )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS ingestion_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            source TEXT NOT NULL,
            date TEXT NOT NULL,
            app_id TEXT,
            provider_id TEXT,
            started_at TEXT NOT NULL,
            completed_at TEXT,
            status TEXT NOT NULL DEFAULT 'running'
                CHECK (status IN ('running', 'success', 'failed')),
            records_processed INTEGER NOT NULL DEFAULT 0,
            error_message TEXT,
            error_details TEXT
        )
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_ingestion_logs_date
        ON ingestion_logs(date, source)
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS revenuecat_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            event_id TEXT NOT NULL UNIQUE,
            event_type TEXT NOT NULL,
            app_id TEXT,
            app_user_id TEXT,
            product_id TEXT,
            price REAL,
            currency TEXT,
            price_in_purchased_currency REAL,
            country_code TEXT,
            store TEXT,
            environment TEXT NOT NULL DEFAULT 'PRODUCTION',
            transaction_id TEXT,
            period_type TEXT,
            commission_percentage REAL,
            takehome_percentage REAL,
            entitlement_ids TEXT,
            event_timestamp TEXT,
            webhook_payload TEXT,
            notified INTEGER NOT NULL DEFAULT 0,
            processed_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_revenuecat_events_type
        ON revenuecat_events(event_type, event_timestamp)
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS notification_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            channel TEXT NOT NULL,
            notification_type TEXT NOT NULL,
            reference_id TEXT,
            message TEXT NOT NULL,
            sent_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )


def _seed_providers(conn: sqlite3.Connection) -> None:
    conn.executemany(
        """
        INSERT INTO providers (id, slug, name, category)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(slug) DO NOTHING
        """,
        [(slug, slug, name, category) for slug, name, category in SEEDED_PROVIDERS],
    )
