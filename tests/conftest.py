"""Shared fixtures: in-memory store, sample roster, test settings."""
from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.pulse_core.config import Settings
from src.pulse_core.ingestion.context import IngestionContext
from src.pulse_core.storage.models import App, AppType
from src.pulse_core.storage.schema import connect, ensure_schema
from src.pulse_core.storage.store import MetricsStore


TARGET_DATE = date(2025, 1, 15)


def _make_response(status=200, json_data=None, text="", body=b""):
    """Mock aiohttp response usable as ``async with session.get(...)``."""
    mock_response = AsyncMock()
    mock_response.status = status
    mock_response.json.return_value = json_data if json_data is not None else {}
    mock_response.text.return_value = text
    mock_response.read.return_value = body
    mock_response.__aenter__.return_value = mock_response
    return mock_response


@pytest.fixture
def store():
    """Metrics store over a fresh in-memory database."""
    conn = connect(":memory:")
    ensure_schema(conn)
    metrics_store = MetricsStore(conn)
    yield metrics_store
    conn.close()


@pytest.fixture
def settings(tmp_path):
    """Settings with no pacing and a temporary raw archive."""
    return Settings(
        db_path=tmp_path / "pulse.db",
        raw_dir=tmp_path / "raw",
        entity_delay_ms=0,
    )


@pytest.fixture
def mock_session():
    """Mock aiohttp ClientSession."""
    return MagicMock()


@pytest.fixture
def sample_apps(store):
    """Two mobile apps and one web app, saved in roster order."""
    apps = [
        App(
            id="app-habits",
            slug="habits",
            name="Habits",
            type=AppType.MOBILE,
            platforms=("ios", "android"),
            apple_app_id="1234567890",
            google_package_name="com.example.habits",
            revenuecat_app_id="proj_habits",
            ga4_property_id="111",
            email_domain="habits.example.com",
        ),
        App(
            id="app-focus",
            slug="focus",
            name="Focus",
            type=AppType.MOBILE,
            platforms=("ios",),
            apple_app_id="9876543210",
            revenuecat_app_id="proj_focus",
        ),
        App(
            id="app-site",
            slug="site",
            name="Landing Site",
            type=AppType.WEB,
            platforms=("web",),
            ga4_property_id="333",
            search_console_site="sc-domain:example.com",
            umami_website_id="umami-site",
            website_url="https://example.com",
        ),
    ]
    for app in apps:
        store.save_app(app)
    return store.list_apps()


@pytest.fixture
def context(store, sample_apps):
    """Ingestion context for TARGET_DATE with the sample roster."""
    return IngestionContext(
        date=TARGET_DATE,
        apps=tuple(sample_apps),
        providers=tuple(store.list_providers()),
    )


@pytest.fixture
def make_response():
    """Factory for mock aiohttp responses."""
    return _make_response
