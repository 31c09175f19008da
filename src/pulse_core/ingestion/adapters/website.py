"""Website traffic adapter (GA4 traffic acquisition for web apps)."""
import logging

from ...storage.models import App, AppType
from ..base import RunStats, _safe_float, _safe_int
from ..context import IngestionContext
from .ga4 import Ga4Adapter, single_day


logger = logging.getLogger(__name__)

CONVERSION_EVENTS = {
    "sign_up": "signups",
    "signup": "signups",
    "app_download": "app_downloads",
    "download_click": "app_downloads",
    "purchase": "purchases",
    "begin_checkout": "purchases",
}


def parse_traffic_rows(rows: list[dict]) -> list[dict]:
    traffic = []
    for row in rows:
        traffic.append(
            {
                "source": row.get("sessionSource") or "(direct)",
                "medium": row.get("sessionMedium") or "(none)",
                "sessions": _safe_int(row.get("sessions")),
                "users": _safe_int(row.get("totalUsers")),
                "new_users": _safe_int(row.get("newUsers")),
                "pageviews": _safe_int(row.get("screenPageViews")),
                "avg_session_duration_seconds": _safe_float(
                    row.get("averageSessionDuration")
                ),
                "bounce_rate": _safe_float(row.get("bounceRate")) * 100,
            }
        )
    return traffic


def total_traffic(traffic: list[dict]) -> dict:
    """Sum counts and session-weight the averages across sources."""
    sessions = sum(row["sessions"] for row in traffic)
    totals = {
        "sessions": sessions,
        "users": sum(row["users"] for row in traffic),
        "new_users": sum(row["new_users"] for row in traffic),
        "pageviews": sum(row["pageviews"] for row in traffic),
        "avg_session_duration_seconds": 0.0,
        "bounce_rate": 0.0,
    }
    if sessions:
        for field in ("avg_session_duration_seconds", "bounce_rate"):
            totals[field] = (
                sum(row[field] * row["sessions"] for row in traffic) / sessions
            )
    return totals


class WebsiteAdapter(Ga4Adapter):
    """Aggregate and per-source traffic rows for web apps."""

    name = "website"

    async def fetch_traffic(self, app: App, date_str: str) -> list[dict]:
        rows = await self.run_report(
            app.ga4_property_id,
            {
                "dateRanges": single_day(date_str),
                "dimensions": [{"name": "sessionSource"}, {"name": "sessionMedium"}],
                "metrics": [
                    {"name": "sessions"},
                    {"name": "totalUsers"},
                    {"name": "newUsers"},
                    {"name": "screenPageViews"},
                    {"name": "averageSessionDuration"},
                    {"name": "bounceRate"},
                ],
                "limit": 100,
                "orderBys": [{"metric": {"metricName": "sessions"}, "desc": True}],
            },
        )
        return parse_traffic_rows(rows)

    async def fetch_conversions(self, app: App, date_str: str) -> dict[str, int]:
        counts = {"signups": 0, "app_downloads": 0, "purchases": 0}
        try:
            rows = await self.run_report(
                app.ga4_property_id,
                {
                    "dateRanges": single_day(date_str),
                    "dimensions": [{"name": "eventName"}],
                    "metrics": [{"name": "eventCount"}],
                    "dimensionFilter": {
                        "filter": {
                            "fieldName": "eventName",
                            "inListFilter": {"values": list(CONVERSION_EVENTS)},
                        }
                    },
                },
            )
        except Exception as exc:
            logger.warning(
                "Could not fetch conversions for %s: %s", app.slug, self._redact(str(exc))
            )
            return counts

        for row in rows:
            bucket = CONVERSION_EVENTS.get(row.get("eventName", ""))
            if bucket:
                counts[bucket] += _safe_int(row.get("eventCount"))
        return counts

    async def ingest(self, context: IngestionContext, stats: RunStats) -> None:
        apps = context.apps_where(
            lambda app: app.type == AppType.WEB and bool(app.ga4_property_id)
        )
        await self.for_each_entity(
            apps,
            lambda app: self._ingest_app(app, context),
            stats,
            label=lambda app: app.slug,
        )

    async def _ingest_app(self, app: App, context: IngestionContext) -> int:
        date_str = context.date_str
        traffic = await self.fetch_traffic(app, date_str)
        conversions = await self.fetch_conversions(app, date_str)
        await self.archive_raw(
            app.slug, date_str, [{"traffic": traffic, "conversions": conversions}]
        )

        rows = [
            {
                "source": None,
                "medium": None,
                "campaign": None,
                **total_traffic(traffic),
                "conversions": sum(conversions.values()),
                "raw_data": {"conversions": conversions},
            }
        ]
        for entry in traffic:
            rows.append({**entry, "campaign": None})

        for row in rows:
            self.store.upsert(
                "daily_website_traffic",
                {"app_id": app.id, "date": date_str, **row},
            )
        return len(rows)
