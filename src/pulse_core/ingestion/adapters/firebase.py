"""Firebase / GA4 app analytics adapter.

Writes one active-users row per app (platform ``web`` for web apps, ``all``
otherwise) and one feature-usage row per custom event name.
"""
import logging
from datetime import timedelta
from typing import Optional

from ...storage.models import App, AppType
from ..base import RunStats, _safe_float, _safe_int
from ..context import IngestionContext
from .ga4 import Ga4Adapter, single_day


logger = logging.getLogger(__name__)

ACTIVE_USER_METRICS = (
    "activeUsers",
    "active7DayUsers",
    "active28DayUsers",
    "newUsers",
    "sessions",
    "averageSessionDuration",
)

AUTOMATIC_EVENTS = frozenset({"page_view", "scroll", "click", "user_engagement"})
AUTOMATIC_PREFIXES = ("first_", "session_")

RETENTION_DAYS = {1: "d1_retention", 7: "d7_retention", 30: "d30_retention"}


def is_feature_event(event_name: str) -> bool:
    """True for custom (non-automatic) GA4 events."""
    if not event_name or event_name in AUTOMATIC_EVENTS:
        return False
    return not event_name.startswith(AUTOMATIC_PREFIXES)


def parse_retention(rows: list[dict]) -> dict[str, Optional[float]]:
    """Percent of each cohort still active on day 1, 7 and 30."""
    active: dict[int, int] = {}
    total: dict[int, int] = {}
    for row in rows:
        day = _safe_int(row.get("cohortNthDay"))
        if day not in RETENTION_DAYS:
            continue
        active[day] = active.get(day, 0) + _safe_int(row.get("cohortActiveUsers"))
        total[day] = total.get(day, 0) + _safe_int(row.get("cohortTotalUsers"))

    retention: dict[str, Optional[float]] = {}
    for day, column in RETENTION_DAYS.items():
        retention[column] = (
            active[day] / total[day] * 100 if total.get(day) else None
        )
    return retention


class FirebaseAdapter(Ga4Adapter):
    """Active users, retention and feature usage from GA4 properties."""

    name = "firebase"

    async def fetch_active_users(self, app: App, date_str: str) -> Optional[dict]:
        rows = await self.run_report(
            app.ga4_property_id,
            {
                "dateRanges": single_day(date_str),
                "metrics": [{"name": name} for name in ACTIVE_USER_METRICS],
            },
        )
        return rows[0] if rows else None

    async def fetch_retention(
        self, app: App, context: IngestionContext
    ) -> dict[str, Optional[float]]:
        """Cohort retention; failures degrade to empty values."""
        body = {
            "dimensions": [{"name": "cohort"}, {"name": "cohortNthDay"}],
            "metrics": [{"name": "cohortActiveUsers"}, {"name": "cohortTotalUsers"}],
            "cohortSpec": {
                "cohorts": [
                    {
                        "name": "cohort",
                        "dimension": "firstSessionDate",
                        "dateRange": {
                            "startDate": (context.date - timedelta(days=30)).isoformat(),
                            "endDate": context.date_str,
                        },
                    }
                ],
                "cohortsRange": {
                    "startOffset": 0,
                    "endOffset": 30,
                    "granularity": "DAILY",
                },
            },
        }
        try:
            return parse_retention(await self.run_report(app.ga4_property_id, body))
        except Exception as exc:
            logger.warning(
                "Skipping GA4 retention for %s: %s", app.slug, self._redact(str(exc))
            )
            return {column: None for column in RETENTION_DAYS.values()}

    async def fetch_feature_usage(self, app: App, date_str: str) -> list[dict]:
        rows = await self.run_report(
            app.ga4_property_id,
            {
                "dateRanges": single_day(date_str),
                "dimensions": [{"name": "eventName"}],
                "metrics": [{"name": "eventCount"}, {"name": "totalUsers"}],
            },
        )
        return [row for row in rows if is_feature_event(row.get("eventName", ""))]

    async def ingest(self, context: IngestionContext, stats: RunStats) -> None:
        apps = context.apps_where(lambda app: bool(app.ga4_property_id))
        await self.for_each_entity(
            apps,
            lambda app: self._ingest_app(app, context),
            stats,
            label=lambda app: app.slug,
        )

    async def _ingest_app(self, app: App, context: IngestionContext) -> int:
        date_str = context.date_str
        platform = "web" if app.type == AppType.WEB else "all"
        written = 0

        active = await self.fetch_active_users(app, date_str)
        if active is not None:
            retention = await self.fetch_retention(app, context)
            dau = _safe_int(active.get("activeUsers"))
            new_users = _safe_int(active.get("newUsers"))
            self.store.upsert(
                "daily_active_users",
                {
                    "app_id": app.id,
                    "date": date_str,
                    "platform": platform,
                    "dau": dau,
                    "wau": _safe_int(active.get("active7DayUsers")),
                    "mau": _safe_int(active.get("active28DayUsers")),
                    "new_users": new_users,
                    "returning_users": max(dau - new_users, 0),
                    "sessions": _safe_int(active.get("sessions")),
                    "avg_session_duration_seconds": round(
                        _safe_float(active.get("averageSessionDuration"))
                    ),
                    **retention,
                    "raw_data": {"active_users": active, "retention": retention},
                },
            )
            written += 1

        features = await self.fetch_feature_usage(app, date_str)
        await self.archive_raw(app.slug, date_str, [{"active": active, "features": features}])
        for feature in features:
            self.store.upsert(
                "daily_feature_usage",
                {
                    "app_id": app.id,
                    "date": date_str,
                    "platform": "all",
                    "feature_name": feature["eventName"],
                    "event_count": _safe_int(feature.get("eventCount")),
                    "unique_users": _safe_int(feature.get("totalUsers")),
                },
            )
            written += 1

        return written
