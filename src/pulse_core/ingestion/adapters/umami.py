"""Umami web analytics adapter."""
import logging
from datetime import datetime, timedelta, timezone

from ...storage.models import App
from ..base import RunStats, SourceAdapter, _safe_int
from ..context import IngestionContext


logger = logging.getLogger(__name__)

TOP_METRIC_TYPES = {
    "url": "top_pages",
    "referrer": "top_referrers",
    "country": "top_countries",
    "browser": "top_browsers",
}

TOP_LIMIT = 20


def _stat(stats: dict, name: str) -> int:
    value = stats.get(name)
    if isinstance(value, dict):
        value = value.get("value")
    return _safe_int(value)


def day_bounds_ms(context: IngestionContext) -> tuple[int, int]:
    """UTC start and end of the target day in epoch milliseconds."""
    start = datetime.combine(context.date, datetime.min.time(), tzinfo=timezone.utc)
    end = start + timedelta(days=1) - timedelta(milliseconds=1)
    return int(start.timestamp() * 1000), int(end.timestamp() * 1000)


def summarize_stats(stats: dict) -> dict:
    visits = _stat(stats, "visits")
    return {
        "pageviews": _stat(stats, "pageviews"),
        "visitors": _stat(stats, "visitors"),
        "visits": visits,
        "bounce_rate": _stat(stats, "bounces") / visits * 100 if visits else 0.0,
        "avg_duration_seconds": round(_stat(stats, "totaltime") / visits)
        if visits
        else 0,
    }


class UmamiAdapter(SourceAdapter):
    """Daily stats and top-N breakdowns per Umami website."""

    name = "umami"

    def is_configured(self) -> bool:
        return bool(self.settings.umami_api_url and self.settings.umami_api_token)

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.settings.umami_api_token}",
            "Content-Type": "application/json",
        }

    def _url(self, path: str) -> str:
        return self.settings.umami_api_url.rstrip("/") + path

    async def ingest(self, context: IngestionContext, stats: RunStats) -> None:
        apps = context.apps_where(lambda app: bool(app.umami_website_id))
        await self.for_each_entity(
            apps,
            lambda app: self._ingest_app(app, context),
            stats,
            label=lambda app: app.slug,
        )

    async def _ingest_app(self, app: App, context: IngestionContext) -> int:
        start_at, end_at = day_bounds_ms(context)
        website_id = app.umami_website_id
        window = {"startAt": start_at, "endAt": end_at}

        stats = await self._get_json(
            self._url(f"/api/websites/{website_id}/stats"),
            params=window,
            headers=self._headers(),
        )

        top: dict[str, dict] = {}
        for metric_type, column in TOP_METRIC_TYPES.items():
            items = await self._get_json(
                self._url(f"/api/websites/{website_id}/metrics"),
                params={**window, "type": metric_type, "limit": TOP_LIMIT},
                headers=self._headers(),
            )
            top[column] = {item.get("x") or "": _safe_int(item.get("y")) for item in items}

        await self.archive_raw(app.slug, context.date_str, [{"stats": stats, **top}])
        self.store.upsert(
            "daily_web_analytics",
            {
                "app_id": app.id,
                "date": context.date_str,
                "website_id": website_id,
                **summarize_stats(stats),
                **top,
            },
        )
        return 1
