"""RevenueCat subscription and revenue adapter (REST API v2).

Reads the project overview for point-in-time values (MRR, actives) and
daily charts for per-day counts, then splits the app-level totals evenly
across the app's mobile platforms.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from ...storage.models import App
from ..base import RunStats, SourceAdapter, _safe_float
from ..context import IngestionContext


logger = logging.getLogger(__name__)

REVENUECAT_API_V2 = "https://api.revenuecat.com/v2"

STORE_FEE_RATE = 0.15

# Overview revenue/new_customers cover a trailing 28-day window.
OVERVIEW_WINDOW_DAYS = 28

# Charts API name -> local key
CHARTS = (
    ("revenue", "revenue"),
    ("actives", "active_subscriptions"),
    ("customers_new", "new_customers"),
    ("trials_new", "new_trials"),
)

MOBILE_PLATFORMS = ("ios", "android")


def parse_chart_values(data: dict) -> dict[str, float]:
    """Convert ``[[unix_ts, value, ...], ...]`` into ``{date: value}``."""
    values: dict[str, float] = {}
    for point in data.get("values") or []:
        if not point:
            continue
        day = datetime.fromtimestamp(point[0], tz=timezone.utc).date().isoformat()
        values[day] = _safe_float(point[1] if len(point) > 1 else 0)
    return values


def overview_value(overview: dict, metric_id: str) -> float:
    for metric in overview.get("metrics") or []:
        if metric.get("id") == metric_id:
            return _safe_float(metric.get("value"))
    return 0.0


class RevenueCatAdapter(SourceAdapter):
    """Daily subscriptions and subscription revenue per RevenueCat project."""

    name = "revenuecat"

    def is_configured(self) -> bool:
        return bool(self.settings.revenuecat_api_key or self.settings.revenuecat_app_keys)

    def _headers(self, api_key: str) -> dict:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    async def fetch_overview(self, app: App, api_key: str) -> dict:
        url = f"{REVENUECAT_API_V2}/projects/{app.revenuecat_app_id}/metrics/overview"
        return await self._get_json(url, headers=self._headers(api_key))

    async def fetch_charts(
        self, app: App, context: IngestionContext, api_key: str
    ) -> Optional[dict[str, dict[str, float]]]:
        """Fetch daily chart series; None when every chart call failed."""
        start = (context.date - timedelta(days=7)).isoformat()
        params = {
            "start_date": start,
            "end_date": context.date_str,
            "realtime": "false",
        }

        series: dict[str, dict[str, float]] = {}
        for index, (chart_name, key) in enumerate(CHARTS):
            if index > 0 and self.entity_delay:
                await asyncio.sleep(self.entity_delay)
            url = f"{REVENUECAT_API_V2}/projects/{app.revenuecat_app_id}/charts/{chart_name}"
            try:
                data = await self._get_json(
                    url, params=params, headers=self._headers(api_key)
                )
            except Exception as exc:
                logger.warning(
                    "RevenueCat chart %s failed for %s: %s",
                    chart_name,
                    app.slug,
                    self._redact(str(exc)),
                )
                continue
            series[key] = parse_chart_values(data)

        return series or None

    async def ingest(self, context: IngestionContext, stats: RunStats) -> None:
        apps = context.apps_where(lambda app: bool(app.revenuecat_app_id))
        await self.for_each_entity(
            apps,
            lambda app: self._ingest_app(app, context),
            stats,
            label=lambda app: app.slug,
        )

    async def _ingest_app(self, app: App, context: IngestionContext) -> int:
        api_key = self.settings.revenuecat_key_for(app.slug)
        if not api_key:
            logger.warning("No RevenueCat API key for %s, skipping", app.slug)
            return 0

        date_str = context.date_str
        overview = await self.fetch_overview(app, api_key)
        charts = await self.fetch_charts(app, context, api_key)
        await self.archive_raw(
            app.slug, date_str, [{"overview": overview, "charts": charts}]
        )

        def daily(key: str, fallback: float) -> float:
            if charts and charts.get(key):
                return charts[key].get(date_str, 0.0)
            return fallback

        revenue = daily(
            "revenue", overview_value(overview, "revenue") / OVERVIEW_WINDOW_DAYS
        )
        active_subscriptions = daily(
            "active_subscriptions", overview_value(overview, "active_subscriptions")
        )
        new_customers = daily(
            "new_customers",
            round(overview_value(overview, "new_customers") / OVERVIEW_WINDOW_DAYS),
        )
        new_trials = daily("new_trials", 0.0)
        active_trials = overview_value(overview, "active_trials")
        mrr = overview_value(overview, "mrr")

        data_source = "revenuecat_v2_charts" if charts else "revenuecat_v2_overview"
        logger.info(
            "RevenueCat %s [%s]: %s subs, $%.2f revenue, $%.2f MRR",
            app.slug,
            data_source,
            int(active_subscriptions),
            revenue,
            mrr,
        )

        platforms = [p for p in MOBILE_PLATFORMS if app.has_platform(p)] or [""]
        share = len(platforms)

        written = 0
        for platform in platforms:
            self.store.upsert(
                "daily_subscriptions",
                {
                    "app_id": app.id,
                    "date": date_str,
                    "platform": platform,
                    "product_id": None,
                    "active_subscriptions": round(active_subscriptions / share),
                    "active_trials": round(active_trials / share),
                    "new_trials": round(new_trials / share),
                    "new_subscriptions": round(new_customers / share),
                    "mrr": mrr / share,
                    "raw_data": {"source": data_source, "overview": overview},
                },
            )
            self.store.upsert(
                "daily_revenue",
                {
                    "app_id": app.id,
                    "date": date_str,
                    "platform": platform,
                    "country": None,
                    "currency": "USD",
                    "gross_revenue": revenue / share,
                    "net_revenue": revenue * (1 - STORE_FEE_RATE) / share,
                    "subscription_revenue": revenue / share,
                    "raw_data": {"source": data_source},
                },
            )
            written += 2

        return written
