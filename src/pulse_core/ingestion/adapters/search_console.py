"""Google Search Console adapter (searchAnalytics.query)."""
import logging
from urllib.parse import quote

from ...storage.models import App, AppType
from ..base import RunStats, _safe_float, _safe_int
from ..context import IngestionContext
from .google_auth import ServiceAccountAdapter


logger = logging.getLogger(__name__)

SEARCH_ANALYTICS_URL = (
    "https://www.googleapis.com/webmasters/v3/sites/{site}/searchAnalytics/query"
)

TOP_ROW_LIMIT = 50


def normalize_site_url(site: str) -> str:
    """Domain properties keep ``sc-domain:``; URL-prefix properties end with '/'."""
    if site.startswith("sc-domain:") or site.endswith("/"):
        return site
    return site + "/"


def _measures(row: dict) -> dict:
    return {
        "clicks": _safe_int(row.get("clicks")),
        "impressions": _safe_int(row.get("impressions")),
        "ctr": _safe_float(row.get("ctr")),
        "position": _safe_float(row.get("position")),
    }


class SearchConsoleAdapter(ServiceAccountAdapter):
    """Aggregate, top-query and top-page search performance for web apps."""

    name = "search-console"
    scopes = ["https://www.googleapis.com/auth/webmasters.readonly"]
    not_configured_message = "service account not configured (needed for Search Console)"

    def is_configured(self) -> bool:
        return bool(self.settings.firebase_service_account_json)

    async def query(
        self, site_url: str, date_str: str, dimensions: list[str], row_limit: int
    ) -> list[dict]:
        data = await self._post_json(
            SEARCH_ANALYTICS_URL.format(site=quote(site_url, safe="")),
            payload={
                "startDate": date_str,
                "endDate": date_str,
                "dimensions": dimensions,
                "rowLimit": row_limit,
                "dataState": "final",
            },
            headers=await self.auth_headers(),
        )
        return data.get("rows") or []

    async def ingest(self, context: IngestionContext, stats: RunStats) -> None:
        apps = context.apps_where(
            lambda app: app.type == AppType.WEB
            and bool(app.search_console_site or app.website_url)
        )
        await self.for_each_entity(
            apps,
            lambda app: self._ingest_app(app, context),
            stats,
            label=lambda app: app.slug,
        )

    async def _ingest_app(self, app: App, context: IngestionContext) -> int:
        site_url = normalize_site_url(app.search_console_site or app.website_url)
        date_str = context.date_str

        rows: list[dict] = []
        aggregate = await self.query(site_url, date_str, [], 1)
        if aggregate:
            rows.append({"query": None, "page": None, **_measures(aggregate[0])})

        for row in await self.query(site_url, date_str, ["query"], TOP_ROW_LIMIT):
            keys = row.get("keys") or [""]
            rows.append({"query": keys[0], "page": None, **_measures(row)})

        for row in await self.query(site_url, date_str, ["page"], TOP_ROW_LIMIT):
            keys = row.get("keys") or [""]
            rows.append({"query": None, "page": keys[0], **_measures(row)})

        await self.archive_raw(app.slug, date_str, rows)
        for row in rows:
            self.store.upsert(
                "daily_search_console", {"app_id": app.id, "date": date_str, **row}
            )

        logger.info("Search Console %s: %s records", app.slug, len(rows))
        return len(rows)
