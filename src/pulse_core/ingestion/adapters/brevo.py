"""Brevo transactional email adapter."""
import logging
from typing import Optional

from ...storage.models import App
from ..base import RunStats, SourceAdapter, _safe_int
from ..context import IngestionContext


logger = logging.getLogger(__name__)

BREVO_API_BASE = "https://api.brevo.com/v3"


class BrevoAdapter(SourceAdapter):
    """One ``transactional`` email-metrics row per app with an email domain.

    Reports are filtered by the Brevo tag equal to the app slug.
    """

    name = "brevo"

    def is_configured(self) -> bool:
        return bool(self.settings.brevo_api_key)

    async def fetch_report(self, app: App, date_str: str) -> Optional[dict]:
        data = await self._get_json(
            f"{BREVO_API_BASE}/smtp/statistics/reports",
            params={"startDate": date_str, "endDate": date_str, "tag": app.slug},
            headers={
                "api-key": self.settings.brevo_api_key,
                "Accept": "application/json",
            },
        )
        reports = data.get("reports") or []
        return reports[0] if reports else None

    async def ingest(self, context: IngestionContext, stats: RunStats) -> None:
        apps = context.apps_where(lambda app: bool(app.email_domain))
        await self.for_each_entity(
            apps,
            lambda app: self._ingest_app(app, context),
            stats,
            label=lambda app: app.slug,
        )

    async def _ingest_app(self, app: App, context: IngestionContext) -> int:
        report = await self.fetch_report(app, context.date_str)
        if report is None:
            logger.info("Brevo %s: no data for %s", app.slug, context.date_str)
            return 0

        self.store.upsert(
            "daily_email_metrics",
            {
                "app_id": app.id,
                "date": context.date_str,
                "email_type": "transactional",
                "emails_sent": _safe_int(report.get("requests")),
                "delivered": _safe_int(report.get("delivered")),
                "opened": _safe_int(report.get("uniqueOpens")),
                "clicked": _safe_int(report.get("uniqueClicks")),
                "bounced": _safe_int(report.get("hardBounces"))
                + _safe_int(report.get("softBounces")),
                "unsubscribed": _safe_int(report.get("unsubscribed")),
                "raw_data": report,
            },
        )
        return 1
