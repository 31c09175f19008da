"""Google Analytics 4 Data API helpers shared by GA4-backed adapters."""
import logging

from .google_auth import ServiceAccountAdapter


logger = logging.getLogger(__name__)

GA4_DATA_API = "https://analyticsdata.googleapis.com/v1beta"


def report_rows(report: dict) -> list[dict]:
    """Flatten a runReport response into ``{header_name: value}`` dicts."""
    dimension_names = [h["name"] for h in report.get("dimensionHeaders") or []]
    metric_names = [h["name"] for h in report.get("metricHeaders") or []]

    rows = []
    for row in report.get("rows") or []:
        values: dict[str, str] = {}
        for name, cell in zip(dimension_names, row.get("dimensionValues") or []):
            values[name] = cell.get("value", "")
        for name, cell in zip(metric_names, row.get("metricValues") or []):
            values[name] = cell.get("value", "0")
        rows.append(values)
    return rows


def single_day(date_str: str) -> list[dict]:
    return [{"startDate": date_str, "endDate": date_str}]


class Ga4Adapter(ServiceAccountAdapter):
    """Base for adapters reading GA4 properties with the Firebase service account."""

    scopes = ["https://www.googleapis.com/auth/analytics.readonly"]
    not_configured_message = "GA4 service account not configured"

    def is_configured(self) -> bool:
        return bool(self.settings.firebase_service_account_json)

    async def run_report(self, property_id: str, body: dict) -> list[dict]:
        """POST ``properties/{id}:runReport`` and return flattened rows."""
        report = await self._post_json(
            f"{GA4_DATA_API}/properties/{property_id}:runReport",
            payload=body,
            headers=await self.auth_headers(),
        )
        return report_rows(report)
