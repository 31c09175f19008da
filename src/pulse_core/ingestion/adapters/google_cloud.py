"""Google Cloud billing adapter (BigQuery billing export)."""
import logging
from collections import defaultdict

from ..base import CostAdapter, _safe_float
from ..context import IngestionContext
from .google_auth import ServiceAccountAdapter


logger = logging.getLogger(__name__)

BIGQUERY_QUERY_URL = "https://bigquery.googleapis.com/bigquery/v2/projects/{project}/queries"

BILLING_QUERY = """
SELECT
  service.description AS service,
  sku.description AS sku,
  SUM(cost) AS cost,
  currency,
  SUM(usage.amount) AS usage,
  usage.unit AS usage_unit
FROM `{table}`
WHERE DATE(usage_start_time) = @usage_date
GROUP BY service, sku, currency, usage_unit
ORDER BY cost DESC
"""


def parse_query_rows(response: dict) -> list[dict]:
    """Map BigQuery ``rows[].f[].v`` cells onto the schema field names."""
    fields = [f["name"] for f in (response.get("schema") or {}).get("fields") or []]
    rows = []
    for row in response.get("rows") or []:
        cells = [cell.get("v") for cell in row.get("f") or []]
        rows.append(dict(zip(fields, cells)))
    return rows


class GoogleCloudCostAdapter(ServiceAccountAdapter, CostAdapter):
    """Daily GCP spend grouped by service."""

    name = "google-cloud"
    provider_slug = "google_cloud"
    scopes = ["https://www.googleapis.com/auth/bigquery.readonly"]
    not_configured_message = "billing export not configured"

    def is_configured(self) -> bool:
        return bool(
            self.settings.firebase_service_account_json
            and self.settings.google_cloud_project
            and self.settings.google_cloud_billing_dataset
        )

    def billing_table(self) -> str:
        suffix = "*"
        if self.settings.google_cloud_billing_account_id:
            suffix = self.settings.google_cloud_billing_account_id.replace("-", "_")
        return (
            f"{self.settings.google_cloud_project}."
            f"{self.settings.google_cloud_billing_dataset}."
            f"gcp_billing_export_v1_{suffix}"
        )

    async def fetch_billing_rows(self, context: IngestionContext) -> list[dict]:
        response = await self._post_json(
            BIGQUERY_QUERY_URL.format(project=self.settings.google_cloud_project),
            payload={
                "query": BILLING_QUERY.format(table=self.billing_table()),
                "useLegacySql": False,
                "parameterMode": "NAMED",
                "queryParameters": [
                    {
                        "name": "usage_date",
                        "parameterType": {"type": "DATE"},
                        "parameterValue": {"value": context.date_str},
                    }
                ],
            },
            headers=await self.auth_headers(),
        )
        return parse_query_rows(response)

    async def fetch_cost(self, context: IngestionContext) -> dict:
        rows = await self.fetch_billing_rows(context)

        by_service: dict[str, float] = defaultdict(float)
        currency = "USD"
        for row in rows:
            by_service[row.get("service") or "unknown"] += _safe_float(row.get("cost"))
            currency = row.get("currency") or currency

        return {
            "cost": sum(by_service.values()),
            "currency": currency,
            "usage_quantity": len(rows),
            "usage_unit": "sku_lines",
            "cost_breakdown": dict(by_service),
            "raw_data": {"rows": rows[:50]},
        }
