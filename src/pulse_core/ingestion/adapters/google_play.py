"""Google Play adapter (installs overview and sales reports from GCS).

Play Console exports monthly report files into a Cloud Storage bucket:
``stats/installs/installs_<package>_<YYYYMM>_overview.csv`` (UTF-16) and
``sales/salesreport_<YYYYMM>.zip``. Only rows for the target date are used.
Sales are charged in the buyer's currency and converted to USD per day.
"""
import csv
import io
import logging
import zipfile
from collections import defaultdict
from typing import Optional
from urllib.parse import quote

from ...exceptions import ProviderApiError
from ...storage.models import App
from ..base import RunStats, _safe_float, _safe_int
from ..context import IngestionContext
from ..fx import convert_revenue, fetch_usd_rates
from .google_auth import ServiceAccountAdapter


logger = logging.getLogger(__name__)

GCS_DOWNLOAD = "https://storage.googleapis.com/storage/v1/b/{bucket}/o/{name}"

STORE_FEE_RATE = 0.15


def _decode_report(payload: bytes) -> str:
    if payload.startswith(b"\xff\xfe") or payload.startswith(b"\xfe\xff"):
        return payload.decode("utf-16")
    return payload.decode("utf-8-sig", errors="replace")


def parse_installs_overview(payload: bytes, date_str: str) -> Optional[dict]:
    """Pick the target date's row from an installs overview CSV."""
    reader = csv.DictReader(io.StringIO(_decode_report(payload)))
    for row in reader:
        if (row.get("Date") or "").strip() != date_str:
            continue
        return {
            "installs": _safe_int(row.get("Daily Device Installs")),
            "uninstalls": _safe_int(row.get("Daily Device Uninstalls")),
            "updates": _safe_int(row.get("Daily Device Upgrades")),
        }
    return None


def parse_sales_report(payload: bytes, package_name: str, date_str: str) -> dict:
    """Aggregate charged amounts for one package and day by (country, currency)."""
    sales: dict[tuple[str, str], dict] = defaultdict(
        lambda: {"gross_revenue": 0.0, "refunds": 0.0, "transaction_count": 0}
    )

    with zipfile.ZipFile(io.BytesIO(payload)) as archive:
        csv_name = next(n for n in archive.namelist() if n.lower().endswith(".csv"))
        text = _decode_report(archive.read(csv_name))

    for row in csv.DictReader(io.StringIO(text)):
        if (row.get("Product ID") or "").strip() != package_name:
            continue
        order_date = (row.get("Order Charged Date") or "").strip().split(" ")[0]
        if order_date != date_str:
            continue

        country = (row.get("Country of Buyer") or "").strip()
        currency = (row.get("Currency of Sale") or "USD").strip()
        amount = _safe_float((row.get("Charged Amount") or "0").replace(",", ""))

        bucket = sales[(country, currency)]
        if (row.get("Financial Status") or "").strip().lower() == "refund":
            bucket["refunds"] += abs(amount)
            continue
        bucket["gross_revenue"] += amount
        bucket["transaction_count"] += 1

    return dict(sales)


class GooglePlayAdapter(ServiceAccountAdapter):
    """Android installs and revenue from Play Console report exports."""

    name = "google-play"
    scopes = ["https://www.googleapis.com/auth/devstorage.read_only"]

    def is_configured(self) -> bool:
        return bool(
            self.settings.google_play_service_account_json
            and self.settings.google_play_reports_bucket
        )

    def service_account_json(self) -> Optional[str]:
        return self.settings.google_play_service_account_json

    async def download(self, object_name: str) -> Optional[bytes]:
        """Download a bucket object; a missing object returns None."""
        url = GCS_DOWNLOAD.format(
            bucket=self.settings.google_play_reports_bucket,
            name=quote(object_name, safe=""),
        )
        try:
            return await self._get_bytes(
                url,
                params={"alt": "media"},
                headers=await self.auth_headers(),
            )
        except ProviderApiError as exc:
            if exc.status == 404:
                logger.info("Play report %s not found", object_name)
                return None
            raise

    async def ingest(self, context: IngestionContext, stats: RunStats) -> None:
        apps = context.apps_where(
            lambda app: app.has_platform("android") and bool(app.google_package_name)
        )
        if not apps:
            return

        month = context.date.strftime("%Y%m")
        sales_payload = await self.download(f"sales/salesreport_{month}.zip")

        await self.for_each_entity(
            apps,
            lambda app: self._ingest_app(app, context, sales_payload),
            stats,
            label=lambda app: app.slug,
        )

    async def _ingest_app(
        self, app: App, context: IngestionContext, sales_payload: Optional[bytes]
    ) -> int:
        date_str = context.date_str
        month = context.date.strftime("%Y%m")
        written = 0

        overview_payload = await self.download(
            f"stats/installs/installs_{app.google_package_name}_{month}_overview.csv"
        )
        if overview_payload is not None:
            installs = parse_installs_overview(overview_payload, date_str)
            if installs is not None:
                self.store.upsert(
                    "daily_installs",
                    {
                        "app_id": app.id,
                        "date": date_str,
                        "platform": "android",
                        "country": None,
                        **installs,
                        "raw_data": installs,
                    },
                )
                written += 1

        if sales_payload is not None:
            sales = parse_sales_report(sales_payload, app.google_package_name, date_str)
            native_revenue = {
                key: {
                    "gross_revenue": measures["gross_revenue"],
                    "net_revenue": measures["gross_revenue"] * (1 - STORE_FEE_RATE)
                    - measures["refunds"],
                    "refunds": measures["refunds"],
                    "iap_revenue": measures["gross_revenue"],
                    "transaction_count": measures["transaction_count"],
                }
                for key, measures in sales.items()
            }
            rates = await fetch_usd_rates(
                self, date_str, (currency for _, currency in native_revenue)
            )

            for (country, currency), measures in convert_revenue(
                native_revenue, rates
            ).items():
                native = measures.pop("native")
                self.store.upsert(
                    "daily_revenue",
                    {
                        "app_id": app.id,
                        "date": date_str,
                        "platform": "android",
                        "country": country,
                        "currency": currency,
                        **measures,
                        "raw_data": {"source": "play_sales_report", "native": native},
                    },
                )
                written += 1

        return written
