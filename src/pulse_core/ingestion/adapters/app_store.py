"""App Store Connect adapter (daily sales summary report).

The SALES/SUMMARY report is a gzip TSV covering every app in the vendor
account. Rows are grouped per app and storefront country into revenue and
install rows for the ``ios`` platform; proceeds are converted to USD.
"""
import csv
import gzip
import io
import logging
import time
from collections import defaultdict
from typing import Optional

import jwt

from ...exceptions import ProviderApiError, ProviderConfigError
from ...storage.models import App
from ..base import RunStats, SourceAdapter, _safe_float, _safe_int
from ..context import IngestionContext
from ..fx import convert_revenue, fetch_usd_rates


logger = logging.getLogger(__name__)

APP_STORE_CONNECT_API = "https://api.appstoreconnect.apple.com/v1"

TOKEN_TTL_SECONDS = 20 * 60

STORE_FEE_RATE = 0.15

DOWNLOAD_TYPES = frozenset({"1", "1F", "1T", "F1"})
UPDATE_TYPES = frozenset({"7", "7F", "7T", "F7"})
SUBSCRIPTION_TYPES = frozenset({"IAY", "FI1"})
IAP_TYPES = frozenset({"IA1", "IA9", "IAC"})


def parse_sales_report(payload: bytes) -> list[dict]:
    """Decode a gzip (or plain) TSV sales report into row dicts."""
    try:
        text = gzip.decompress(payload).decode("utf-8", errors="replace")
    except OSError:
        text = payload.decode("utf-8", errors="replace")
    return list(csv.DictReader(io.StringIO(text), delimiter="\t"))


def _row_matches(row: dict, apple_app_id: str) -> bool:
    return apple_app_id in (
        (row.get("Apple Identifier") or "").strip(),
        (row.get("Parent Identifier") or "").strip(),
    )


def summarize_app_rows(rows: list[dict]) -> tuple[dict, dict]:
    """Aggregate one app's report rows.

    Returns:
        (revenue by (country, currency), installs by country)
    """
    revenue: dict[tuple[str, str], dict] = defaultdict(
        lambda: {
            "gross_revenue": 0.0,
            "net_revenue": 0.0,
            "refunds": 0.0,
            "iap_revenue": 0.0,
            "subscription_revenue": 0.0,
            "transaction_count": 0,
        }
    )
    installs: dict[str, dict] = defaultdict(lambda: {"installs": 0, "updates": 0})

    for row in rows:
        product_type = (row.get("Product Type Identifier") or "").strip()
        country = (row.get("Country Code") or "").strip()
        units = _safe_int(row.get("Units"))

        if product_type in DOWNLOAD_TYPES:
            installs[country]["installs"] += max(units, 0)
        elif product_type in UPDATE_TYPES:
            installs[country]["updates"] += max(units, 0)

        proceeds = _safe_float(row.get("Developer Proceeds")) * units
        if proceeds == 0:
            continue

        proceeds_currency = (row.get("Currency of Proceeds") or "USD").strip()
        customer_currency = (row.get("Customer Currency") or "").strip()
        if customer_currency == proceeds_currency:
            gross = _safe_float(row.get("Customer Price")) * units
        else:
            gross = proceeds / (1 - STORE_FEE_RATE)

        bucket = revenue[(country, proceeds_currency)]
        if units < 0:
            bucket["refunds"] += abs(proceeds)
            bucket["net_revenue"] += proceeds
            bucket["gross_revenue"] += gross
            continue

        bucket["gross_revenue"] += gross
        bucket["net_revenue"] += proceeds
        bucket["transaction_count"] += units
        if product_type in SUBSCRIPTION_TYPES:
            bucket["subscription_revenue"] += gross
        elif product_type in IAP_TYPES:
            bucket["iap_revenue"] += gross

    return dict(revenue), dict(installs)


class AppStoreAdapter(SourceAdapter):
    """iOS revenue and installs from App Store Connect sales reports."""

    name = "app-store"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._token: Optional[str] = None
        self._token_expires_at = 0

    def is_configured(self) -> bool:
        return bool(
            self.settings.app_store_key_id
            and self.settings.app_store_issuer_id
            and self.settings.app_store_private_key
            and self.settings.app_store_vendor_number
        )

    def generate_token(self) -> str:
        """ES256 JWT for App Store Connect, cached until a minute before expiry."""
        now = int(time.time())
        if self._token and self._token_expires_at > now + 60:
            return self._token

        private_key = self.settings.app_store_private_key.replace("\\n", "\n")
        expires_at = now + TOKEN_TTL_SECONDS
        try:
            token = jwt.encode(
                {
                    "iss": self.settings.app_store_issuer_id,
                    "iat": now,
                    "exp": expires_at,
                    "aud": "appstoreconnect-v1",
                },
                private_key,
                algorithm="ES256",
                headers={"kid": self.settings.app_store_key_id},
            )
        except (ValueError, jwt.PyJWTError) as exc:
            raise ProviderConfigError(f"Invalid App Store Connect key: {exc}") from exc

        self._token = token
        self._token_expires_at = expires_at
        return token

    async def fetch_sales_report(self, context: IngestionContext) -> list[dict]:
        """Download the daily summary; an unpublished report yields no rows."""
        params = {
            "filter[reportType]": "SALES",
            "filter[reportSubType]": "SUMMARY",
            "filter[frequency]": "DAILY",
            "filter[reportDate]": context.date_str,
            "filter[vendorNumber]": self.settings.app_store_vendor_number,
        }
        headers = {
            "Authorization": f"Bearer {self.generate_token()}",
            "Accept": "application/a-gzip",
        }
        try:
            payload = await self._get_bytes(
                f"{APP_STORE_CONNECT_API}/salesReports", params=params, headers=headers
            )
        except ProviderApiError as exc:
            if exc.status == 404:
                logger.warning(
                    "App Store sales report for %s not available yet", context.date_str
                )
                return []
            raise

        return parse_sales_report(payload)

    async def ingest(self, context: IngestionContext, stats: RunStats) -> None:
        apps = context.apps_where(
            lambda app: app.has_platform("ios") and bool(app.apple_app_id)
        )
        if not apps:
            return

        report = await self.fetch_sales_report(context)
        await self.archive_raw("sales_summary", context.date_str, report)

        rates = await fetch_usd_rates(
            self,
            context.date_str,
            ((row.get("Currency of Proceeds") or "").strip() for row in report),
        )

        await self.for_each_entity(
            apps,
            lambda app: self._ingest_app(app, report, rates, context),
            stats,
            label=lambda app: app.slug,
        )

    async def _ingest_app(
        self,
        app: App,
        report: list[dict],
        rates: dict[str, float],
        context: IngestionContext,
    ) -> int:
        rows = [row for row in report if _row_matches(row, app.apple_app_id)]
        native_revenue, installs = summarize_app_rows(rows)
        revenue = convert_revenue(native_revenue, rates)
        date_str = context.date_str

        written = 0
        for (country, currency), measures in revenue.items():
            native = measures.pop("native")
            self.store.upsert(
                "daily_revenue",
                {
                    "app_id": app.id,
                    "date": date_str,
                    "platform": "ios",
                    "country": country,
                    "currency": currency,
                    **measures,
                    "raw_data": {"source": "app_store_sales_summary", "native": native},
                },
            )
            written += 1

        for country, measures in installs.items():
            self.store.upsert(
                "daily_installs",
                {
                    "app_id": app.id,
                    "date": date_str,
                    "platform": "ios",
                    "country": country,
                    **measures,
                },
            )
            written += 1

        return written
