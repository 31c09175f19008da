"""USD conversion for store revenue reported in local currencies.

Store sales reports key amounts by the buyer's or the proceeds currency.
Revenue rows are written in the reporting currency using the daily
reference rate for the metric date; the native amounts stay in the row's
``raw_data``.
"""
import logging
from typing import Iterable

from ..storage.models import REPORTING_CURRENCY
from .base import SourceAdapter, _safe_float


logger = logging.getLogger(__name__)

MONEY_FIELDS = frozenset(
    {
        "gross_revenue",
        "net_revenue",
        "refunds",
        "iap_revenue",
        "subscription_revenue",
        "ad_revenue",
    }
)


async def fetch_usd_rates(
    adapter: SourceAdapter, date_str: str, currencies: Iterable[str]
) -> dict[str, float]:
    """Units of each currency per 1 USD on ``date_str``.

    Only calls the rates API when a non-USD currency is present. Non-2xx
    responses raise ``ProviderApiError`` like any provider call.
    """
    rates = {REPORTING_CURRENCY: 1.0}
    wanted = {c for c in currencies if c and c != REPORTING_CURRENCY}
    if not wanted:
        return rates

    base_url = adapter.settings.fx_api_url.rstrip("/")
    payload = await adapter._get_json(
        f"{base_url}/{date_str}", params={"from": REPORTING_CURRENCY}
    )

    for currency, rate in ((payload or {}).get("rates") or {}).items():
        value = _safe_float(rate)
        if value > 0:
            rates[currency.upper()] = value

    logger.debug(
        "Loaded %s USD rates for %s (needed %s)",
        len(rates) - 1,
        date_str,
        ", ".join(sorted(wanted)),
    )
    return rates


def convert_revenue(
    buckets: dict[tuple[str, str], dict], rates: dict[str, float]
) -> dict[tuple[str, str], dict]:
    """Re-key (country, currency) revenue measures to USD.

    Money fields are divided by the currency's rate; counts are summed
    unchanged. Every output bucket carries the native measures it was built
    from under ``native`` (currency -> measures). A currency without a rate
    keeps its own key so it is never summed as USD.
    """
    converted: dict[tuple[str, str], dict] = {}

    for (country, currency), measures in buckets.items():
        rate = rates.get(currency)
        if rate is None:
            logger.warning(
                "No USD rate for %s, keeping %s revenue in %s",
                currency,
                country or "unknown country",
                currency,
            )
            target_currency = currency
        else:
            target_currency = REPORTING_CURRENCY

        target = converted.setdefault((country, target_currency), {"native": {}})
        for name, value in measures.items():
            if name in MONEY_FIELDS and rate is not None:
                value = value / rate
            target[name] = target.get(name, 0) + value
        target["native"][currency] = dict(measures)

    return converted
