"""Pure metric derivations over normalized daily rows.

Every function takes row dicts as read from ``MetricsStore.query`` and
returns a result dataclass. No I/O, no clock: identical rows always yield
identical results. Ratios with a zero or missing denominator are 0.
"""
import math
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Optional

from ..storage.models import REPORTING_CURRENCY, App
from .models import (
    AppDailyMetrics,
    ChurnMetrics,
    CostMetrics,
    GrowthMetrics,
    MrrMetrics,
    RetentionMetrics,
    RevenueMetrics,
)

# Active-user rows carrying the whole-app figure.
SUMMARY_PLATFORM = "all"

POOLED_APP_ID = ""


def safe_div(numerator: float, denominator: Optional[float]) -> float:
    if not denominator:
        return 0.0
    result = numerator / denominator
    return result if math.isfinite(result) else 0.0


def pct_change(current: float, previous: Optional[float]) -> float:
    """Percentage change against ``previous``; 0 when the baseline is 0 or missing."""
    if previous is None or previous <= 0:
        return 0.0
    return safe_div((current - previous) * 100, previous)


def sum_field(rows: Iterable[dict], name: str) -> float:
    return sum((row.get(name) or 0) for row in rows)


def rows_for_app(rows: Iterable[dict], app_id: str) -> list[dict]:
    return [row for row in rows if row.get("app_id") == app_id]


def reporting_revenue(rows: Iterable[dict]) -> list[dict]:
    """Revenue rows in the reporting currency.

    Rows left in a native currency (no exchange rate at ingestion) are not
    summable with USD figures and are excluded.
    """
    return [
        row
        for row in rows
        if (row.get("currency") or REPORTING_CURRENCY) == REPORTING_CURRENCY
    ]


def app_active_users(rows: Iterable[dict], app_id: str) -> dict[str, int]:
    """DAU/MAU for one app.

    Uses the app's ``all`` platform row when present, otherwise sums the
    app's per-platform rows (web apps report a single ``web`` row).
    """
    app_rows = rows_for_app(rows, app_id)
    summary = [row for row in app_rows if row.get("platform") == SUMMARY_PLATFORM]
    source = summary or app_rows
    return {
        "dau": int(sum_field(source, "dau")),
        "mau": int(sum_field(source, "mau")),
    }


def total_dau(rows: Iterable[dict], app_ids: Iterable[str]) -> int:
    rows = list(rows)
    return sum(app_active_users(rows, app_id)["dau"] for app_id in app_ids)


def calculate_mrr(current: list[dict], previous: list[dict]) -> MrrMetrics:
    """MRR and its day-over-day movement from subscription rows."""
    mrr = sum_field(current, "mrr")
    previous_mrr = sum_field(previous, "mrr")

    active = sum_field(current, "active_subscriptions")
    mrr_per_subscriber = safe_div(mrr, active)

    new_subscriptions = sum_field(current, "new_subscriptions")
    churned = sum_field(current, "cancellations") + sum_field(current, "expirations")

    return MrrMetrics(
        mrr=mrr,
        mrr_change=mrr - previous_mrr,
        mrr_change_pct=pct_change(mrr, previous_mrr),
        new_mrr=new_subscriptions * mrr_per_subscriber,
        churned_mrr=churned * mrr_per_subscriber,
    )


def calculate_churn(subscriptions: list[dict]) -> ChurnMetrics:
    """Daily churn with compounded monthly and annual projections.

    The daily rate is churned / (active + churned); the monthly and annual
    rates compound it over 30 and 365 days.
    """
    cancellations = int(sum_field(subscriptions, "cancellations"))
    expirations = int(sum_field(subscriptions, "expirations"))
    churned = cancellations + expirations
    active = sum_field(subscriptions, "active_subscriptions")

    daily = safe_div(churned * 100, active + churned)
    daily_fraction = daily / 100

    return ChurnMetrics(
        daily_churn_rate=daily,
        monthly_churn_rate=(1 - (1 - daily_fraction) ** 30) * 100,
        annual_churn_rate=(1 - (1 - daily_fraction) ** 365) * 100,
        churned_subscriptions=churned,
        cancellations=cancellations,
        expirations=expirations,
    )


def _average(values: Iterable[Optional[float]]) -> Optional[float]:
    present = [value for value in values if value is not None]
    if not present:
        return None
    return sum(present) / len(present)


def calculate_retention(
    active_users: list[dict],
    subscriptions: list[dict],
    trial_cohort: list[dict],
) -> RetentionMetrics:
    """Cohort retention and trial conversion.

    Args:
        active_users: The app's active-user rows for the date
        subscriptions: The app's subscription rows for the date
        trial_cohort: The app's subscription rows from 7 days earlier

    Returns:
        RetentionMetrics; retention values are None when not reported
    """
    conversions = sum_field(subscriptions, "trial_conversions")
    cohort_trials = sum_field(trial_cohort, "new_trials")

    return RetentionMetrics(
        d1_retention=_average(row.get("d1_retention") for row in active_users),
        d7_retention=_average(row.get("d7_retention") for row in active_users),
        d30_retention=_average(row.get("d30_retention") for row in active_users),
        trial_conversion_rate=safe_div(conversions * 100, cohort_trials),
    )


def calculate_revenue(revenue: list[dict], dau: int) -> RevenueMetrics:
    """Gross/net split summed across platform and country rows."""
    revenue = reporting_revenue(revenue)
    net = sum_field(revenue, "net_revenue")

    by_platform: dict[str, float] = defaultdict(float)
    for row in revenue:
        by_platform[row.get("platform") or "unknown"] += row.get("net_revenue") or 0

    return RevenueMetrics(
        gross_revenue=sum_field(revenue, "gross_revenue"),
        net_revenue=net,
        refunds=sum_field(revenue, "refunds"),
        arpu=safe_div(net, dau),
        arppu=safe_div(net, sum_field(revenue, "paying_users")),
        revenue_by_platform=dict(by_platform),
        revenue_by_type={
            "subscription": sum_field(revenue, "subscription_revenue"),
            "iap": sum_field(revenue, "iap_revenue"),
            "ad": sum_field(revenue, "ad_revenue"),
        },
    )


def calculate_growth(
    installs: list[dict],
    previous_installs: list[dict],
    dau: int,
    previous_dau: int,
    revenue: float,
    previous_revenue: float,
) -> GrowthMetrics:
    install_count = int(sum_field(installs, "installs"))
    uninstalls = int(sum_field(installs, "uninstalls"))
    previous_count = int(sum_field(previous_installs, "installs"))

    return GrowthMetrics(
        installs=install_count,
        uninstalls=uninstalls,
        net_installs=install_count - uninstalls,
        installs_change=install_count - previous_count,
        installs_change_pct=pct_change(install_count, previous_count),
        dau=dau,
        dau_change=dau - previous_dau,
        dau_change_pct=pct_change(dau, previous_dau),
        revenue_change=revenue - previous_revenue,
        revenue_change_pct=pct_change(revenue, previous_revenue),
    )


def calculate_costs(
    costs: list[dict],
    provider_slugs: dict[str, str],
    dau: int,
    mau: int,
    paying_users: int,
) -> CostMetrics:
    """Cost totals and per-user ratios for one scope.

    Args:
        costs: Provider-cost rows in scope. App-scoped rows carry an
            app_id, pooled overhead rows carry ``""``
        provider_slugs: provider_id -> slug for the breakdown keys
        dau: Daily active users in scope
        mau: Monthly active users in scope
        paying_users: Paying users in scope

    Returns:
        CostMetrics
    """
    total = sum_field(costs, "cost")
    pooled = sum_field(
        (row for row in costs if (row.get("app_id") or POOLED_APP_ID) == POOLED_APP_ID),
        "cost",
    )

    breakdown: dict[str, float] = defaultdict(float)
    for row in costs:
        provider_id = row.get("provider_id")
        breakdown[provider_slugs.get(provider_id, provider_id or "unknown")] += (
            row.get("cost") or 0
        )

    return CostMetrics(
        total_costs=total,
        app_costs=total - pooled,
        pooled_costs=pooled,
        cost_per_user=safe_div(total, mau),
        cost_per_active_user=safe_div(total, dau),
        cost_per_paying_user=safe_div(total, paying_users),
        provider_breakdown=dict(breakdown),
    )


@dataclass
class DailyRows:
    """Every metric family's rows for one date."""

    revenue: list[dict] = field(default_factory=list)
    subscriptions: list[dict] = field(default_factory=list)
    installs: list[dict] = field(default_factory=list)
    active_users: list[dict] = field(default_factory=list)
    provider_costs: list[dict] = field(default_factory=list)


def calculate_app_metrics(
    app: App,
    date_str: str,
    current: DailyRows,
    previous: DailyRows,
    trial_cohort: list[dict],
    provider_slugs: Optional[dict[str, str]] = None,
) -> AppDailyMetrics:
    """Every per-app derivation for one date.

    Args:
        app: App being measured
        date_str: Metric date (YYYY-MM-DD)
        current: Rows for the date (any apps; filtered here)
        previous: Rows for the prior date
        trial_cohort: Subscription rows from 7 days earlier
        provider_slugs: provider_id -> slug for cost breakdowns

    Returns:
        AppDailyMetrics
    """
    subscriptions = rows_for_app(current.subscriptions, app.id)
    revenue_rows = reporting_revenue(rows_for_app(current.revenue, app.id))
    active_rows = rows_for_app(current.active_users, app.id)

    users = app_active_users(current.active_users, app.id)
    previous_users = app_active_users(previous.active_users, app.id)

    revenue = calculate_revenue(revenue_rows, users["dau"])
    previous_net = sum_field(
        reporting_revenue(rows_for_app(previous.revenue, app.id)), "net_revenue"
    )

    return AppDailyMetrics(
        app=app,
        date=date_str,
        mrr=calculate_mrr(subscriptions, rows_for_app(previous.subscriptions, app.id)),
        churn=calculate_churn(subscriptions),
        retention=calculate_retention(
            active_rows, subscriptions, rows_for_app(trial_cohort, app.id)
        ),
        revenue=revenue,
        growth=calculate_growth(
            rows_for_app(current.installs, app.id),
            rows_for_app(previous.installs, app.id),
            users["dau"],
            previous_users["dau"],
            revenue.net_revenue,
            previous_net,
        ),
        costs=calculate_costs(
            rows_for_app(current.provider_costs, app.id),
            provider_slugs or {},
            users["dau"],
            users["mau"],
            int(sum_field(revenue_rows, "paying_users")),
        ),
    )
