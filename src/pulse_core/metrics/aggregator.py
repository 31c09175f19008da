"""Portfolio aggregation over stored daily rows.

Composes per-app metrics into portfolio totals, day-over-day deltas,
trend series and ranked top performers.
"""
import logging
from datetime import date, timedelta
from typing import Optional

from ..storage.models import App
from ..storage.store import MetricsStore
from .calculator import (
    DailyRows,
    app_active_users,
    calculate_app_metrics,
    calculate_costs,
    pct_change,
    reporting_revenue,
    rows_for_app,
    safe_div,
    sum_field,
    total_dau,
)
from .models import (
    AppSnapshot,
    MetricsSnapshot,
    PortfolioMetrics,
    ProviderSnapshot,
    TopPerformer,
    TrendPoint,
)


logger = logging.getLogger(__name__)

TOP_METRICS = ("revenue", "dau", "installs", "growth")

# DailyRows attribute -> store table
FAMILY_TABLES = {
    "revenue": "daily_revenue",
    "subscriptions": "daily_subscriptions",
    "installs": "daily_installs",
    "active_users": "daily_active_users",
    "provider_costs": "daily_provider_costs",
}


def _app_ids(rows: list[dict]) -> list[str]:
    return list(dict.fromkeys(row["app_id"] for row in rows if row.get("app_id")))


class PortfolioAggregator:
    """Read-side aggregation; every figure is recomputed from stored rows."""

    def __init__(self, store: MetricsStore) -> None:
        self.store = store

    def load_range(self, start: date, end: date) -> dict[str, DailyRows]:
        """Rows of every family bucketed by date, one bucket per day in range.

        Revenue rows not in the reporting currency are left out.
        """
        days = (end - start).days + 1
        buckets = {
            (start + timedelta(days=offset)).isoformat(): DailyRows()
            for offset in range(max(days, 0))
        }

        for family, table in FAMILY_TABLES.items():
            rows = self.store.query(table, start, end)
            if family == "revenue":
                rows = reporting_revenue(rows)
            for row in rows:
                bucket = buckets.get(row["date"])
                if bucket is not None:
                    getattr(bucket, family).append(row)
        return buckets

    def load_day(self, target_date: date) -> DailyRows:
        return self.load_range(target_date, target_date)[target_date.isoformat()]

    def _provider_slugs(self) -> dict[str, str]:
        return {p.id: p.slug for p in self.store.list_providers(active_only=False)}

    def snapshot(self, target_date: date) -> MetricsSnapshot:
        """Portfolio totals for ``target_date`` with deltas against the day before."""
        previous_date = target_date - timedelta(days=1)
        rows = self.load_range(previous_date, target_date)
        current = rows[target_date.isoformat()]
        previous = rows[previous_date.isoformat()]

        apps = self.store.list_apps()
        providers = self.store.list_providers()

        total_revenue = sum_field(current.revenue, "net_revenue")
        prev_revenue = sum_field(previous.revenue, "net_revenue")
        dau = total_dau(current.active_users, _app_ids(current.active_users))
        prev_dau = total_dau(previous.active_users, _app_ids(previous.active_users))
        installs = int(sum_field(current.installs, "installs"))
        prev_installs = int(sum_field(previous.installs, "installs"))
        costs = sum_field(current.provider_costs, "cost")
        prev_costs = sum_field(previous.provider_costs, "cost")

        app_snapshots = []
        for app in apps:
            app_revenue = sum_field(rows_for_app(current.revenue, app.id), "net_revenue")
            prev_app_revenue = sum_field(
                rows_for_app(previous.revenue, app.id), "net_revenue"
            )
            app_dau = app_active_users(current.active_users, app.id)["dau"]
            prev_app_dau = app_active_users(previous.active_users, app.id)["dau"]

            app_snapshots.append(
                AppSnapshot(
                    app_id=app.id,
                    app_slug=app.slug,
                    app_name=app.name,
                    revenue=app_revenue,
                    mrr=sum_field(rows_for_app(current.subscriptions, app.id), "mrr"),
                    dau=app_dau,
                    installs=int(
                        sum_field(rows_for_app(current.installs, app.id), "installs")
                    ),
                    revenue_change_pct=pct_change(app_revenue, prev_app_revenue),
                    dau_change_pct=pct_change(app_dau, prev_app_dau),
                )
            )

        provider_snapshots = []
        for provider in providers:
            provider_rows = [
                r for r in current.provider_costs if r["provider_id"] == provider.id
            ]
            prev_provider_cost = sum_field(
                (r for r in previous.provider_costs if r["provider_id"] == provider.id),
                "cost",
            )
            provider_cost = sum_field(provider_rows, "cost")
            # pooled and app-scoped rows; quantities only add up within one unit
            usage_rows = [r for r in provider_rows if r.get("usage_quantity") is not None]
            usage_unit = usage_rows[0].get("usage_unit") if usage_rows else None
            usage_quantity = (
                sum(
                    r["usage_quantity"]
                    for r in usage_rows
                    if r.get("usage_unit") == usage_unit
                )
                if usage_rows
                else None
            )

            provider_snapshots.append(
                ProviderSnapshot(
                    provider_id=provider.id,
                    provider_slug=provider.slug,
                    provider_name=provider.name,
                    cost=provider_cost,
                    usage_quantity=usage_quantity,
                    usage_unit=usage_unit,
                    cost_change_pct=pct_change(provider_cost, prev_provider_cost),
                )
            )

        return MetricsSnapshot(
            date=target_date.isoformat(),
            total_revenue=total_revenue,
            total_mrr=sum_field(current.subscriptions, "mrr"),
            total_dau=dau,
            total_installs=installs,
            total_costs=costs,
            revenue_change_pct=pct_change(total_revenue, prev_revenue),
            dau_change_pct=pct_change(dau, prev_dau),
            installs_change_pct=pct_change(installs, prev_installs),
            costs_change_pct=pct_change(costs, prev_costs),
            cost_per_user=safe_div(costs, dau),
            apps=app_snapshots,
            providers=provider_snapshots,
        )

    def trends(self, end_date: date, days: int = 30) -> list[TrendPoint]:
        """One TrendPoint per day ending at ``end_date``, zero-filled.

        Args:
            end_date: Last date in the series (inclusive)
            days: Number of consecutive days

        Returns:
            Exactly ``days`` points, oldest first
        """
        if days <= 0:
            return []

        start_date = end_date - timedelta(days=days - 1)
        points = {
            (start_date + timedelta(days=offset)).isoformat(): TrendPoint(
                date=(start_date + timedelta(days=offset)).isoformat()
            )
            for offset in range(days)
        }

        for family, table in FAMILY_TABLES.items():
            if family == "subscriptions":
                continue
            rows = self.store.query(table, start_date, end_date)
            if family == "revenue":
                rows = reporting_revenue(rows)
            rows_by_date: dict[str, list[dict]] = {}
            for row in rows:
                rows_by_date.setdefault(row["date"], []).append(row)

            for date_str, day_rows in rows_by_date.items():
                point = points.get(date_str)
                if point is None:
                    continue
                if family == "revenue":
                    point.revenue += sum_field(day_rows, "net_revenue")
                elif family == "active_users":
                    point.dau += total_dau(day_rows, _app_ids(day_rows))
                elif family == "installs":
                    point.installs += int(sum_field(day_rows, "installs"))
                elif family == "provider_costs":
                    point.costs += sum_field(day_rows, "cost")

        return sorted(points.values(), key=lambda point: point.date)

    def _app_metric(
        self, metric: str, app: App, current: DailyRows, previous: DailyRows
    ) -> tuple[float, float]:
        if metric == "revenue":
            return (
                sum_field(rows_for_app(current.revenue, app.id), "net_revenue"),
                sum_field(rows_for_app(previous.revenue, app.id), "net_revenue"),
            )
        if metric == "dau":
            return (
                app_active_users(current.active_users, app.id)["dau"],
                app_active_users(previous.active_users, app.id)["dau"],
            )
        if metric == "installs":
            return (
                sum_field(rows_for_app(current.installs, app.id), "installs"),
                sum_field(rows_for_app(previous.installs, app.id), "installs"),
            )
        # growth: revenue percentage change is itself the ranked value
        revenue, prev_revenue = self._app_metric("revenue", app, current, previous)
        return pct_change(revenue, prev_revenue), 0.0

    def top_performers(
        self, target_date: date, metric: str = "revenue", limit: int = 5
    ) -> list[TopPerformer]:
        """Rank active apps by ``metric``, highest first.

        Ties keep roster order.

        Raises:
            ValueError: Unknown metric
        """
        if metric not in TOP_METRICS:
            raise ValueError(
                f"Unknown metric: {metric}. Expected one of {', '.join(TOP_METRICS)}"
            )

        previous_date = target_date - timedelta(days=1)
        rows = self.load_range(previous_date, target_date)
        current = rows[target_date.isoformat()]
        previous = rows[previous_date.isoformat()]

        performers = []
        for app in self.store.list_apps():
            value, prev_value = self._app_metric(metric, app, current, previous)
            performers.append(
                TopPerformer(
                    app=app,
                    metric=metric,
                    value=value,
                    change=pct_change(value, prev_value),
                )
            )

        performers.sort(key=lambda performer: performer.value, reverse=True)
        return performers[:limit]

    def portfolio_metrics(self, target_date: date) -> PortfolioMetrics:
        """Per-app calculator results plus portfolio totals.

        Portfolio costs include pooled overhead rows; DAU comes from
        active-user rows only.
        """
        previous_date = target_date - timedelta(days=1)
        cohort_date = target_date - timedelta(days=7)
        rows = self.load_range(previous_date, target_date)
        current = rows[target_date.isoformat()]
        previous = rows[previous_date.isoformat()]
        trial_cohort = self.store.query("daily_subscriptions", cohort_date)
        provider_slugs = self._provider_slugs()

        app_metrics = [
            calculate_app_metrics(
                app,
                target_date.isoformat(),
                current,
                previous,
                trial_cohort,
                provider_slugs,
            )
            for app in self.store.list_apps()
        ]

        dau = sum(metrics.growth.dau for metrics in app_metrics)
        mau = sum(
            app_active_users(current.active_users, metrics.app.id)["mau"]
            for metrics in app_metrics
        )
        costs = calculate_costs(
            current.provider_costs,
            provider_slugs,
            dau,
            mau,
            int(sum_field(current.revenue, "paying_users")),
        )
        total_revenue = sum(metrics.revenue.net_revenue for metrics in app_metrics)

        logger.debug(
            "Portfolio metrics for %s: %s apps, revenue=%.2f, costs=%.2f",
            target_date.isoformat(),
            len(app_metrics),
            total_revenue,
            costs.total_costs,
        )

        return PortfolioMetrics(
            date=target_date.isoformat(),
            total_revenue=total_revenue,
            total_mrr=sum(metrics.mrr.mrr for metrics in app_metrics),
            total_dau=dau,
            total_installs=sum(metrics.growth.installs for metrics in app_metrics),
            total_costs=costs.total_costs,
            net_profit=total_revenue - costs.total_costs,
            cost_per_user=costs.cost_per_active_user,
            apps=app_metrics,
            costs=costs,
        )
