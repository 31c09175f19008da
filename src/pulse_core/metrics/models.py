"""Derived metric result types."""
from dataclasses import dataclass, field
from typing import Optional

from ..storage.models import App


@dataclass
class MrrMetrics:
    mrr: float
    mrr_change: float
    mrr_change_pct: float
    new_mrr: float
    churned_mrr: float


@dataclass
class ChurnMetrics:
    daily_churn_rate: float
    monthly_churn_rate: float
    annual_churn_rate: float
    churned_subscriptions: int
    cancellations: int
    expirations: int


@dataclass
class RetentionMetrics:
    d1_retention: Optional[float]
    d7_retention: Optional[float]
    d30_retention: Optional[float]
    trial_conversion_rate: Optional[float]


@dataclass
class RevenueMetrics:
    gross_revenue: float
    net_revenue: float
    refunds: float
    arpu: float
    arppu: float
    revenue_by_platform: dict[str, float] = field(default_factory=dict)
    revenue_by_type: dict[str, float] = field(default_factory=dict)


@dataclass
class GrowthMetrics:
    installs: int
    uninstalls: int
    net_installs: int
    installs_change: int
    installs_change_pct: float
    dau: int
    dau_change: int
    dau_change_pct: float
    revenue_change: float
    revenue_change_pct: float


@dataclass
class CostMetrics:
    """Costs for a scope (one app or the whole portfolio)."""

    total_costs: float
    app_costs: float
    pooled_costs: float
    cost_per_user: float
    cost_per_active_user: float
    cost_per_paying_user: float
    provider_breakdown: dict[str, float] = field(default_factory=dict)


@dataclass
class AppDailyMetrics:
    app: App
    date: str
    mrr: MrrMetrics
    churn: ChurnMetrics
    retention: RetentionMetrics
    revenue: RevenueMetrics
    growth: GrowthMetrics
    costs: CostMetrics


@dataclass
class AppSnapshot:
    app_id: str
    app_slug: str
    app_name: str
    revenue: float
    mrr: float
    dau: int
    installs: int
    revenue_change_pct: float
    dau_change_pct: float


@dataclass
class ProviderSnapshot:
    provider_id: str
    provider_slug: str
    provider_name: str
    cost: float
    usage_quantity: Optional[float]
    usage_unit: Optional[str]
    cost_change_pct: float


@dataclass
class MetricsSnapshot:
    """Portfolio totals for one date with deltas against the prior date."""

    date: str
    total_revenue: float
    total_mrr: float
    total_dau: int
    total_installs: int
    total_costs: float
    revenue_change_pct: float
    dau_change_pct: float
    installs_change_pct: float
    costs_change_pct: float
    cost_per_user: float
    apps: list[AppSnapshot] = field(default_factory=list)
    providers: list[ProviderSnapshot] = field(default_factory=list)


@dataclass
class TrendPoint:
    date: str
    revenue: float = 0.0
    dau: int = 0
    installs: int = 0
    costs: float = 0.0


@dataclass
class TopPerformer:
    app: App
    metric: str
    value: float
    change: float


@dataclass
class PortfolioMetrics:
    date: str
    total_revenue: float
    total_mrr: float
    total_dau: int
    total_installs: int
    total_costs: float
    net_profit: float
    cost_per_user: float
    apps: list[AppDailyMetrics] = field(default_factory=list)
    costs: Optional[CostMetrics] = None
