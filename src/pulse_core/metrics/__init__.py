"""Pulse metrics layer.

Derives per-app business metrics (MRR, churn, retention, revenue,
growth, costs) and portfolio snapshots, trends and rankings from the
rows the ingestion layer stored.
"""
from .aggregator import TOP_METRICS, PortfolioAggregator
from .calculator import DailyRows, calculate_app_metrics, pct_change, safe_div
from .models import (
    AppDailyMetrics,
    MetricsSnapshot,
    PortfolioMetrics,
    TopPerformer,
    TrendPoint,
)

__all__ = [
    "AppDailyMetrics",
    "DailyRows",
    "MetricsSnapshot",
    "PortfolioAggregator",
    "PortfolioMetrics",
    "TOP_METRICS",
    "TopPerformer",
    "TrendPoint",
    "calculate_app_metrics",
    "pct_change",
    "safe_div",
]
