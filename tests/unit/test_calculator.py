"""Unit tests for pure metric calculations."""
import pytest

from src.pulse_core.metrics.calculator import (
    DailyRows,
    app_active_users,
    calculate_app_metrics,
    calculate_churn,
    calculate_costs,
    calculate_growth,
    calculate_mrr,
    calculate_retention,
    calculate_revenue,
    pct_change,
    safe_div,
    total_dau,
)
from src.pulse_core.storage.models import App


def test_safe_div_zero_and_missing_denominator():
    assert safe_div(10, 0) == 0.0
    assert safe_div(10, None) == 0.0
    assert safe_div(10, 4) == 2.5


def test_pct_change_zero_baseline_is_zero():
    assert pct_change(50, 0) == 0.0
    assert pct_change(50, None) == 0.0
    assert pct_change(0, 0) == 0.0
    assert pct_change(150, 100) == pytest.approx(50.0)
    assert pct_change(50, 100) == pytest.approx(-50.0)


def test_calculate_mrr():
    current = [
        {"mrr": 600, "active_subscriptions": 100, "new_subscriptions": 5,
         "cancellations": 2, "expirations": 1},
    ]
    previous = [{"mrr": 500}]

    result = calculate_mrr(current, previous)

    assert result.mrr == 600
    assert result.mrr_change == 100
    assert result.mrr_change_pct == pytest.approx(20.0)
    assert result.new_mrr == pytest.approx(30.0)
    assert result.churned_mrr == pytest.approx(18.0)


def test_calculate_mrr_without_subscribers():
    result = calculate_mrr([], [])
    assert result.mrr == 0
    assert result.mrr_change_pct == 0.0
    assert result.new_mrr == 0.0


def test_calculate_churn_compounds_daily_rate():
    subscriptions = [
        {"active_subscriptions": 95, "cancellations": 3, "expirations": 2},
    ]

    result = calculate_churn(subscriptions)

    assert result.churned_subscriptions == 5
    assert result.daily_churn_rate == pytest.approx(5.0)
    assert result.monthly_churn_rate == pytest.approx((1 - 0.95 ** 30) * 100)
    assert result.annual_churn_rate == pytest.approx((1 - 0.95 ** 365) * 100)


def test_calculate_churn_no_subscriptions():
    result = calculate_churn([])
    assert result.daily_churn_rate == 0.0
    assert result.monthly_churn_rate == 0.0
    assert result.annual_churn_rate == 0.0


def test_calculate_retention():
    active_users = [{"d1_retention": 40.0, "d7_retention": None, "d30_retention": None}]
    subscriptions = [{"trial_conversions": 3}]
    cohort = [{"new_trials": 12}]

    result = calculate_retention(active_users, subscriptions, cohort)

    assert result.d1_retention == 40.0
    assert result.d7_retention is None
    assert result.trial_conversion_rate == pytest.approx(25.0)


def test_calculate_retention_empty_cohort():
    result = calculate_retention([], [{"trial_conversions": 3}], [])
    assert result.trial_conversion_rate == 0.0
    assert result.d1_retention is None


def test_calculate_revenue():
    revenue = [
        {"platform": "ios", "gross_revenue": 100, "net_revenue": 85, "refunds": 5,
         "subscription_revenue": 100, "paying_users": 10},
        {"platform": "android", "gross_revenue": 50, "net_revenue": 42.5,
         "iap_revenue": 50, "paying_users": 5},
    ]

    result = calculate_revenue(revenue, dau=255)

    assert result.gross_revenue == 150
    assert result.net_revenue == pytest.approx(127.5)
    assert result.refunds == 5
    assert result.arpu == pytest.approx(0.5)
    assert result.arppu == pytest.approx(8.5)
    assert result.revenue_by_platform == {"ios": 85, "android": 42.5}
    assert result.revenue_by_type == {"subscription": 100, "iap": 50, "ad": 0}


def test_calculate_revenue_zero_dau():
    result = calculate_revenue([{"net_revenue": 10}], dau=0)
    assert result.arpu == 0.0
    assert result.arppu == 0.0


def test_calculate_growth():
    result = calculate_growth(
        installs=[{"installs": 120, "uninstalls": 20}],
        previous_installs=[{"installs": 100}],
        dau=500,
        previous_dau=0,
        revenue=50.0,
        previous_revenue=40.0,
    )

    assert result.net_installs == 100
    assert result.installs_change == 20
    assert result.installs_change_pct == pytest.approx(20.0)
    assert result.dau_change == 500
    assert result.dau_change_pct == 0.0
    assert result.revenue_change_pct == pytest.approx(25.0)


def test_calculate_costs_splits_pooled_and_app_rows():
    costs = [
        {"provider_id": "anthropic", "app_id": "", "cost": 30.0},
        {"provider_id": "neon", "app_id": "app-1", "cost": 10.0},
        {"provider_id": "anthropic", "app_id": None, "cost": 10.0},
    ]

    result = calculate_costs(
        costs, {"anthropic": "anthropic", "neon": "neon"}, dau=100, mau=500, paying_users=0
    )

    assert result.total_costs == 50.0
    assert result.pooled_costs == 40.0
    assert result.app_costs == 10.0
    assert result.cost_per_user == pytest.approx(0.1)
    assert result.cost_per_active_user == pytest.approx(0.5)
    assert result.cost_per_paying_user == 0.0
    assert result.provider_breakdown == {"anthropic": 40.0, "neon": 10.0}


def test_app_active_users_prefers_summary_row():
    rows = [
        {"app_id": "a", "platform": "all", "dau": 100, "mau": 900},
        {"app_id": "a", "platform": "ios", "dau": 60, "mau": 500},
        {"app_id": "b", "platform": "web", "dau": 40, "mau": 300},
        {"app_id": "c", "platform": "ios", "dau": 10, "mau": 50},
        {"app_id": "c", "platform": "android", "dau": 15, "mau": 70},
    ]

    assert app_active_users(rows, "a") == {"dau": 100, "mau": 900}
    assert app_active_users(rows, "b") == {"dau": 40, "mau": 300}
    assert app_active_users(rows, "c") == {"dau": 25, "mau": 120}
    assert app_active_users(rows, "missing") == {"dau": 0, "mau": 0}
    assert total_dau(rows, ["a", "b", "c"]) == 165


def test_calculate_app_metrics_is_deterministic():
    """Test identical rows produce identical results."""
    app = App(id="app-1", slug="one", name="One", platforms=("ios",))
    current = DailyRows(
        revenue=[{"app_id": "app-1", "platform": "ios", "net_revenue": 85, "gross_revenue": 100}],
        subscriptions=[{"app_id": "app-1", "mrr": 300, "active_subscriptions": 30}],
        installs=[{"app_id": "app-1", "installs": 40}],
        active_users=[{"app_id": "app-1", "platform": "all", "dau": 200, "mau": 1000}],
        provider_costs=[{"app_id": "app-1", "provider_id": "neon", "cost": 5.0}],
    )
    previous = DailyRows(
        revenue=[{"app_id": "app-1", "net_revenue": 68}],
        active_users=[{"app_id": "app-1", "platform": "all", "dau": 160}],
    )

    first = calculate_app_metrics(app, "2025-01-15", current, previous, [], {"neon": "neon"})
    second = calculate_app_metrics(app, "2025-01-15", current, previous, [], {"neon": "neon"})

    assert first == second
    assert first.revenue.arpu == pytest.approx(0.425)
    assert first.growth.dau_change_pct == pytest.approx(25.0)
    assert first.growth.revenue_change_pct == pytest.approx(25.0)
    assert first.costs.cost_per_active_user == pytest.approx(0.025)
    assert first.mrr.mrr == 300
