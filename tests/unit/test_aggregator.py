"""Unit tests for PortfolioAggregator."""
from datetime import date, timedelta

import pytest

from src.pulse_core.metrics.aggregator import PortfolioAggregator
from src.pulse_core.storage.models import App


DAY = date(2025, 1, 15)
PREVIOUS = DAY - timedelta(days=1)


def add_revenue(store, app_id, day, net, platform="ios"):
    store.upsert(
        "daily_revenue",
        {"app_id": app_id, "date": day.isoformat(), "platform": platform,
         "gross_revenue": net / 0.85, "net_revenue": net},
    )


def add_users(store, app_id, day, dau, platform="all", mau=0):
    store.upsert(
        "daily_active_users",
        {"app_id": app_id, "date": day.isoformat(), "platform": platform, "dau": dau, "mau": mau},
    )


def add_installs(store, app_id, day, installs, platform="ios"):
    store.upsert(
        "daily_installs",
        {"app_id": app_id, "date": day.isoformat(), "platform": platform, "installs": installs},
    )


def add_cost(store, provider_id, day, cost, app_id=None):
    store.upsert(
        "daily_provider_costs",
        {"provider_id": provider_id, "app_id": app_id, "date": day.isoformat(), "cost": cost},
    )


@pytest.fixture
def aggregator(store, sample_apps):
    return PortfolioAggregator(store)


def test_snapshot_totals_and_deltas(store, aggregator):
    add_revenue(store, "app-habits", DAY, 120.0)
    add_revenue(store, "app-habits", PREVIOUS, 100.0)
    add_revenue(store, "app-focus", DAY, 30.0)
    add_users(store, "app-habits", DAY, 400, mau=2000)
    add_users(store, "app-habits", DAY, 250, platform="ios")
    add_users(store, "app-habits", PREVIOUS, 320)
    add_users(store, "app-site", DAY, 100, platform="web")
    add_installs(store, "app-habits", DAY, 30)
    add_installs(store, "app-habits", PREVIOUS, 20)
    add_cost(store, "anthropic", DAY, 15.0)
    add_cost(store, "anthropic", PREVIOUS, 10.0)
    add_cost(store, "neon", DAY, 10.0)
    store.upsert(
        "daily_subscriptions",
        {"app_id": "app-habits", "date": DAY.isoformat(), "platform": "ios", "mrr": 900.0},
    )

    snapshot = aggregator.snapshot(DAY)

    assert snapshot.date == "2025-01-15"
    assert snapshot.total_revenue == pytest.approx(150.0)
    assert snapshot.revenue_change_pct == pytest.approx(50.0)
    assert snapshot.total_dau == 500
    assert snapshot.dau_change_pct == pytest.approx(56.25)
    assert snapshot.total_installs == 30
    assert snapshot.installs_change_pct == pytest.approx(50.0)
    assert snapshot.total_costs == pytest.approx(25.0)
    assert snapshot.costs_change_pct == pytest.approx(150.0)
    assert snapshot.cost_per_user == pytest.approx(0.05)
    assert snapshot.total_mrr == 900.0

    apps = {app.app_slug: app for app in snapshot.apps}
    assert [app.app_slug for app in snapshot.apps] == ["habits", "focus", "site"]
    assert apps["habits"].dau == 400
    assert apps["habits"].revenue_change_pct == pytest.approx(20.0)
    assert apps["focus"].revenue_change_pct == 0.0
    assert apps["site"].dau == 100

    providers = {p.provider_slug: p for p in snapshot.providers}
    assert providers["anthropic"].cost_change_pct == pytest.approx(50.0)
    assert providers["neon"].cost_change_pct == 0.0
    assert providers["cartesia"].cost == 0


def test_snapshot_empty_day(aggregator):
    snapshot = aggregator.snapshot(DAY)

    assert snapshot.total_revenue == 0
    assert snapshot.revenue_change_pct == 0.0
    assert snapshot.cost_per_user == 0.0
    assert len(snapshot.apps) == 3


def test_trends_zero_fill_missing_days(store, aggregator):
    """Test a 30-day window with five populated dates yields 30 points."""
    populated = [DAY - timedelta(days=offset) for offset in (0, 3, 7, 14, 29)]
    for day in populated:
        add_revenue(store, "app-habits", day, 10.0)
        add_users(store, "app-habits", day, 100)
        add_users(store, "app-focus", day, 50, platform="ios")
        add_installs(store, "app-focus", day, 5)
        add_cost(store, "anthropic", day, 2.0)
        add_cost(store, "neon", day, 1.0)
    add_revenue(store, "app-habits", DAY - timedelta(days=30), 999.0)

    points = aggregator.trends(DAY, days=30)

    assert len(points) == 30
    assert points[0].date == (DAY - timedelta(days=29)).isoformat()
    assert points[-1].date == DAY.isoformat()
    assert [p.date for p in points] == sorted(p.date for p in points)

    by_date = {point.date: point for point in points}
    for day in populated:
        point = by_date[day.isoformat()]
        assert point.revenue == pytest.approx(10.0)
        assert point.dau == 150
        assert point.installs == 5
        assert point.costs == pytest.approx(3.0)

    empty = by_date[(DAY - timedelta(days=1)).isoformat()]
    assert (empty.revenue, empty.dau, empty.installs, empty.costs) == (0, 0, 0, 0)


def test_trends_non_positive_days(aggregator):
    assert aggregator.trends(DAY, days=0) == []


def test_top_performers_by_revenue(store, aggregator):
    add_revenue(store, "app-habits", DAY, 50.0)
    add_revenue(store, "app-focus", DAY, 80.0)
    add_revenue(store, "app-focus", PREVIOUS, 40.0)

    performers = aggregator.top_performers(DAY, "revenue", limit=2)

    assert [p.app.slug for p in performers] == ["focus", "habits"]
    assert performers[0].value == pytest.approx(80.0)
    assert performers[0].change == pytest.approx(100.0)
    assert performers[1].change == 0.0


def test_top_performers_ties_keep_roster_order(aggregator):
    performers = aggregator.top_performers(DAY, "installs", limit=5)

    assert [p.app.slug for p in performers] == ["habits", "focus", "site"]
    assert all(p.value == 0 for p in performers)


def test_top_performers_nonzero_ties_keep_roster_order(store, aggregator):
    """Test equal non-zero values between higher and lower ones stay in roster order."""
    store.save_app(App(id="app-notes", slug="notes", name="Notes"))
    add_installs(store, "app-habits", DAY, 50)
    add_installs(store, "app-focus", DAY, 80)
    add_installs(store, "app-site", DAY, 50, platform="web")
    add_installs(store, "app-notes", DAY, 10)

    performers = aggregator.top_performers(DAY, "installs", limit=5)

    assert [p.app.slug for p in performers] == ["focus", "habits", "site", "notes"]
    assert [p.value for p in performers] == [80, 50, 50, 10]


def test_top_performers_by_growth(store, aggregator):
    add_revenue(store, "app-habits", DAY, 150.0)
    add_revenue(store, "app-habits", PREVIOUS, 100.0)
    add_revenue(store, "app-focus", DAY, 30.0)
    add_revenue(store, "app-focus", PREVIOUS, 10.0)

    performers = aggregator.top_performers(DAY, "growth")

    assert [p.app.slug for p in performers][:2] == ["focus", "habits"]
    assert performers[0].value == pytest.approx(200.0)


def test_top_performers_by_dau(store, aggregator):
    add_users(store, "app-site", DAY, 300, platform="web")
    add_users(store, "app-habits", DAY, 100)

    performers = aggregator.top_performers(DAY, "dau", limit=1)

    assert len(performers) == 1
    assert performers[0].app.slug == "site"


def test_top_performers_unknown_metric(aggregator):
    with pytest.raises(ValueError, match="Unknown metric"):
        aggregator.top_performers(DAY, "profit")


def test_portfolio_metrics(store, aggregator):
    add_revenue(store, "app-habits", DAY, 100.0)
    add_users(store, "app-habits", DAY, 400, mau=2000)
    add_users(store, "app-site", DAY, 100, platform="web", mau=500)
    add_cost(store, "anthropic", DAY, 20.0)
    add_cost(store, "neon", DAY, 5.0, app_id="app-habits")

    metrics = aggregator.portfolio_metrics(DAY)

    assert metrics.total_revenue == pytest.approx(100.0)
    assert metrics.total_dau == 500
    assert metrics.total_costs == pytest.approx(25.0)
    assert metrics.net_profit == pytest.approx(75.0)
    assert metrics.cost_per_user == pytest.approx(0.05)
    assert metrics.costs.pooled_costs == pytest.approx(20.0)
    assert metrics.costs.cost_per_user == pytest.approx(0.01)
    assert metrics.costs.provider_breakdown == {"anthropic": 20.0, "neon": 5.0}

    habits = next(m for m in metrics.apps if m.app.slug == "habits")
    assert habits.costs.total_costs == pytest.approx(5.0)
    assert habits.revenue.arpu == pytest.approx(0.25)


def test_revenue_totals_skip_unconverted_currencies(store, aggregator):
    """Test a row left in its native currency is not summed as USD."""
    add_revenue(store, "app-habits", DAY, 9.99, platform="android")
    store.upsert(
        "daily_revenue",
        {"app_id": "app-habits", "date": DAY.isoformat(), "platform": "android",
         "country": "JP", "currency": "JPY", "gross_revenue": 1200.0, "net_revenue": 1020.0},
    )

    snapshot = aggregator.snapshot(DAY)
    [point] = aggregator.trends(DAY, days=1)
    [top] = aggregator.top_performers(DAY, "revenue", limit=1)
    metrics = aggregator.portfolio_metrics(DAY)

    assert snapshot.total_revenue == pytest.approx(9.99)
    assert point.revenue == pytest.approx(9.99)
    assert top.value == pytest.approx(9.99)
    assert metrics.total_revenue == pytest.approx(9.99)


def test_provider_usage_sums_pooled_and_app_rows(store, aggregator):
    for app_id, quantity in ((None, 1000), ("app-habits", 250)):
        store.upsert(
            "daily_provider_costs",
            {"provider_id": "anthropic", "app_id": app_id, "date": DAY.isoformat(),
             "cost": 1.0, "usage_quantity": quantity, "usage_unit": "tokens"},
        )

    snapshot = aggregator.snapshot(DAY)

    anthropic = next(p for p in snapshot.providers if p.provider_slug == "anthropic")
    assert anthropic.cost == pytest.approx(2.0)
    assert anthropic.usage_quantity == 1250
    assert anthropic.usage_unit == "tokens"
    neon = next(p for p in snapshot.providers if p.provider_slug == "neon")
    assert neon.usage_quantity is None
