"""Unit tests for RevenueCatAdapter (mocked)."""
from datetime import date

import pytest

from src.pulse_core.ingestion.adapters.revenuecat import (
    RevenueCatAdapter,
    overview_value,
    parse_chart_values,
)
from src.pulse_core.ingestion.context import IngestionContext


# 2025-01-14 and 2025-01-15 00:00 UTC
JAN_14 = 1736812800
JAN_15 = 1736899200

OVERVIEW = {
    "metrics": [
        {"id": "revenue", "value": 280.0},
        {"id": "active_subscriptions", "value": 42},
        {"id": "new_customers", "value": 56},
        {"id": "active_trials", "value": 10},
        {"id": "mrr", "value": 300.0},
    ]
}


def chart(value_14, value_15):
    return {"values": [[JAN_14, value_14], [JAN_15, value_15]]}


@pytest.fixture
def adapter(store, mock_session, settings):
    settings.revenuecat_api_key = "sk_test_key"
    return RevenueCatAdapter(store, mock_session, settings)


def context_for(apps, slug):
    return IngestionContext(
        date=date(2025, 1, 15), apps=tuple(app for app in apps if app.slug == slug)
    )


def test_parse_chart_values():
    values = parse_chart_values(chart(5, 7))
    assert values == {"2025-01-14": 5.0, "2025-01-15": 7.0}
    assert parse_chart_values({"values": [[], [JAN_15]]}) == {"2025-01-15": 0.0}


def test_overview_value_missing_metric():
    assert overview_value(OVERVIEW, "mrr") == 300.0
    assert overview_value(OVERVIEW, "churn") == 0.0


@pytest.mark.asyncio
async def test_ingest_splits_across_platforms(
    adapter, store, mock_session, sample_apps, make_response
):
    """Test chart values are split evenly across the app's ios/android platforms."""
    mock_session.get.side_effect = [
        make_response(json_data=OVERVIEW),
        make_response(json_data=chart(90, 100)),
        make_response(json_data=chart(38, 40)),
        make_response(json_data=chart(5, 6)),
        make_response(json_data=chart(3, 4)),
    ]

    result = await adapter.run(context_for(sample_apps, "habits"))

    assert result.success is True
    assert result.records_processed == 4

    revenue = {row["platform"]: row for row in store.query("daily_revenue", "2025-01-15")}
    assert set(revenue) == {"ios", "android"}
    assert revenue["ios"]["gross_revenue"] == pytest.approx(50.0)
    assert revenue["ios"]["net_revenue"] == pytest.approx(42.5)
    assert revenue["ios"]["country"] == ""

    subs = {row["platform"]: row for row in store.query("daily_subscriptions", "2025-01-15")}
    assert subs["android"]["active_subscriptions"] == 20
    assert subs["android"]["new_subscriptions"] == 3
    assert subs["android"]["new_trials"] == 2
    assert subs["android"]["active_trials"] == 5
    assert subs["android"]["mrr"] == pytest.approx(150.0)
    assert subs["android"]["raw_data"]["source"] == "revenuecat_v2_charts"

    overview_call = mock_session.get.call_args_list[0]
    assert overview_call.args[0].endswith("/projects/proj_habits/metrics/overview")
    assert overview_call.kwargs["headers"]["Authorization"] == "Bearer sk_test_key"


@pytest.mark.asyncio
async def test_ingest_falls_back_to_overview(
    adapter, store, mock_session, sample_apps, make_response
):
    """Test failed chart calls fall back to overview-derived daily values."""
    failed = make_response(status=500, text="chart error")
    mock_session.get.side_effect = [
        make_response(json_data=OVERVIEW),
        failed,
        failed,
        failed,
        failed,
    ]

    result = await adapter.run(context_for(sample_apps, "focus"))

    assert result.success is True
    [revenue] = store.query("daily_revenue", "2025-01-15")
    assert revenue["platform"] == "ios"
    assert revenue["gross_revenue"] == pytest.approx(10.0)

    [subs] = store.query("daily_subscriptions", "2025-01-15")
    assert subs["active_subscriptions"] == 42
    assert subs["new_subscriptions"] == 2
    assert subs["raw_data"]["source"] == "revenuecat_v2_overview"


@pytest.mark.asyncio
async def test_overview_failure_fails_the_app(
    adapter, store, mock_session, sample_apps, make_response
):
    mock_session.get.return_value = make_response(status=401, text="bad key sk_test_key")

    result = await adapter.run(context_for(sample_apps, "focus"))

    assert result.success is False
    assert store.query("daily_revenue", "2025-01-15") == []
    [log] = store.get_logs(source="revenuecat")
    assert log["status"] == "failed"


@pytest.mark.asyncio
async def test_per_app_key_takes_precedence(
    store, mock_session, settings, sample_apps, make_response
):
    settings.revenuecat_app_keys = {"REVENUECAT_API_KEY_FOCUS": "sk_focus"}
    adapter = RevenueCatAdapter(store, mock_session, settings)
    mock_session.get.return_value = make_response(json_data=OVERVIEW)

    await adapter.run(context_for(sample_apps, "focus"))

    headers = mock_session.get.call_args_list[0].kwargs["headers"]
    assert headers["Authorization"] == "Bearer sk_focus"


@pytest.mark.asyncio
async def test_not_configured(store, mock_session, settings, context):
    adapter = RevenueCatAdapter(store, mock_session, settings)

    result = await adapter.run(context)

    assert result.skipped is True
    mock_session.get.assert_not_called()
