"""Unit tests for Google service-account adapters (mocked)."""
from unittest.mock import AsyncMock

import pytest

from src.pulse_core.exceptions import ProviderConfigError
from src.pulse_core.ingestion.adapters.firebase import (
    FirebaseAdapter,
    is_feature_event,
    parse_retention,
)
from src.pulse_core.ingestion.adapters.ga4 import report_rows
from src.pulse_core.ingestion.adapters.google_auth import ServiceAccountTokenSource
from src.pulse_core.ingestion.adapters.google_cloud import (
    GoogleCloudCostAdapter,
    parse_query_rows,
)
from src.pulse_core.ingestion.adapters.search_console import (
    SearchConsoleAdapter,
    normalize_site_url,
)
from src.pulse_core.ingestion.adapters.website import (
    WebsiteAdapter,
    parse_traffic_rows,
    total_traffic,
)


AUTH_HEADERS = {"Authorization": "Bearer ya29.test", "Content-Type": "application/json"}


def ga4_report(dimensions, metrics, rows):
    return {
        "dimensionHeaders": [{"name": name} for name in dimensions],
        "metricHeaders": [{"name": name} for name in metrics],
        "rows": [
            {
                "dimensionValues": [{"value": v} for v in row[: len(dimensions)]],
                "metricValues": [{"value": v} for v in row[len(dimensions):]],
            }
            for row in rows
        ],
    }


def with_auth(adapter):
    adapter.auth_headers = AsyncMock(return_value=dict(AUTH_HEADERS))
    return adapter


@pytest.fixture
def google_settings(settings):
    settings.firebase_service_account_json = '{"type": "service_account"}'
    return settings


def test_invalid_service_account_json():
    with pytest.raises(ProviderConfigError):
        ServiceAccountTokenSource("not json", ["scope"])


def test_report_rows_flattens_headers():
    report = ga4_report(["eventName"], ["eventCount"], [["signup", "12"]])
    assert report_rows(report) == [{"eventName": "signup", "eventCount": "12"}]
    assert report_rows({}) == []


def test_is_feature_event():
    assert is_feature_event("habit_completed") is True
    assert is_feature_event("page_view") is False
    assert is_feature_event("first_open") is False
    assert is_feature_event("session_start") is False
    assert is_feature_event("") is False


def test_parse_retention():
    rows = [
        {"cohortNthDay": "0001", "cohortActiveUsers": "40", "cohortTotalUsers": "100"},
        {"cohortNthDay": "0007", "cohortActiveUsers": "20", "cohortTotalUsers": "100"},
        {"cohortNthDay": "0003", "cohortActiveUsers": "30", "cohortTotalUsers": "100"},
    ]
    assert parse_retention(rows) == {
        "d1_retention": 40.0,
        "d7_retention": 20.0,
        "d30_retention": None,
    }


def test_parse_query_rows():
    response = {
        "schema": {"fields": [{"name": "service"}, {"name": "cost"}]},
        "rows": [{"f": [{"v": "Cloud Run"}, {"v": "1.25"}]}],
    }
    assert parse_query_rows(response) == [{"service": "Cloud Run", "cost": "1.25"}]
    assert parse_query_rows({}) == []


def test_billing_table_name(store, mock_session, google_settings):
    google_settings.google_cloud_project = "acme-prod"
    google_settings.google_cloud_billing_dataset = "billing"
    adapter = GoogleCloudCostAdapter(store, mock_session, google_settings)

    assert adapter.billing_table() == "acme-prod.billing.gcp_billing_export_v1_*"

    google_settings.google_cloud_billing_account_id = "0123AB-45CD67-89EF01"
    assert (
        adapter.billing_table()
        == "acme-prod.billing.gcp_billing_export_v1_0123AB_45CD67_89EF01"
    )


def test_normalize_site_url():
    assert normalize_site_url("sc-domain:example.com") == "sc-domain:example.com"
    assert normalize_site_url("https://example.com") == "https://example.com/"
    assert normalize_site_url("https://example.com/") == "https://example.com/"


def test_total_traffic_weights_averages_by_sessions():
    traffic = parse_traffic_rows(
        [
            {"sessionSource": "google", "sessionMedium": "organic", "sessions": "30",
             "averageSessionDuration": "60", "bounceRate": "0.5"},
            {"sessions": "10", "averageSessionDuration": "20", "bounceRate": "0.1"},
        ]
    )
    assert traffic[1]["source"] == "(direct)"
    assert traffic[1]["medium"] == "(none)"

    totals = total_traffic(traffic)
    assert totals["sessions"] == 40
    assert totals["avg_session_duration_seconds"] == pytest.approx(50.0)
    assert totals["bounce_rate"] == pytest.approx(40.0)


@pytest.mark.asyncio
async def test_google_cloud_groups_costs_by_service(
    store, mock_session, google_settings, context, make_response
):
    google_settings.google_cloud_project = "acme-prod"
    google_settings.google_cloud_billing_dataset = "billing"
    mock_session.post.return_value = make_response(
        json_data={
            "schema": {
                "fields": [
                    {"name": "service"},
                    {"name": "sku"},
                    {"name": "cost"},
                    {"name": "currency"},
                    {"name": "usage"},
                    {"name": "usage_unit"},
                ]
            },
            "rows": [
                {"f": [{"v": "Cloud Run"}, {"v": "CPU"}, {"v": "1.5"}, {"v": "USD"}, {"v": "10"}, {"v": "s"}]},
                {"f": [{"v": "Cloud Run"}, {"v": "Memory"}, {"v": "0.5"}, {"v": "USD"}, {"v": "5"}, {"v": "GiB"}]},
                {"f": [{"v": "BigQuery"}, {"v": "Analysis"}, {"v": "0.25"}, {"v": "USD"}, {"v": "1"}, {"v": "TiB"}]},
            ],
        }
    )
    adapter = with_auth(GoogleCloudCostAdapter(store, mock_session, google_settings))

    result = await adapter.run(context)

    assert result.success is True
    [row] = store.query("daily_provider_costs", context.date)
    assert row["provider_id"] == "google_cloud"
    assert row["cost"] == pytest.approx(2.25)
    assert row["cost_breakdown"] == {"Cloud Run": 2.0, "BigQuery": 0.25}

    payload = mock_session.post.call_args.kwargs["json"]
    assert payload["queryParameters"][0]["parameterValue"]["value"] == "2025-01-15"
    assert "gcp_billing_export_v1_*" in payload["query"]


@pytest.mark.asyncio
async def test_firebase_writes_active_users_and_features(
    store, mock_session, google_settings, context, make_response
):
    """Test the web app gets a ``web`` row and retention failures degrade to None."""
    mock_session.post.side_effect = [
        # habits: active users, retention, features
        make_response(
            json_data=ga4_report(
                [],
                ["activeUsers", "active7DayUsers", "active28DayUsers", "newUsers",
                 "sessions", "averageSessionDuration"],
                [["120", "400", "900", "20", "150", "95.6"]],
            )
        ),
        make_response(status=400, text="cohort not supported"),
        make_response(
            json_data=ga4_report(
                ["eventName"],
                ["eventCount", "totalUsers"],
                [["habit_completed", "300", "80"], ["page_view", "900", "100"]],
            )
        ),
        # site: active users, retention, features
        make_response(
            json_data=ga4_report(
                [],
                ["activeUsers", "active7DayUsers", "active28DayUsers", "newUsers",
                 "sessions", "averageSessionDuration"],
                [["50", "200", "700", "50", "60", "30"]],
            )
        ),
        make_response(json_data=ga4_report([], [], [])),
        make_response(json_data=ga4_report(["eventName"], ["eventCount", "totalUsers"], [])),
    ]
    adapter = with_auth(FirebaseAdapter(store, mock_session, google_settings))

    result = await adapter.run(context)

    assert result.success is True
    assert result.records_processed == 3

    users = {row["app_id"]: row for row in store.query("daily_active_users", context.date)}
    assert users["app-habits"]["platform"] == "all"
    assert users["app-habits"]["dau"] == 120
    assert users["app-habits"]["mau"] == 900
    assert users["app-habits"]["returning_users"] == 100
    assert users["app-habits"]["avg_session_duration_seconds"] == 96
    assert users["app-habits"]["d1_retention"] is None
    assert users["app-site"]["platform"] == "web"
    assert users["app-site"]["returning_users"] == 0

    [feature] = store.query("daily_feature_usage", context.date)
    assert feature["feature_name"] == "habit_completed"
    assert feature["event_count"] == 300
    assert feature["unique_users"] == 80


@pytest.mark.asyncio
async def test_website_adapter_only_covers_web_apps(
    store, mock_session, google_settings, context, make_response
):
    mock_session.post.side_effect = [
        make_response(
            json_data=ga4_report(
                ["sessionSource", "sessionMedium"],
                ["sessions", "totalUsers", "newUsers", "screenPageViews",
                 "averageSessionDuration", "bounceRate"],
                [["google", "organic", "30", "25", "10", "90", "60", "0.5"]],
            )
        ),
        make_response(
            json_data=ga4_report(["eventName"], ["eventCount"], [["sign_up", "4"]])
        ),
    ]
    adapter = with_auth(WebsiteAdapter(store, mock_session, google_settings))

    result = await adapter.run(context)

    assert result.success is True
    rows = store.query("daily_website_traffic", context.date)
    assert {row["app_id"] for row in rows} == {"app-site"}
    aggregate = next(row for row in rows if row["source"] == "")
    assert aggregate["sessions"] == 30
    assert aggregate["conversions"] == 4
    assert aggregate["bounce_rate"] == pytest.approx(50.0)
    assert mock_session.post.call_count == 2
    assert all("properties/333:runReport" in call.args[0] for call in mock_session.post.call_args_list)


@pytest.mark.asyncio
async def test_search_console_writes_aggregate_query_and_page_rows(
    store, mock_session, google_settings, context, make_response
):
    mock_session.post.side_effect = [
        make_response(json_data={"rows": [{"clicks": 10, "impressions": 200, "ctr": 0.05, "position": 7.2}]}),
        make_response(json_data={"rows": [{"keys": ["habit tracker"], "clicks": 6, "impressions": 80}]}),
        make_response(json_data={"rows": [{"keys": ["https://example.com/"], "clicks": 9, "impressions": 150}]}),
    ]
    adapter = with_auth(SearchConsoleAdapter(store, mock_session, google_settings))

    result = await adapter.run(context)

    assert result.success is True
    assert result.records_processed == 3
    rows = store.query("daily_search_console", context.date)
    aggregate = [row for row in rows if row["query"] == "" and row["page"] == ""]
    assert aggregate[0]["clicks"] == 10
    assert {row["query"] for row in rows} == {"", "habit tracker"}

    first_url = mock_session.post.call_args_list[0].args[0]
    assert "sc-domain%3Aexample.com" in first_url
