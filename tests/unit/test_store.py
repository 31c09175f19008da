"""Unit tests for MetricsStore."""
from datetime import date

import pytest

from src.pulse_core.exceptions import StorageError
from src.pulse_core.storage.models import App, IngestionLogEntry, IngestionStatus


def test_upsert_is_idempotent(store):
    """Test re-writing the same natural key leaves one row with the latest values."""
    row = {
        "app_id": "app-1",
        "date": "2025-01-15",
        "platform": "ios",
        "country": "US",
        "currency": "USD",
        "gross_revenue": 10.0,
        "net_revenue": 8.5,
    }
    store.upsert("daily_revenue", row)
    store.upsert("daily_revenue", row)
    store.upsert("daily_revenue", {**row, "gross_revenue": 20.0, "net_revenue": 17.0})

    rows = store.query("daily_revenue", "2025-01-15")
    assert len(rows) == 1
    assert rows[0]["gross_revenue"] == 20.0
    assert rows[0]["net_revenue"] == 17.0


def test_upsert_resets_omitted_measures(store):
    """Test a later write without a measure resets it to the column default."""
    key = {"app_id": "app-1", "date": "2025-01-15", "platform": "ios", "country": "US"}
    store.upsert("daily_installs", {**key, "installs": 10, "uninstalls": 3})
    store.upsert("daily_installs", {**key, "installs": 12})

    [row] = store.query("daily_installs", "2025-01-15")
    assert row["installs"] == 12
    assert row["uninstalls"] == 0


def test_null_dimensions_share_one_aggregate_row(store):
    """Test None and missing dimension fields both map to the '' sentinel."""
    base = {"app_id": "app-1", "date": "2025-01-15", "dau": 100}
    store.upsert("daily_active_users", {**base, "platform": None})
    store.upsert("daily_active_users", {**base, "dau": 150})

    rows = store.query("daily_active_users", "2025-01-15")
    assert len(rows) == 1
    assert rows[0]["platform"] == ""
    assert rows[0]["dau"] == 150


def test_pooled_cost_rows_use_empty_app_id(store):
    """Test provider cost rows without an app are keyed on ''."""
    row = {"provider_id": "anthropic", "app_id": None, "date": "2025-01-15", "cost": 4.2}
    store.upsert("daily_provider_costs", row)
    store.upsert("daily_provider_costs", {**row, "cost": 5.0})

    rows = store.query("daily_provider_costs", "2025-01-15")
    assert len(rows) == 1
    assert rows[0]["app_id"] == ""
    assert rows[0]["cost"] == 5.0


def test_json_columns_round_trip(store):
    """Test JSON columns are decoded back into Python values on read."""
    store.upsert(
        "daily_provider_costs",
        {
            "provider_id": "anthropic",
            "date": "2025-01-15",
            "cost": 1.0,
            "cost_breakdown": {"claude-sonnet-4": 1.0},
        },
    )

    [row] = store.query("daily_provider_costs", "2025-01-15")
    assert row["cost_breakdown"] == {"claude-sonnet-4": 1.0}


def test_upsert_unknown_table(store):
    with pytest.raises(StorageError, match="Unknown metric table"):
        store.upsert("daily_weather", {"date": "2025-01-15"})


def test_upsert_unknown_column(store):
    with pytest.raises(StorageError, match="Unknown columns"):
        store.upsert(
            "daily_installs",
            {"app_id": "app-1", "date": "2025-01-15", "downloads": 5},
        )


def test_upsert_missing_key_field(store):
    with pytest.raises(StorageError, match="Missing natural key field app_id"):
        store.upsert("daily_installs", {"date": "2025-01-15", "installs": 5})


def test_upsert_many_rolls_back_on_error(store):
    """Test a bad row aborts the whole batch."""
    rows = [
        {"app_id": "app-1", "date": "2025-01-15", "installs": 5},
        {"date": "2025-01-15", "installs": 7},
    ]
    with pytest.raises(StorageError):
        store.upsert_many("daily_installs", rows)

    assert store.query("daily_installs", "2025-01-15") == []


def test_query_range_and_filters(store):
    """Test inclusive date ranges and equality / IN filters."""
    for day in ("2025-01-14", "2025-01-15", "2025-01-16"):
        for app_id in ("app-1", "app-2"):
            store.upsert(
                "daily_installs", {"app_id": app_id, "date": day, "installs": 1}
            )

    assert len(store.query("daily_installs", date(2025, 1, 14), date(2025, 1, 15))) == 4
    assert len(store.query("daily_installs", "2025-01-14", "2025-01-16", {"app_id": "app-2"})) == 3
    assert len(store.query("daily_installs", "2025-01-15", None, {"app_id": ["app-1", "app-2"]})) == 2
    assert store.query("daily_installs", "2025-01-15", None, {"app_id": []}) == []


def test_query_unknown_filter_column(store):
    with pytest.raises(StorageError, match="Unknown filter column"):
        store.query("daily_installs", "2025-01-15", entity_filter={"store": "x"})


def test_log_lifecycle(store):
    """Test a log entry goes running -> success exactly once."""
    entry = IngestionLogEntry(
        source="brevo", date="2025-01-15", started_at="2025-01-16T06:00:00+00:00"
    )
    log_id = store.insert_log(entry)
    assert entry.id == log_id

    [running] = store.get_logs(source="brevo")
    assert running["status"] == "running"

    store.update_log(
        log_id,
        {
            "status": IngestionStatus.SUCCESS,
            "completed_at": "2025-01-16T06:00:05+00:00",
            "records_processed": 3,
        },
    )
    [finished] = store.get_logs(target_date="2025-01-15")
    assert finished["status"] == "success"
    assert finished["records_processed"] == 3
    assert store.successful_sources("2025-01-15") == {"brevo"}

    with pytest.raises(StorageError, match="already finalized"):
        store.update_log(log_id, {"status": IngestionStatus.FAILED})


def test_update_log_rejects_unknown_fields(store):
    log_id = store.insert_log(
        IngestionLogEntry(source="x", date="2025-01-15", started_at="t")
    )
    with pytest.raises(StorageError, match="Cannot update log fields"):
        store.update_log(log_id, {"source": "y"})


def test_update_log_missing_entry(store):
    with pytest.raises(StorageError, match="not found"):
        store.update_log(999, {"status": IngestionStatus.SUCCESS})


def test_get_logs_filters_and_orders_newest_first(store):
    for source in ("a", "b", "c"):
        store.insert_log(IngestionLogEntry(source=source, date="2025-01-15", started_at="t"))

    logs = store.get_logs(limit=2)
    assert [log["source"] for log in logs] == ["c", "b"]
    assert store.get_logs(status="success") == []


def test_seeded_providers(store):
    """Test the schema seeds the known cost providers with id == slug."""
    slugs = {provider.slug for provider in store.list_providers()}
    assert {"anthropic", "elevenlabs", "cartesia", "google_cloud", "supabase", "neon"} <= slugs
    assert all(provider.id == provider.slug for provider in store.list_providers())


def test_save_app_upserts_by_slug(store):
    """Test saving an app twice updates it in place and keeps roster order."""
    store.save_app(App(id="a1", slug="one", name="One", platforms=("ios",)))
    store.save_app(App(id="a2", slug="two", name="Two"))
    store.save_app(App(id="a1", slug="one", name="One Renamed", is_active=False))

    active = store.list_apps()
    assert [app.slug for app in active] == ["two"]

    everything = store.list_apps(active_only=False)
    assert [app.slug for app in everything] == ["one", "two"]
    assert everything[0].name == "One Renamed"
    assert everything[0].platforms == ()


def test_insert_event_deduplicates(store):
    """Test a second insert with the same event_id is rejected."""
    event = {"event_id": "evt-1", "event_type": "RENEWAL", "webhook_payload": {"a": 1}}

    assert store.insert_event(event) is True
    assert store.insert_event(event) is False
    assert store.count_events("evt-1") == 1
    assert store.get_event("evt-1")["webhook_payload"] == {"a": 1}


def test_insert_event_raises_for_other_constraint_violations(store):
    """Test a NOT NULL violation on a new event is not reported as a duplicate."""
    with pytest.raises(StorageError, match="Could not store event evt-2"):
        store.insert_event({"event_id": "evt-2", "event_type": None})

    assert store.count_events() == 0

    store.insert_event({"event_id": "evt-2", "event_type": "RENEWAL"})
    assert store.count_events("evt-2") == 1


def test_company_wide_email_row_uses_empty_app_id(store):
    row = {"app_id": None, "date": "2025-01-15", "email_type": "support", "received": 4}
    store.upsert("daily_email_metrics", row)
    store.upsert("daily_email_metrics", {**row, "received": 6, "tickets_opened": 6})

    [stored] = store.query("daily_email_metrics", "2025-01-15")
    assert stored["app_id"] == ""
    assert stored["received"] == 6
    assert stored["tickets_opened"] == 6
    assert stored["avg_response_time_minutes"] is None


def test_mark_event_notified_and_record(store):
    store.insert_event({"event_id": "evt-1", "event_type": "RENEWAL"})
    store.mark_event_notified("evt-1")
    store.record_notification("telegram", "revenuecat_renewal", "hi", reference_id="evt-1")

    assert store.get_event("evt-1")["notified"] == 1
    row = store.conn.execute("SELECT * FROM notification_log").fetchone()
    assert row["reference_id"] == "evt-1"
    assert row["notification_type"] == "revenuecat_renewal"
