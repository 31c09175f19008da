"""Idempotent row store over SQLite.

All daily metric writes go through ``MetricsStore.upsert``, which matches
on the table's natural key and replaces every measure column on conflict.
"""
import json
import logging
import sqlite3
import uuid
from datetime import date, datetime, timezone
from typing import Any, Iterable, Optional

from ..exceptions import StorageError
from .models import App, AppType, IngestionLogEntry, IngestionStatus, Provider
from .schema import DIMENSION_FIELDS, JSON_COLUMNS, TABLE_KEYS


logger = logging.getLogger(__name__)

_UPDATABLE_LOG_FIELDS = frozenset(
    {"status", "completed_at", "records_processed", "error_message", "error_details"}
)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _date_str(value: date | str) -> str:
    if isinstance(value, date):
        return value.isoformat()
    return value


def _parse_default(raw: Optional[str]) -> Any:
    if raw is None or raw.upper() == "NULL" or raw.upper() == "CURRENT_TIMESTAMP":
        return None
    if raw.startswith("'") and raw.endswith("'"):
        return raw[1:-1]
    try:
        return int(raw)
    except ValueError:
        pass
    try:
        return float(raw)
    except ValueError:
        return raw


def _encode(column: str, value: Any) -> Any:
    if column in JSON_COLUMNS and value is not None and not isinstance(value, str):
        return json.dumps(value, separators=(",", ":"), default=str)
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, date):
        return value.isoformat()
    return value


def _decode_row(row: sqlite3.Row) -> dict:
    result = dict(row)
    for column in JSON_COLUMNS.intersection(result):
        value = result[column]
        if isinstance(value, str):
            try:
                result[column] = json.loads(value)
            except json.JSONDecodeError:
                pass
    return result


class MetricsStore:
    """Storage verbs used by adapters, aggregators and event ingress."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialize store.

        Args:
            conn: Open SQLite connection with the schema applied
        """
        self.conn = conn
        self.conn.row_factory = sqlite3.Row
        self._columns: dict[str, dict[str, Any]] = {}

    def _table_columns(self, table: str) -> dict[str, Any]:
        """Column name -> default value for a metric table."""
        if table not in TABLE_KEYS:
            raise StorageError(f"Unknown metric table: {table}")

        if table not in self._columns:
            cursor = self.conn.execute(f"PRAGMA table_info({table})")
            self._columns[table] = {
                row["name"]: _parse_default(row["dflt_value"]) for row in cursor
            }
        return self._columns[table]

    def _prepare_row(self, table: str, row: dict) -> dict:
        columns = self._table_columns(table)

        unknown = set(row) - set(columns)
        if unknown:
            raise StorageError(f"Unknown columns for {table}: {sorted(unknown)}")

        prepared: dict[str, Any] = {}
        for column, default in columns.items():
            if column in ("id", "updated_at"):
                continue
            if column in row:
                prepared[column] = _encode(column, row[column])
            else:
                prepared[column] = default

        for dimension in DIMENSION_FIELDS[table]:
            if prepared.get(dimension) is None:
                prepared[dimension] = ""

        for key in TABLE_KEYS[table]:
            if prepared.get(key) is None:
                raise StorageError(f"Missing natural key field {key} for {table}")

        return prepared

    def upsert(self, table: str, row: dict, commit: bool = True) -> None:
        """Insert a row or overwrite the row sharing its natural key.

        Measure columns absent from ``row`` are reset to their defaults, so
        the stored row always reflects the latest write in full.

        Args:
            table: Daily metric table name
            row: Column values; dimension fields may be None for aggregate rows
            commit: Commit immediately (False when batching)

        Raises:
            StorageError: Unknown table/column or missing key field
        """
        prepared = self._prepare_row(table, row)
        keys = TABLE_KEYS[table]

        columns = list(prepared)
        placeholders = ", ".join("?" for _ in columns)
        updates = ", ".join(
            f"{column}=excluded.{column}" for column in columns if column not in keys
        )

        self.conn.execute(
            f"""
            INSERT INTO {table} ({", ".join(columns)})
            VALUES ({placeholders})
            ON CONFLICT({", ".join(keys)})
            DO UPDATE SET
                {updates},
                updated_at=CURRENT_TIMESTAMP
            """,
            [prepared[column] for column in columns],
        )
        if commit:
            self.conn.commit()

    def upsert_many(self, table: str, rows: Iterable[dict]) -> int:
        """Upsert several rows in one transaction.

        Returns:
            Number of rows written
        """
        count = 0
        try:
            for row in rows:
                self.upsert(table, row, commit=False)
                count += 1
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return count

    def query(
        self,
        table: str,
        start: date | str,
        end: Optional[date | str] = None,
        entity_filter: Optional[dict[str, Any]] = None,
    ) -> list[dict]:
        """Read rows for an inclusive date range.

        Args:
            table: Daily metric table name
            start: First date (inclusive)
            end: Last date (inclusive); defaults to ``start``
            entity_filter: Column equality filters; list/tuple/set values
                become ``IN`` filters

        Returns:
            Rows as dicts, ordered by date then id
        """
        columns = self._table_columns(table)
        clauses = ["date >= ?", "date <= ?"]
        params: list[Any] = [_date_str(start), _date_str(end or start)]

        for column, value in (entity_filter or {}).items():
            if column not in columns:
                raise StorageError(f"Unknown filter column for {table}: {column}")
            if isinstance(value, (list, tuple, set, frozenset)):
                values = list(value)
                if not values:
                    return []
                clauses.append(f"{column} IN ({', '.join('?' for _ in values)})")
                params.extend(values)
            else:
                clauses.append(f"{column} = ?")
                params.append(_encode(column, value))

        cursor = self.conn.execute(
            f"SELECT * FROM {table} WHERE {' AND '.join(clauses)} ORDER BY date, id",
            params,
        )
        return [_decode_row(row) for row in cursor.fetchall()]

    # Ingestion log

    def insert_log(self, entry: IngestionLogEntry) -> int:
        """Create a log entry and return its id."""
        cursor = self.conn.execute(
            """
            INSERT INTO ingestion_logs (
                source, date, app_id, provider_id, started_at, completed_at,
                status, records_processed, error_message, error_details
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.source,
                entry.date,
                entry.app_id,
                entry.provider_id,
                entry.started_at,
                entry.completed_at,
                IngestionStatus(entry.status).value,
                entry.records_processed,
                entry.error_message,
                _encode("error_details", entry.error_details or None),
            ),
        )
        self.conn.commit()
        entry.id = cursor.lastrowid
        return cursor.lastrowid

    def update_log(self, log_id: int, patch: dict) -> None:
        """Finalize a running log entry.

        Raises:
            StorageError: Entry missing, already finalized, or bad patch
        """
        unknown = set(patch) - _UPDATABLE_LOG_FIELDS
        if unknown:
            raise StorageError(f"Cannot update log fields: {sorted(unknown)}")

        current = self.conn.execute(
            "SELECT status FROM ingestion_logs WHERE id=?", (log_id,)
        ).fetchone()
        if current is None:
            raise StorageError(f"Ingestion log {log_id} not found")
        if current["status"] != IngestionStatus.RUNNING.value:
            raise StorageError(
                f"Ingestion log {log_id} already finalized as {current['status']}"
            )

        values = dict(patch)
        if "status" in values:
            values["status"] = IngestionStatus(values["status"]).value
        if "error_details" in values:
            values["error_details"] = _encode("error_details", values["error_details"])

        assignments = ", ".join(f"{column}=?" for column in values)
        self.conn.execute(
            f"UPDATE ingestion_logs SET {assignments} WHERE id=? AND status='running'",
            [*values.values(), log_id],
        )
        self.conn.commit()

    def get_logs(
        self,
        target_date: Optional[date | str] = None,
        source: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 100,
    ) -> list[dict]:
        """Most recent log entries, newest first."""
        clauses: list[str] = []
        params: list[Any] = []
        if target_date is not None:
            clauses.append("date = ?")
            params.append(_date_str(target_date))
        if source is not None:
            clauses.append("source = ?")
            params.append(source)
        if status is not None:
            clauses.append("status = ?")
            params.append(status)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        cursor = self.conn.execute(
            f"SELECT * FROM ingestion_logs {where} ORDER BY id DESC LIMIT ?",
            [*params, limit],
        )
        return [_decode_row(row) for row in cursor.fetchall()]

    def successful_sources(self, target_date: date | str) -> set[str]:
        cursor = self.conn.execute(
            "SELECT DISTINCT source FROM ingestion_logs WHERE date=? AND status='success'",
            (_date_str(target_date),),
        )
        return {row["source"] for row in cursor.fetchall()}

    # Reference entities

    def list_apps(self, active_only: bool = True) -> list[App]:
        """Apps in roster order (creation order)."""
        where = "WHERE is_active=1" if active_only else ""
        cursor = self.conn.execute(f"SELECT * FROM apps {where} ORDER BY rowid")
        apps = []
        for row in cursor.fetchall():
            data = _decode_row(row)
            data.pop("created_at", None)
            data["type"] = AppType(data["type"])
            data["platforms"] = tuple(data["platforms"] or ())
            data["is_active"] = bool(data["is_active"])
            apps.append(App(**data))
        return apps

    def list_providers(self, active_only: bool = True) -> list[Provider]:
        where = "WHERE is_active=1" if active_only else ""
        cursor = self.conn.execute(f"SELECT * FROM providers {where} ORDER BY rowid")
        providers = []
        for row in cursor.fetchall():
            data = dict(row)
            data.pop("created_at", None)
            data["is_active"] = bool(data["is_active"])
            providers.append(Provider(**data))
        return providers

    def save_app(self, app: App) -> None:
        """Insert or update an app by slug (administrative path only)."""
        self.conn.execute(
            """
            INSERT INTO apps (
                id, slug, name, type, platforms, apple_app_id,
                google_package_name, revenuecat_app_id, ga4_property_id,
                search_console_site, umami_website_id, email_domain,
                website_url, is_active
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(slug)
            DO UPDATE SET
                name=excluded.name,
                type=excluded.type,
                platforms=excluded.platforms,
                apple_app_id=excluded.apple_app_id,
                google_package_name=excluded.google_package_name,
                revenuecat_app_id=excluded.revenuecat_app_id,
                ga4_property_id=excluded.ga4_property_id,
                search_console_site=excluded.search_console_site,
                umami_website_id=excluded.umami_website_id,
                email_domain=excluded.email_domain,
                website_url=excluded.website_url,
                is_active=excluded.is_active
            """,
            (
                app.id or uuid.uuid4().hex,
                app.slug,
                app.name,
                AppType(app.type).value,
                json.dumps(list(app.platforms)),
                app.apple_app_id,
                app.google_package_name,
                app.revenuecat_app_id,
                app.ga4_property_id,
                app.search_console_site,
                app.umami_website_id,
                app.email_domain,
                app.website_url,
                int(app.is_active),
            ),
        )
        self.conn.commit()

    def save_provider(self, provider: Provider) -> None:
        self.conn.execute(
            """
            INSERT INTO providers (id, slug, name, category, is_active)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(slug)
            DO UPDATE SET
                name=excluded.name,
                category=excluded.category,
                is_active=excluded.is_active
            """,
            (
                provider.id or provider.slug,
                provider.slug,
                provider.name,
                provider.category,
                int(provider.is_active),
            ),
        )
        self.conn.commit()

    # Event ingress

    def insert_event(self, event: dict) -> bool:
        """Insert a RevenueCat event.

        Returns:
            True if inserted, False if the event_id already exists

        Raises:
            StorageError: Any other constraint violation
        """
        columns = [column for column in event if column != "id"]
        try:
            self.conn.execute(
                f"""
                INSERT INTO revenuecat_events ({", ".join(columns)})
                VALUES ({", ".join("?" for _ in columns)})
                """,
                [_encode(column, event[column]) for column in columns],
            )
            self.conn.commit()
        except sqlite3.IntegrityError as exc:
            self.conn.rollback()
            event_id = event.get("event_id")
            if event_id is None or self.get_event(event_id) is None:
                raise StorageError(f"Could not store event {event_id}: {exc}") from exc
            logger.info("Duplicate event ignored: %s", event_id)
            return False
        return True

    def get_event(self, event_id: str) -> Optional[dict]:
        row = self.conn.execute(
            "SELECT * FROM revenuecat_events WHERE event_id=?", (event_id,)
        ).fetchone()
        return _decode_row(row) if row is not None else None

    def count_events(self, event_id: Optional[str] = None) -> int:
        if event_id is None:
            row = self.conn.execute("SELECT COUNT(*) FROM revenuecat_events").fetchone()
        else:
            row = self.conn.execute(
                "SELECT COUNT(*) FROM revenuecat_events WHERE event_id=?", (event_id,)
            ).fetchone()
        return row[0]

    def mark_event_notified(self, event_id: str) -> None:
        self.conn.execute(
            "UPDATE revenuecat_events SET notified=1 WHERE event_id=?", (event_id,)
        )
        self.conn.commit()

    def record_notification(
        self,
        channel: str,
        notification_type: str,
        message: str,
        reference_id: Optional[str] = None,
    ) -> None:
        self.conn.execute(
            """
            INSERT INTO notification_log (channel, notification_type, reference_id, message, sent_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (channel, notification_type, reference_id, message, _utc_now()),
        )
        self.conn.commit()
