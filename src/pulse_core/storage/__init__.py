"""Pulse storage layer.

Persists to:
- SQLite: data/pulse.db (natural-key upserts, ingestion logs, events)
"""
from .models import App, AppType, IngestionLogEntry, IngestionStatus, Provider
from .schema import TABLE_KEYS, connect, ensure_schema, init_database
from .store import MetricsStore

__all__ = [
    "App",
    "AppType",
    "IngestionLogEntry",
    "IngestionStatus",
    "MetricsStore",
    "Provider",
    "TABLE_KEYS",
    "connect",
    "ensure_schema",
    "init_database",
]
