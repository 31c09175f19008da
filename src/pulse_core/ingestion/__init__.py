"""Pulse ingestion layer.

Collects daily metrics from store, analytics, email and cost providers.

Persists to:
- SQLite: data/pulse.db (via MetricsStore)
- JSONL: data/pulse/raw/*.jsonl (immutable audit logs)
"""
from .base import AdapterResult, CostAdapter, RunStats, SourceAdapter
from .context import IngestionContext
from .pipeline import IngestionPipeline, IngestionSummary
from .raw_archive import RawArchive

__all__ = [
    "AdapterResult",
    "CostAdapter",
    "IngestionContext",
    "IngestionPipeline",
    "IngestionSummary",
    "RawArchive",
    "RunStats",
    "SourceAdapter",
]
