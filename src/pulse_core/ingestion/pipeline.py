"""Ingestion pipeline orchestrator.

Builds one context per date and fans it out to every registered adapter.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Optional

import aiohttp

from ..config import Settings
from ..exceptions import UnknownSourceError
from ..storage.store import MetricsStore
from .adapters import default_adapters
from .base import AdapterResult, SourceAdapter
from .context import IngestionContext
from .raw_archive import RawArchive


logger = logging.getLogger(__name__)


@dataclass
class IngestionSummary:
    """Aggregate outcome of one pipeline run for one date."""

    date: str
    started_at: str
    completed_at: str
    total_sources: int
    successful_sources: int
    failed_sources: int
    total_records: int
    results: list[AdapterResult] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        started = datetime.fromisoformat(self.started_at)
        completed = datetime.fromisoformat(self.completed_at)
        return (completed - started).total_seconds()


class IngestionPipeline:
    """Runs source adapters for a date against a shared store and session."""

    def __init__(
        self,
        store: MetricsStore,
        session: aiohttp.ClientSession,
        settings: Settings,
        adapters: Optional[Iterable[SourceAdapter]] = None,
    ) -> None:
        """Initialize pipeline.

        Args:
            store: Idempotent metrics store shared by every adapter
            session: Shared aiohttp session
            settings: Process configuration
            adapters: Adapter instances; defaults to every known provider
        """
        self.store = store
        self.session = session
        self.settings = settings

        if adapters is None:
            archive = RawArchive(settings.raw_dir)
            adapters = default_adapters(store, session, settings, archive)
        self.adapters: dict[str, SourceAdapter] = {
            adapter.name: adapter for adapter in adapters
        }

    def available_sources(self) -> list[str]:
        return list(self.adapters)

    def default_date(self) -> date:
        """Yesterday in the configured reporting timezone."""
        return datetime.now(self.settings.tzinfo).date() - timedelta(days=1)

    def build_context(self, target_date: date) -> IngestionContext:
        apps = tuple(self.store.list_apps(active_only=True))
        providers = tuple(self.store.list_providers(active_only=True))
        logger.info("Loaded %s apps and %s providers", len(apps), len(providers))
        return IngestionContext(date=target_date, apps=apps, providers=providers)

    def _adapter(self, source: str) -> SourceAdapter:
        adapter = self.adapters.get(source)
        if adapter is None:
            raise UnknownSourceError(source)
        return adapter

    async def run(
        self,
        target_date: Optional[date] = None,
        sources: Optional[list[str]] = None,
    ) -> IngestionSummary:
        """Run adapters concurrently for one date.

        Args:
            target_date: Metric date (defaults to yesterday)
            sources: Subset of source names; unknown names are skipped

        Returns:
            IngestionSummary with one result per adapter that ran
        """
        if target_date is None:
            target_date = self.default_date()

        started_at = datetime.now(timezone.utc).isoformat()
        names = sources if sources is not None else self.available_sources()

        selected: list[SourceAdapter] = []
        for name in names:
            if name not in self.adapters:
                logger.warning("Unknown ingestion source: %s", name)
                continue
            selected.append(self.adapters[name])

        logger.info(
            "Starting ingestion for %s (sources: %s)",
            target_date.isoformat(),
            ", ".join(adapter.name for adapter in selected),
        )

        context = self.build_context(target_date)
        results = list(
            await asyncio.gather(*(adapter.run(context) for adapter in selected))
        )

        for result in results:
            if result.success:
                logger.info("%s: %s records", result.source, result.records_processed)
            else:
                logger.error("%s: %s", result.source, result.error)

        summary = IngestionSummary(
            date=target_date.isoformat(),
            started_at=started_at,
            completed_at=datetime.now(timezone.utc).isoformat(),
            total_sources=len(selected),
            successful_sources=sum(1 for r in results if r.success),
            failed_sources=sum(1 for r in results if not r.success),
            total_records=sum(r.records_processed for r in results),
            results=results,
        )

        logger.info(
            "Ingestion complete for %s: %s/%s sources successful, %s records in %.1fs",
            summary.date,
            summary.successful_sources,
            summary.total_sources,
            summary.total_records,
            summary.duration_seconds,
        )
        return summary

    async def run_source(
        self, source: str, target_date: Optional[date] = None
    ) -> AdapterResult:
        """Run a single adapter.

        Raises:
            UnknownSourceError: No adapter registered under ``source``
        """
        adapter = self._adapter(source)
        if target_date is None:
            target_date = self.default_date()
        return await adapter.run(self.build_context(target_date))

    def missing_dates(self, days: Optional[int] = None) -> list[date]:
        """Recent dates lacking a successful log for some configured source.

        Args:
            days: How many days back to look (defaults to settings.backfill_days)

        Returns:
            Dates oldest first
        """
        if days is None:
            days = self.settings.backfill_days

        configured = {
            name for name, adapter in self.adapters.items() if adapter.is_configured()
        }
        if not configured:
            return []

        today = datetime.now(self.settings.tzinfo).date()
        missing: list[date] = []
        for days_ago in range(days, 0, -1):
            target_date = today - timedelta(days=days_ago)
            if configured - self.store.successful_sources(target_date):
                missing.append(target_date)
        return missing

    async def backfill(self, days: Optional[int] = None) -> list[IngestionSummary]:
        """Re-run every recent date with a missing source, oldest first."""
        summaries = []
        for target_date in self.missing_dates(days):
            logger.info("Backfilling %s", target_date.isoformat())
            summaries.append(await self.run(target_date))
        return summaries
