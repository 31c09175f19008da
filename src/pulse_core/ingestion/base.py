"""Source adapter contract and shared adapter plumbing.

Every provider family implements ``SourceAdapter``. The base ``run``
owns the ingestion log lifecycle: a ``running`` entry is created before
any write and finalized exactly once, on success and failure paths alike.
"""
import asyncio
import logging
import traceback
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar

import aiohttp

from ..config import Settings
from ..exceptions import ProviderApiError, PulseError
from ..storage.models import IngestionLogEntry, IngestionStatus
from ..storage.store import MetricsStore
from .context import IngestionContext
from .raw_archive import RawArchive


logger = logging.getLogger(__name__)

T = TypeVar("T")


def _redact_text(text: str, secrets: list[Optional[str]]) -> str:
    if not text:
        return text
    redacted = text
    for secret in secrets:
        if secret:
            redacted = redacted.replace(secret, "[REDACTED]")
    return redacted


def _safe_int(value: Any) -> int:
    if value is None or value == "":
        return 0
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def _safe_float(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class AdapterResult:
    """Outcome of one ``run(context)`` call."""

    source: str
    date: str
    success: bool
    records_processed: int = 0
    error: Optional[str] = None
    skipped: bool = False


@dataclass
class RunStats:
    """Mutable counters for a single adapter run."""

    records: int = 0
    entities_attempted: int = 0
    entities_failed: int = 0
    entity_errors: dict[str, str] = field(default_factory=dict)

    @property
    def all_entities_failed(self) -> bool:
        return self.entities_attempted > 0 and (
            self.entities_failed == self.entities_attempted
        )


class SourceAdapter(ABC):
    """Base class for provider adapters.

    Subclasses set ``name``, implement ``is_configured`` and ``ingest``.
    ``ingest`` adds written rows to ``stats.records`` and should process
    entities through ``for_each_entity`` to get isolation and pacing.
    """

    name: str = ""
    not_configured_message: str = "credentials not configured"

    def __init__(
        self,
        store: MetricsStore,
        session: aiohttp.ClientSession,
        settings: Settings,
        archive: Optional[RawArchive] = None,
    ) -> None:
        """Initialize adapter.

        Args:
            store: Idempotent metrics store
            session: Shared aiohttp session for provider requests
            settings: Process configuration (credentials, pacing)
            archive: Optional raw payload archive
        """
        self.store = store
        self.session = session
        self.settings = settings
        self.archive = archive
        self.entity_delay = max(settings.entity_delay_ms, 0) / 1000

    @abstractmethod
    def is_configured(self) -> bool:
        """True when the credentials this adapter needs are present."""

    @abstractmethod
    async def ingest(self, context: IngestionContext, stats: RunStats) -> None:
        """Fetch, normalize and upsert rows for ``context.date``."""

    def log_provider_id(self, context: IngestionContext) -> Optional[str]:
        """Provider reference recorded on the ingestion log, if any."""
        return None

    def _redact(self, text: str) -> str:
        return _redact_text(text, self.settings.secrets())

    async def run(self, context: IngestionContext) -> AdapterResult:
        """Run the adapter for one date inside a log lifecycle.

        Never raises; failures are reported on the returned result and in
        the ingestion log.
        """
        date_str = context.date_str

        if not self.is_configured():
            logger.warning(
                "%s %s, skipping ingestion", self.name, self.not_configured_message
            )
            return AdapterResult(
                source=self.name,
                date=date_str,
                success=True,
                error=f"{self.name} not configured",
                skipped=True,
            )

        entry = IngestionLogEntry(
            source=self.name,
            date=date_str,
            started_at=_utc_now(),
            provider_id=self.log_provider_id(context),
        )
        try:
            log_id = self.store.insert_log(entry)
        except Exception as exc:
            logger.error(
                "Could not create ingestion log for %s %s: %s",
                self.name,
                date_str,
                exc,
                exc_info=True,
            )
            return AdapterResult(
                source=self.name, date=date_str, success=False, error=str(exc)
            )

        stats = RunStats()
        status = IngestionStatus.SUCCESS
        error_message: Optional[str] = None
        error_details: dict = {}

        try:
            await self.ingest(context, stats)
            if stats.all_entities_failed:
                status = IngestionStatus.FAILED
                error_message = (
                    f"All {stats.entities_attempted} entities failed for {self.name}"
                )
        except Exception as exc:
            status = IngestionStatus.FAILED
            error_message = self._redact(str(exc)) or type(exc).__name__
            error_details["traceback"] = self._redact(traceback.format_exc()[-2000:])
            logger.error(
                "%s ingestion failed for %s: %s",
                self.name,
                date_str,
                error_message,
                exc_info=True,
            )

        if stats.entity_errors:
            error_details["entity_errors"] = stats.entity_errors

        try:
            self.store.update_log(
                log_id,
                {
                    "status": status,
                    "completed_at": _utc_now(),
                    "records_processed": stats.records,
                    "error_message": error_message,
                    "error_details": error_details or None,
                },
            )
        except Exception as record_exc:
            logger.error(
                "Failed to finalize ingestion log %s: %s",
                log_id,
                self._redact(str(record_exc)),
            )

        if status is IngestionStatus.SUCCESS:
            logger.info(
                "%s ingestion successful for %s (%s records)",
                self.name,
                date_str,
                stats.records,
            )

        return AdapterResult(
            source=self.name,
            date=date_str,
            success=status is IngestionStatus.SUCCESS,
            records_processed=stats.records,
            error=error_message,
        )

    async def for_each_entity(
        self,
        entities: Iterable[T],
        handler: Callable[[T], Awaitable[int]],
        stats: RunStats,
        label: Callable[[T], str] = str,
    ) -> None:
        """Process entities sequentially with a fixed pause between them.

        A failing entity is logged and skipped; rows already written for
        earlier entities stay committed.
        """
        for index, entity in enumerate(entities):
            if index > 0 and self.entity_delay:
                await asyncio.sleep(self.entity_delay)

            stats.entities_attempted += 1
            try:
                stats.records += await handler(entity)
            except Exception as exc:
                stats.entities_failed += 1
                message = self._redact(str(exc)) or type(exc).__name__
                stats.entity_errors[label(entity)] = message
                logger.warning(
                    "%s: skipping %s after error: %s", self.name, label(entity), message
                )

    async def archive_raw(self, label: str, date_str: str, items: list[dict]) -> None:
        if self.archive is None:
            return
        try:
            await self.archive.write(self.name, label, date_str, items)
        except OSError as exc:
            logger.warning("Could not archive raw %s payload: %s", self.name, exc)

    async def _check_response(self, response: aiohttp.ClientResponse) -> None:
        if 200 <= response.status < 300:
            return
        error_body = self._redact((await response.text())[:500])
        logger.error("%s API error (%s): %s", self.name, response.status, error_body)
        raise ProviderApiError(self.name, response.status, error_body)

    async def _get_json(
        self,
        url: str,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> Any:
        async with self.session.get(url, params=params, headers=headers) as response:
            await self._check_response(response)
            return await response.json(content_type=None)

    async def _post_json(
        self,
        url: str,
        payload: Optional[dict] = None,
        headers: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> Any:
        async with self.session.post(
            url, json=payload, headers=headers, params=params
        ) as response:
            await self._check_response(response)
            return await response.json(content_type=None)

    async def _get_bytes(
        self,
        url: str,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> bytes:
        async with self.session.get(url, params=params, headers=headers) as response:
            await self._check_response(response)
            return await response.read()


class CostAdapter(SourceAdapter):
    """Adapter writing one pooled provider-cost row per date.

    Subclasses set ``provider_slug`` and implement ``fetch_cost`` returning
    the measure fields of a ``daily_provider_costs`` row.
    """

    provider_slug: str = ""

    def log_provider_id(self, context: IngestionContext) -> Optional[str]:
        provider = context.provider(self.provider_slug)
        return provider.id if provider is not None else None

    @abstractmethod
    async def fetch_cost(self, context: IngestionContext) -> dict:
        """Return cost/usage measures for ``context.date``."""

    async def ingest(self, context: IngestionContext, stats: RunStats) -> None:
        provider = context.provider(self.provider_slug)
        if provider is None:
            raise PulseError(f"Provider {self.provider_slug} not found in active roster")

        measures = await self.fetch_cost(context)
        await self.archive_raw(self.provider_slug, context.date_str, [measures])

        row = {
            "provider_id": provider.id,
            "app_id": None,
            "date": context.date_str,
            "currency": "USD",
        }
        row.update(measures)
        self.store.upsert("daily_provider_costs", row)
        stats.records += 1
