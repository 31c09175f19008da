"""Ingestion context handed to every source adapter."""
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, Optional

from ..storage.models import App, Provider


@dataclass(frozen=True)
class IngestionContext:
    """Target date plus the active roster for one run."""

    date: date
    apps: tuple[App, ...] = ()
    providers: tuple[Provider, ...] = ()

    @property
    def date_str(self) -> str:
        return self.date.isoformat()

    @property
    def next_date_str(self) -> str:
        return (self.date + timedelta(days=1)).isoformat()

    def apps_where(self, predicate: Callable[[App], bool]) -> list[App]:
        """Apps matching ``predicate``, in roster order."""
        return [app for app in self.apps if predicate(app)]

    def provider(self, slug: str) -> Optional[Provider]:
        for provider in self.providers:
            if provider.slug == slug:
                return provider
        return None
