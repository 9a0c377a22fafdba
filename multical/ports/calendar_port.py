"""Calendar backend port — the fetch contract every backend adapter implements.

Core modules depend on this protocol, never on a specific provider. Adapters
return raw records (plain dicts in the backend's own shape); the core maps and
validates them.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from multical.data.models import BackendKind, CalendarSource


class CalendarError(Exception):
    """Raised when a backend operation fails (unreachable, bad response, …)."""


class ValidationError(ValueError):
    """Raised when a public call receives malformed arguments."""


class AggregationTimeoutError(CalendarError):
    """Raised when an aggregate call exceeds its wall-clock ceiling."""


class CalendarBackend(Protocol):
    """Abstract backend interface used by the registry and the aggregator."""

    kind: BackendKind

    async def fetch_sources(self) -> list[dict]: ...

    async def fetch_events(
        self,
        source: CalendarSource,
        window_start: datetime | None = None,
        window_end: datetime | None = None,
        max_events: int = 100,
    ) -> list[dict]: ...

    async def search_events(
        self, sources: list[CalendarSource], query: str, max_results: int
    ) -> dict[str, list[dict]]: ...

    async def fetch_health(self) -> bool: ...
