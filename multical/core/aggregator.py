"""
Multi-Calendar Aggregator — Event Aggregator.

Fans a query out to every requested calendar source concurrently, merges the
answers, removes duplicates and returns them in start order. One failing
source never fails the call: its error is recorded as a SourceFailure and it
contributes nothing. Only the aggregate wall-clock ceiling fails a request.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from pydantic import BaseModel, model_validator

from multical.core.cache import (
    DEFAULT_TTL,
    SEARCH_TTL,
    CacheHealth,
    CacheStore,
    aggregated_key,
    date_range_key,
    events_key,
    safe_get,
    safe_set,
    search_key,
)
from multical.core.conflict_checker import EventConflict, find_conflicts
from multical.core.expander import DEFAULT_MAX_OCCURRENCES
from multical.core.records import build_events, resolve_timezone
from multical.core.registry import BackendHealth, SourceRegistry
from multical.core.validation import (
    event_errors,
    require_date_range,
    require_positive,
    require_query,
    require_sources,
)
from multical.data.models import (
    AggregateResult,
    BackendKind,
    CalendarEvent,
    CalendarSource,
    Importance,
    SourceFailure,
)
from multical.ports.calendar_port import AggregationTimeoutError, CalendarError

logger = logging.getLogger(__name__)

DEFAULT_MAX_EVENTS = 1000
DEFAULT_MAX_RESULTS = 50


class SearchCriteria(BaseModel):
    """Filters for ``EventAggregator.advanced_search``; unset fields match everything."""

    query: str | None = None
    source_ids: list[str] | None = None
    start: datetime | None = None
    end: datetime | None = None
    organizers: list[str] | None = None
    attendees: list[str] | None = None
    importance: list[Importance] | None = None
    categories: list[str] | None = None
    is_recurring: bool | None = None
    is_all_day: bool | None = None

    @model_validator(mode="after")
    def _check_range(self) -> SearchCriteria:
        if (self.start is None) != (self.end is None):
            raise ValueError("start and end must be given together")
        if self.start is not None and self.end is not None and self.start >= self.end:
            raise ValueError("end must be after start")
        return self


@dataclass
class SearchResult:
    events: list[CalendarEvent]
    total_count: int
    duration_ms: int


@dataclass
class ServiceHealth:
    backends: dict[BackendKind, BackendHealth] = field(default_factory=dict)
    cache: CacheHealth | None = None

    @property
    def cache_healthy(self) -> bool:
        return self.cache is not None and self.cache.healthy


# ---------------------------------------------------------------------------
# Merge helpers
# ---------------------------------------------------------------------------


def dedup_key(event: CalendarEvent) -> str:
    start_ms = int(event.start.timestamp() * 1000)
    return f"{event.title}_{start_ms}_{event.organizer}".lower()


def dedupe(events: list[CalendarEvent]) -> list[CalendarEvent]:
    """Drop events sharing title, start and organizer; the first one wins."""
    seen: set[str] = set()
    unique: list[CalendarEvent] = []
    for event in events:
        key = dedup_key(event)
        if key not in seen:
            seen.add(key)
            unique.append(event)
    return unique


def sort_by_start(events: list[CalendarEvent]) -> list[CalendarEvent]:
    # sorted() is stable: ties keep source order
    return sorted(events, key=lambda event: event.start)


def rank_search_results(events: list[CalendarEvent], query: str) -> list[CalendarEvent]:
    """Title matches first, then ascending start within each group."""
    needle = query.lower()
    return sorted(events, key=lambda event: (needle not in event.title.lower(), event.start))


def intersects(event: CalendarEvent, start: datetime, end: datetime) -> bool:
    if event.start == event.end:
        return start <= event.start < end
    return event.start < end and event.end > start


def matches_query(event: CalendarEvent, query: str) -> bool:
    """Every whitespace-separated term appears somewhere in the event's text."""
    haystack = " ".join(
        [
            event.title,
            event.description,
            event.location,
            event.organizer,
            event.category,
            *(f"{a.name} {a.email}" for a in event.attendees),
        ]
    ).lower()
    return all(term in haystack for term in query.lower().split())


def apply_criteria(events: list[CalendarEvent], criteria: SearchCriteria) -> list[CalendarEvent]:
    filtered = events
    if criteria.categories:
        wanted = set(criteria.categories)
        filtered = [e for e in filtered if e.category and wanted & set(e.category.split(", "))]
    if criteria.organizers:
        organizers = [o.lower() for o in criteria.organizers]
        filtered = [e for e in filtered if any(o in e.organizer.lower() for o in organizers)]
    if criteria.attendees:
        needles = [a.lower() for a in criteria.attendees]
        filtered = [
            e
            for e in filtered
            if any(n in a.email.lower() or n in a.name.lower() for a in e.attendees for n in needles)
        ]
    if criteria.importance:
        filtered = [e for e in filtered if e.importance in criteria.importance]
    if criteria.is_recurring is not None:
        filtered = [e for e in filtered if e.is_recurring == criteria.is_recurring]
    if criteria.is_all_day is not None:
        filtered = [e for e in filtered if e.is_all_day == criteria.is_all_day]
    if criteria.query:
        filtered = [e for e in filtered if matches_query(e, criteria.query)]
    return filtered


def unique_sources(sources: list[CalendarSource]) -> list[CalendarSource]:
    """Collapse repeated references to the same source, keeping first-seen order."""
    seen: dict[str, CalendarSource] = {}
    for source in sources:
        seen.setdefault(source.id, source)
    return list(seen.values())


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------


class EventAggregator:
    """Merged, cached view over every calendar source known to a registry.

    Args:
        registry: Source catalog; also supplies the backend per source kind.
        cache: Shared cache store.
        events_ttl: Lifetime of cached event lists.
        search_ttl: Lifetime of cached search results.
        timeout_seconds: Wall-clock ceiling for one aggregate call (None = none).
        source_timeout_seconds: Optional ceiling for each source's fetch.
        horizon_days: Length of the default window starting now.
        max_occurrences: Cap on occurrences generated per recurring series.
        default_max_events: Event limit used by the convenience calls.
        timezone_name: IANA zone for naive range endpoints passed by callers.
        clock: Returns the current aware datetime; injectable for tests.
    """

    def __init__(
        self,
        registry: SourceRegistry,
        cache: CacheStore,
        *,
        events_ttl: timedelta = DEFAULT_TTL,
        search_ttl: timedelta = SEARCH_TTL,
        timeout_seconds: float | None = 30.0,
        source_timeout_seconds: float | None = None,
        horizon_days: int = 180,
        max_occurrences: int = DEFAULT_MAX_OCCURRENCES,
        default_max_events: int = DEFAULT_MAX_EVENTS,
        timezone_name: str = "UTC",
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._registry = registry
        self._cache = cache
        self._events_ttl = events_ttl
        self._search_ttl = search_ttl
        self._timeout = timeout_seconds or None
        self._source_timeout = source_timeout_seconds or None
        self._horizon = timedelta(days=horizon_days)
        self._max_occurrences = max_occurrences
        self._default_max_events = default_max_events
        self._tz = resolve_timezone(timezone_name)
        self._clock = clock

    @property
    def registry(self) -> SourceRegistry:
        return self._registry

    # -- events ---------------------------------------------------------------

    async def get_events(
        self, sources: list[CalendarSource], max_events: int = DEFAULT_MAX_EVENTS
    ) -> list[CalendarEvent]:
        """Events from now to the horizon across ``sources``, merged and sorted."""
        return (await self.collect_events(sources, max_events)).events

    async def collect_events(
        self, sources: list[CalendarSource], max_events: int = DEFAULT_MAX_EVENTS
    ) -> AggregateResult:
        """Like ``get_events`` but also reports which sources failed."""
        sources = unique_sources(require_sources(sources))
        require_positive("max_events", max_events)
        if not sources:
            return AggregateResult(events=[], failures=[])

        key = aggregated_key(s.id for s in sources)
        cached = safe_get(self._cache, key)
        if cached is not None:
            return AggregateResult(events=list(cached)[:max_events], failures=[], from_cache=True)

        window_start = self._clock()
        window_end = window_start + self._horizon
        per_source = math.ceil(max_events / len(sources))

        async def work(source: CalendarSource) -> list[CalendarEvent]:
            return await self._source_events(
                source, window_start, window_end, per_source, cache_key=events_key(source.id)
            )

        result = await self._aggregate(sources, work, max_events)
        if not result.failures:
            safe_set(self._cache, key, list(result.events), self._events_ttl)
        return result

    async def get_events_for_range(
        self,
        sources: list[CalendarSource],
        start: datetime,
        end: datetime,
        max_events: int = DEFAULT_MAX_EVENTS,
    ) -> list[CalendarEvent]:
        return (await self.collect_events_for_range(sources, start, end, max_events)).events

    async def collect_events_for_range(
        self,
        sources: list[CalendarSource],
        start: datetime,
        end: datetime,
        max_events: int = DEFAULT_MAX_EVENTS,
    ) -> AggregateResult:
        """Events intersecting [start, end) across ``sources``."""
        start, end = require_date_range(start, end, self._tz)
        sources = unique_sources(require_sources(sources))
        require_positive("max_events", max_events)
        if not sources:
            return AggregateResult(events=[], failures=[])

        key = date_range_key(start, end, (s.id for s in sources))
        cached = safe_get(self._cache, key)
        if cached is not None:
            return AggregateResult(events=list(cached)[:max_events], failures=[], from_cache=True)

        per_source = math.ceil(max_events / len(sources))

        async def work(source: CalendarSource) -> list[CalendarEvent]:
            return await self._source_events(source, start, end, per_source)

        result = await self._aggregate(sources, work, max_events)
        if not result.failures:
            safe_set(self._cache, key, list(result.events), self._events_ttl)
        return result

    async def get_upcoming_events(
        self, max_events: int | None = None, include_mailbox: bool = False
    ) -> list[CalendarEvent]:
        """Upcoming events from every enabled source the registry knows."""
        sources = await self._registry.enabled_sources(include_mailbox)
        return await self.get_events(sources, max_events or self._default_max_events)

    # -- search ---------------------------------------------------------------

    async def search(
        self, sources: list[CalendarSource], query: str, max_results: int = DEFAULT_MAX_RESULTS
    ) -> list[CalendarEvent]:
        """Backend-side text search; title matches rank first."""
        query = require_query(query)
        sources = unique_sources(require_sources(sources))
        require_positive("max_results", max_results)
        if not sources:
            return []

        key = search_key(query, (s.id for s in sources))
        cached = safe_get(self._cache, key)
        if cached is not None:
            return list(cached)[:max_results]

        by_kind: dict[BackendKind, list[CalendarSource]] = defaultdict(list)
        for source in sources:
            by_kind[source.backend_kind].append(source)

        outcomes = await self._with_ceiling(
            asyncio.gather(
                *(self._search_kind(kind, group, query, max_results) for kind, group in by_kind.items())
            )
        )
        found = [event for events in outcomes for event in events]
        ranked = rank_search_results(dedupe(found), query)[:max_results]
        safe_set(self._cache, key, list(ranked), self._search_ttl)
        logger.info("Search %r matched %d event(s) across %d source(s)", query, len(ranked), len(sources))
        return ranked

    async def advanced_search(self, criteria: SearchCriteria) -> SearchResult:
        """Fetch events for the selected sources and filter them locally."""
        started = time.perf_counter()
        sources = await self._registry.list_sources(include_mailbox=True)
        if criteria.source_ids:
            wanted = set(criteria.source_ids)
            sources = [s for s in sources if s.id in wanted]
        else:
            sources = [s for s in sources if s.is_enabled]

        if criteria.start is not None and criteria.end is not None:
            events = await self.get_events_for_range(
                sources, criteria.start, criteria.end, self._default_max_events
            )
        else:
            events = await self.get_events(sources, self._default_max_events)

        matched = apply_criteria(events, criteria)
        return SearchResult(
            events=matched,
            total_count=len(matched),
            duration_ms=int((time.perf_counter() - started) * 1000),
        )

    # -- conflicts ------------------------------------------------------------

    async def detect_conflicts(
        self, sources: list[CalendarSource], start: datetime, end: datetime
    ) -> list[EventConflict]:
        events = await self.get_events_for_range(sources, start, end, self._default_max_events)
        return find_conflicts(events)

    # -- maintenance ----------------------------------------------------------

    async def service_health(self) -> ServiceHealth:
        backends = await self._registry.check_backends()
        try:
            cache_health = self._cache.health()
        except Exception as exc:
            logger.warning("Cache health check failed: %s", exc)
            cache_health = None
        return ServiceHealth(backends=backends, cache=cache_health)

    def clear_cache(self) -> None:
        self._cache.clear()

    def clear_source_cache(self, source_id: str) -> int:
        return self._registry.invalidate(source_id)

    def cache_health(self) -> CacheHealth:
        return self._cache.health()

    # -- internals ------------------------------------------------------------

    async def _with_ceiling(self, awaitable: Awaitable):
        if self._timeout is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            logger.error("Aggregate call exceeded %.1fs", self._timeout)
            raise AggregationTimeoutError(
                f"Calendar aggregation timed out after {self._timeout:g}s"
            ) from exc

    async def _aggregate(
        self,
        sources: list[CalendarSource],
        work: Callable[[CalendarSource], Awaitable[list[CalendarEvent]]],
        max_events: int,
    ) -> AggregateResult:
        outcomes = await self._with_ceiling(
            asyncio.gather(*(self._guarded(source, work) for source in sources))
        )

        merged: list[CalendarEvent] = []
        failures: list[SourceFailure] = []
        for outcome in outcomes:
            if isinstance(outcome, SourceFailure):
                failures.append(outcome)
            else:
                merged.extend(outcome)

        events = sort_by_start(dedupe(merged))[:max_events]
        logger.info(
            "Aggregated %d event(s) from %d source(s), %d failed",
            len(events),
            len(sources),
            len(failures),
        )
        return AggregateResult(events=events, failures=failures)

    async def _guarded(
        self,
        source: CalendarSource,
        work: Callable[[CalendarSource], Awaitable[list[CalendarEvent]]],
    ) -> list[CalendarEvent] | SourceFailure:
        try:
            if self._source_timeout is None:
                return await work(source)
            return await asyncio.wait_for(work(source), timeout=self._source_timeout)
        except asyncio.TimeoutError:
            logger.warning("Calendar %r timed out after %.1fs", source.title, self._source_timeout)
            return SourceFailure(source_id=source.id, title=source.title, error="Timed out")
        except Exception as exc:
            logger.warning("Failed to fetch events from %r: %s", source.title, exc)
            return SourceFailure(source_id=source.id, title=source.title, error=str(exc))

    def _backend_for(self, kind: BackendKind):
        backend = self._registry.backends.get(kind)
        if backend is None:
            raise CalendarError(f"No {kind.value} backend configured")
        return backend

    def _map_records(
        self,
        raw_records: list[dict],
        source: CalendarSource,
        window_start: datetime | None,
        window_end: datetime | None,
    ) -> list[CalendarEvent]:
        events: list[CalendarEvent] = []
        for raw in raw_records:
            try:
                mapped = build_events(raw, source, window_start, window_end, self._max_occurrences)
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping unreadable record from %r: %s", source.title, exc)
                continue
            for event in mapped:
                errors = event_errors(event)
                if errors:
                    logger.warning("Dropping invalid event %s: %s", event.id, "; ".join(errors))
                    continue
                events.append(event)
        return events

    async def _source_events(
        self,
        source: CalendarSource,
        window_start: datetime,
        window_end: datetime,
        limit: int,
        cache_key: str | None = None,
    ) -> list[CalendarEvent]:
        if cache_key is not None:
            cached = safe_get(self._cache, cache_key)
            if cached is not None:
                return list(cached)[:limit]

        backend = self._backend_for(source.backend_kind)
        raw_records = await backend.fetch_events(source, window_start, window_end, limit)
        events = [
            event
            for event in self._map_records(raw_records, source, window_start, window_end)
            if intersects(event, window_start, window_end)
        ]
        events = sort_by_start(events)
        logger.info("Fetched %d event(s) from %r", len(events), source.title)

        if cache_key is not None:
            safe_set(self._cache, cache_key, list(events), self._events_ttl)
        return events[:limit]

    async def _search_kind(
        self, kind: BackendKind, sources: list[CalendarSource], query: str, max_results: int
    ) -> list[CalendarEvent]:
        by_id = {source.id: source for source in sources}
        events: list[CalendarEvent] = []
        try:
            backend = self._backend_for(kind)
            raw_by_source = await backend.search_events(sources, query, max_results)
            for source_id, raw_records in raw_by_source.items():
                source = by_id.get(source_id)
                if source is None:
                    logger.debug("Ignoring search hits for unrequested source %s", source_id)
                    continue
                events.extend(self._map_records(raw_records, source, None, None))
        except Exception as exc:
            logger.warning("%s search failed: %s", kind.value.capitalize(), exc)
            return []
        return events
