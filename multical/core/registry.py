"""
Multi-Calendar Aggregator — Source Registry.

Discovers the calendar sources available from each backend, validates and
enriches them, and keeps the result in the shared cache. A backend that fails
is logged and left out; the others still contribute.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import TYPE_CHECKING, Mapping

from multical.core.cache import DEFAULT_TTL, CacheStore, safe_get, safe_set, sources_key
from multical.core.colors import color_from_string
from multical.core.records import map_source
from multical.core.validation import is_valid_hex_color, source_errors
from multical.data.models import BackendKind, CalendarSource

if TYPE_CHECKING:
    from multical.ports.calendar_port import CalendarBackend

logger = logging.getLogger(__name__)


@dataclass
class BackendHealth:
    kind: BackendKind
    available: bool
    response_time_ms: int
    error: str | None = None


class SourceRegistry:
    """Cached catalog of calendar sources across every configured backend."""

    def __init__(
        self,
        backends: Mapping[BackendKind, CalendarBackend],
        cache: CacheStore,
        ttl: timedelta = DEFAULT_TTL,
    ) -> None:
        self._backends = dict(backends)
        self._cache = cache
        self._ttl = ttl

    @property
    def backends(self) -> dict[BackendKind, CalendarBackend]:
        return dict(self._backends)

    def _kinds(self, include_mailbox: bool) -> list[BackendKind]:
        kinds = [BackendKind.LIST]
        if include_mailbox:
            kinds.append(BackendKind.MAILBOX)
        return [kind for kind in kinds if kind in self._backends]

    async def list_sources(self, include_mailbox: bool = False) -> list[CalendarSource]:
        """Return every valid source, mailbox calendars only on request."""
        scope = "all" if include_mailbox else BackendKind.LIST.value
        cached = self._cache_get(sources_key(scope))
        if cached is not None:
            logger.debug("Using cached calendar sources (%s)", scope)
            return list(cached)

        sources: list[CalendarSource] = []
        any_failed = False
        for kind in self._kinds(include_mailbox):
            subset = await self._load_kind(kind)
            if subset is None:
                any_failed = True
                continue
            sources.extend(subset)

        if not any_failed:
            self._cache_set(sources_key(scope), list(sources))
        logger.info("Loaded %d calendar source(s)", len(sources))
        return sources

    async def sources_for_kind(self, kind: BackendKind) -> list[CalendarSource]:
        cached = self._cache_get(sources_key(kind.value))
        if cached is not None:
            return list(cached)
        return await self._load_kind(kind) or []

    async def enabled_sources(self, include_mailbox: bool = False) -> list[CalendarSource]:
        return [s for s in await self.list_sources(include_mailbox) if s.is_enabled]

    async def get_source(self, source_id: str) -> CalendarSource | None:
        for source in await self.list_sources(include_mailbox=True):
            if source.id == source_id:
                return source
        return None

    def invalidate(self, source_id: str | None = None) -> int:
        """Drop cached source lists, or every cache line that mentions one source."""
        if source_id is None:
            removed = self._cache.invalidate_by_substring(sources_key(""))
        else:
            removed = self._cache.invalidate_by_substring(source_id)
        logger.info("Invalidated %d cached source entr(ies)", removed)
        return removed

    async def check_backends(self) -> dict[BackendKind, BackendHealth]:
        report: dict[BackendKind, BackendHealth] = {}
        for kind, backend in self._backends.items():
            started = time.perf_counter()
            try:
                ok = await backend.fetch_health()
                error = None if ok else "Backend reported unavailable"
            except Exception as exc:
                logger.warning("Health check failed for %s backend: %s", kind.value, exc)
                ok, error = False, str(exc)
            elapsed = int((time.perf_counter() - started) * 1000)
            report[kind] = BackendHealth(kind=kind, available=bool(ok), response_time_ms=elapsed, error=error)
        return report

    # -- internals ------------------------------------------------------------

    async def _load_kind(self, kind: BackendKind) -> list[CalendarSource] | None:
        """Fetch, validate, enrich and cache one backend's sources; None on failure."""
        backend = self._backends.get(kind)
        if backend is None:
            return []
        try:
            raw_sources = await backend.fetch_sources()
        except Exception as exc:
            logger.error("Failed to load %s calendar sources: %s", kind.value, exc)
            return None

        sources: list[CalendarSource] = []
        for raw in raw_sources:
            try:
                source = map_source(raw, kind)
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping unreadable %s source record: %s", kind.value, exc)
                continue
            errors = source_errors(source)
            if errors:
                logger.warning("Dropping invalid calendar %r: %s", source.title, "; ".join(errors))
                continue
            sources.append(self._enrich(source))

        self._cache_set(sources_key(kind.value), list(sources))
        return sources

    @staticmethod
    def _enrich(source: CalendarSource) -> CalendarSource:
        if is_valid_hex_color(source.color):
            return source
        return replace(source, color=color_from_string(source.title))

    def _cache_get(self, key: str):
        return safe_get(self._cache, key)

    def _cache_set(self, key: str, value: object) -> None:
        safe_set(self._cache, key, value, self._ttl)
