"""Calendar backend factory — builds adapters, cache, registry and aggregator from config."""

from __future__ import annotations

import logging
from datetime import timedelta

from multical.config import Settings, settings
from multical.core.aggregator import EventAggregator
from multical.core.cache import CacheStore
from multical.core.registry import SourceRegistry
from multical.data.models import BackendKind
from multical.ports.calendar_port import CalendarBackend

logger = logging.getLogger(__name__)


def create_backends(config: Settings | None = None) -> dict[BackendKind, CalendarBackend]:
    """Return one adapter per configured backend kind."""
    config = config or settings
    backends: dict[BackendKind, CalendarBackend] = {}

    if config.sharepoint_enabled:
        from multical.adapters.sharepoint_calendar import SharePointCalendarAdapter

        backends[BackendKind.LIST] = SharePointCalendarAdapter(
            site_urls=config.SHAREPOINT_SITE_URLS,
            access_token=config.SHAREPOINT_ACCESS_TOKEN,
        )

    if config.graph_enabled:
        from multical.adapters.graph_calendar import GraphCalendarAdapter

        backends[BackendKind.MAILBOX] = GraphCalendarAdapter(mailbox_user=config.MS_MAILBOX_USER)

    if not backends:
        raise ValueError("No calendar backend configured")
    logger.info("Calendar backends: %s", ", ".join(kind.value for kind in backends))
    return backends


def create_aggregator(
    config: Settings | None = None,
    backends: dict[BackendKind, CalendarBackend] | None = None,
) -> EventAggregator:
    """Wire a cache, a registry and an aggregator around the configured backends."""
    config = config or settings
    if backends is None:
        backends = create_backends(config)

    events_ttl = timedelta(minutes=config.CACHE_DURATION_MINUTES)
    cache = CacheStore(max_entries=config.CACHE_MAX_ENTRIES, default_ttl=events_ttl)
    registry = SourceRegistry(backends, cache, ttl=events_ttl)
    return EventAggregator(
        registry,
        cache,
        events_ttl=events_ttl,
        search_ttl=timedelta(minutes=config.SEARCH_CACHE_MINUTES),
        timeout_seconds=config.AGGREGATE_TIMEOUT_SECONDS,
        source_timeout_seconds=config.SOURCE_TIMEOUT_SECONDS,
        horizon_days=config.EVENT_HORIZON_DAYS,
        max_occurrences=config.MAX_RECURRENCE_OCCURRENCES,
        default_max_events=config.DEFAULT_MAX_EVENTS,
        timezone_name=config.TIMEZONE,
    )
