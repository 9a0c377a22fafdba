"""Shared test fixtures and configuration.

Sets up fake environment variables so multical.config doesn't sys.exit(),
and provides common fixtures: a controllable clock, a cache, fake backends
and sample raw records.
"""

import os

# Patch env vars BEFORE any multical imports
os.environ.setdefault("SHAREPOINT_SITE_URLS", "https://contoso.sharepoint.com/sites/team")
os.environ.setdefault("SHAREPOINT_ACCESS_TOKEN", "fake-sp-token-for-tests")
os.environ.setdefault("MS_CLIENT_ID", "fake-client-id")
os.environ.setdefault("MS_CLIENT_SECRET", "fake-client-secret")
os.environ.setdefault("MS_TENANT_ID", "fake-tenant")
os.environ.setdefault("MS_MAILBOX_USER", "alice@contoso.com")

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from multical.core.aggregator import EventAggregator
from multical.core.cache import CacheStore
from multical.core.registry import SourceRegistry
from multical.data.models import BackendKind, CalendarEvent, CalendarSource

SITE = "https://contoso.sharepoint.com/sites/team"
LIST_ID_A = "11111111-1111-4111-8111-111111111111"
LIST_ID_B = "22222222-2222-4222-9222-222222222222"
LIST_ID_C = "33333333-3333-4333-a333-333333333333"
MAILBOX_ID = "AAMkAGI2TAAA="

NOW = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)  # a Monday


class FakeClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def list_source_record(native_id=LIST_ID_A, title="Team Events", **extra) -> dict:
    return {"Id": native_id, "Title": title, "Description": "", "ItemCount": 3, "SiteUrl": SITE, **extra}


def mailbox_source_record(native_id=MAILBOX_ID, name="Calendar", color="lightBlue") -> dict:
    return {
        "id": native_id,
        "name": name,
        "color": color,
        "canEdit": True,
        "canShare": False,
        "owner": {"name": "Alice", "address": "alice@contoso.com"},
    }


def list_item_record(item_id=1, title="Sync", start="2026-03-03T10:00:00Z", end="2026-03-03T11:00:00Z", **extra) -> dict:
    return {
        "ID": item_id,
        "Title": title,
        "Description": "",
        "EventDate": start,
        "EndDate": end,
        "Location": "Room 1",
        "Category": "Meeting",
        "fAllDayEvent": False,
        "fRecurrence": False,
        "Author": {"Title": "Bob"},
        **extra,
    }


def mailbox_event_record(event_id="evt1", subject="Sync", start="2026-03-03T10:00:00", end="2026-03-03T11:00:00", **extra) -> dict:
    return {
        "id": event_id,
        "subject": subject,
        "body": {"content": "<p>Agenda</p>"},
        "start": {"dateTime": start, "timeZone": "UTC"},
        "end": {"dateTime": end, "timeZone": "UTC"},
        "isAllDay": False,
        "recurrence": None,
        "organizer": {"emailAddress": {"name": "Bob", "address": "bob@contoso.com"}},
        "attendees": [],
        "importance": "normal",
        "location": {"displayName": ""},
        "categories": [],
        "webLink": "https://outlook.office365.com/owa/?itemid=evt1",
        **extra,
    }


def make_source(native_id=LIST_ID_A, title="Team Events", kind=BackendKind.LIST, **extra) -> CalendarSource:
    return CalendarSource(
        id=f"{kind.prefix}_{native_id}",
        native_id=native_id,
        title=title,
        backend_kind=kind,
        color="#0078d4",
        site_url=SITE if kind is BackendKind.LIST else "https://outlook.office365.com",
        **extra,
    )


def make_event(event_id="e1", title="Meeting", start=NOW, minutes=60, source_id="sp_x", **extra) -> CalendarEvent:
    return CalendarEvent(
        id=event_id,
        title=title,
        start=start,
        end=start + timedelta(minutes=minutes),
        source_id=source_id,
        **extra,
    )


def make_backend(kind=BackendKind.LIST, sources=None, events=None, search=None, healthy=True) -> MagicMock:
    """A backend double whose coroutines are AsyncMocks."""
    backend = MagicMock()
    backend.kind = kind
    backend.fetch_sources = AsyncMock(return_value=sources or [])
    backend.fetch_events = AsyncMock(return_value=events or [])
    backend.search_events = AsyncMock(return_value=search or {})
    backend.fetch_health = AsyncMock(return_value=healthy)
    return backend


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return CacheStore(clock=clock)


@pytest.fixture
def list_backend():
    return make_backend(
        BackendKind.LIST,
        sources=[list_source_record(), list_source_record(LIST_ID_B, "Holidays")],
        events=[list_item_record()],
    )


@pytest.fixture
def mailbox_backend():
    return make_backend(
        BackendKind.MAILBOX,
        sources=[mailbox_source_record()],
        events=[mailbox_event_record()],
    )


@pytest.fixture
def registry(list_backend, mailbox_backend, cache):
    return SourceRegistry({BackendKind.LIST: list_backend, BackendKind.MAILBOX: mailbox_backend}, cache)


@pytest.fixture
def aggregator(registry, cache):
    return EventAggregator(registry, cache, clock=lambda: NOW)
