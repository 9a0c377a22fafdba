"""Mailbox calendar adapter — Exchange calendars via the Microsoft Graph SDK.

All Graph-specific logic lives here. SDK model objects are flattened back
into the Graph JSON shape so the core maps one record format regardless of
how it was fetched.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from kiota_abstractions.base_request_configuration import RequestConfiguration
from msgraph.generated.models.event import Event
from msgraph.generated.users.item.calendars.item.events.events_request_builder import (
    EventsRequestBuilder,
)

from multical.data.models import BackendKind, CalendarSource
from multical.ports.calendar_port import CalendarError

logger = logging.getLogger(__name__)

_EVENT_FIELDS = [
    "id", "subject", "body", "start", "end", "isAllDay", "recurrence", "organizer",
    "attendees", "importance", "location", "categories", "webLink", "seriesMasterId", "type",
]


def _value(item: Any) -> Any:
    """Enum members become their wire value; everything else passes through."""
    return getattr(item, "value", item)


def _iso(item: Any) -> str | None:
    return item.isoformat() if item is not None else None


def _graph_datetime(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")


def _email(address: Any) -> dict:
    if address is None:
        return {}
    return {"name": address.name, "address": address.address}


def _recurrence_to_record(recurrence: Any) -> dict | None:
    if recurrence is None or recurrence.pattern is None:
        return None
    pattern = recurrence.pattern
    record: dict = {
        "pattern": {
            "type": _value(pattern.type),
            "interval": pattern.interval,
            "daysOfWeek": [_value(day) for day in (pattern.days_of_week or [])],
            "dayOfMonth": pattern.day_of_month,
            "month": pattern.month,
            "index": _value(pattern.index),
        }
    }
    rng = recurrence.range
    if rng is not None:
        record["range"] = {
            "type": _value(rng.type),
            "startDate": _iso(rng.start_date),
            "endDate": _iso(rng.end_date),
            "numberOfOccurrences": rng.number_of_occurrences,
        }
    return record


def _event_to_record(event: Event) -> dict:
    """Flatten a Graph Event model into its JSON shape."""
    return {
        "id": event.id or "",
        "subject": event.subject,
        "body": {"content": event.body.content if event.body else ""},
        "start": {
            "dateTime": event.start.date_time if event.start else None,
            "timeZone": event.start.time_zone if event.start else None,
        },
        "end": {
            "dateTime": event.end.date_time if event.end else None,
            "timeZone": event.end.time_zone if event.end else None,
        },
        "isAllDay": bool(event.is_all_day),
        "recurrence": _recurrence_to_record(event.recurrence),
        "organizer": {"emailAddress": _email(event.organizer.email_address if event.organizer else None)},
        "attendees": [
            {
                "emailAddress": _email(attendee.email_address),
                "status": {"response": _value(attendee.status.response) if attendee.status else None},
                "type": _value(attendee.type),
            }
            for attendee in (event.attendees or [])
        ],
        "importance": _value(event.importance),
        "location": {"displayName": event.location.display_name if event.location else ""},
        "categories": list(event.categories or []),
        "webLink": event.web_link,
        "seriesMasterId": event.series_master_id,
        "type": _value(event.type),
    }


def _calendar_to_record(calendar: Any) -> dict:
    return {
        "id": calendar.id,
        "name": calendar.name,
        "color": _value(calendar.color),
        "canEdit": bool(calendar.can_edit),
        "canShare": bool(calendar.can_share),
        "owner": _email(calendar.owner),
    }


class GraphCalendarAdapter:
    """Microsoft 365 mailbox calendars of one user.

    Args:
        client: Authenticated ``GraphServiceClient``; defaults to the shared
            app-only client from ``multical.integrations.ms_auth``.
        mailbox_user: UPN or id of the mailbox owner; empty means ``/me``.
    """

    kind = BackendKind.MAILBOX

    def __init__(self, client: Any = None, mailbox_user: str = "") -> None:
        self._client = client
        self._mailbox_user = mailbox_user

    def _graph(self) -> Any:
        if self._client is None:
            from multical.integrations.ms_auth import get_graph_client

            self._client = get_graph_client()
        return self._client

    def _mailbox(self) -> Any:
        client = self._graph()
        if self._mailbox_user:
            return client.users.by_user_id(self._mailbox_user)
        return client.me

    @staticmethod
    def _events_config(filter_: str | None, top: int) -> Any:
        query_params = EventsRequestBuilder.EventsRequestBuilderGetQueryParameters(
            select=_EVENT_FIELDS,
            filter=filter_,
            top=top,
            orderby=["start/dateTime"],
        )
        config = RequestConfiguration(query_parameters=query_params)
        config.headers.add("Prefer", 'outlook.timezone="UTC"')
        return config

    async def fetch_sources(self) -> list[dict]:
        try:
            result = await self._mailbox().calendars.get()
        except Exception as exc:
            logger.error("Graph API error (calendars): %s", exc)
            raise CalendarError(f"Failed to load mailbox calendars: {exc}") from exc

        records = [_calendar_to_record(calendar) for calendar in (result.value or [])] if result else []
        logger.info("Found %d mailbox calendar(s)", len(records))
        return records

    async def fetch_events(
        self,
        source: CalendarSource,
        window_start: datetime | None = None,
        window_end: datetime | None = None,
        max_events: int = 100,
    ) -> list[dict]:
        filter_ = None
        if window_start is not None and window_end is not None:
            # Series masters are expanded locally, so fetch them regardless of start
            filter_ = (
                f"(start/dateTime ge '{_graph_datetime(window_start)}' and "
                f"start/dateTime lt '{_graph_datetime(window_end)}') or type eq 'seriesMaster'"
            )
        try:
            result = await (
                self._mailbox()
                .calendars.by_calendar_id(source.native_id)
                .events.get(request_configuration=self._events_config(filter_, max_events))
            )
        except Exception as exc:
            logger.error("Graph API error (events of %r): %s", source.title, exc)
            raise CalendarError(f"Failed to load events from {source.title}: {exc}") from exc

        records = [_event_to_record(event) for event in (result.value or [])] if result else []
        logger.info("Fetched %d event(s) from mailbox calendar %r", len(records), source.title)
        return records

    async def search_events(
        self, sources: list[CalendarSource], query: str, max_results: int
    ) -> dict[str, list[dict]]:
        escaped = query.replace("'", "''")
        filter_ = f"contains(subject, '{escaped}')"
        results: dict[str, list[dict]] = {}
        errors: list[str] = []
        for source in sources:
            try:
                result = await (
                    self._mailbox()
                    .calendars.by_calendar_id(source.native_id)
                    .events.get(request_configuration=self._events_config(filter_, max_results))
                )
            except Exception as exc:
                logger.warning("Graph search failed on %r: %s", source.title, exc)
                errors.append(str(exc))
                continue
            results[source.id] = [_event_to_record(event) for event in (result.value or [])] if result else []

        if errors and not results:
            raise CalendarError(f"Mailbox search failed: {errors[0]}")
        return results

    async def fetch_health(self) -> bool:
        try:
            calendar = await self._mailbox().calendar.get()
        except Exception as exc:
            logger.warning("Graph health probe failed: %s", exc)
            return False
        return calendar is not None
