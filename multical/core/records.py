"""
Multi-Calendar Aggregator — Raw record mapping.

Adapters hand back backend records untouched. This module turns them into
CalendarSource / CalendarEvent values, synthesizing the composite ids, and
routes recurring records through the normalizer and the expander.
"""

from __future__ import annotations

import html
import logging
import re
from dataclasses import replace
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil.parser import isoparse

from multical.core.colors import mailbox_color
from multical.core.expander import DEFAULT_MAX_OCCURRENCES, expand
from multical.core.recurrence import normalize
from multical.data.models import (
    Attendee,
    BackendKind,
    CalendarEvent,
    CalendarSource,
    Importance,
)

logger = logging.getLogger(__name__)

MAILBOX_SITE_URL = "https://outlook.office365.com"
_TAG_RE = re.compile(r"<[^>]*>")


def resolve_timezone(tz_name: str | None) -> tzinfo:
    """Time zone for an IANA name; blank, "UTC" and unknown names give UTC."""
    if not tz_name or tz_name.strip().upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(tz_name.strip())
    except (ZoneInfoNotFoundError, ValueError):
        logger.debug("Unknown time zone %r, assuming UTC", tz_name)
        return timezone.utc


def parse_datetime(value: Any, tz_name: str | None = None) -> datetime:
    """Parse an ISO timestamp; naive values are placed in ``tz_name`` (default UTC)."""
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = isoparse(str(value).strip())
    if parsed.tzinfo is not None:
        return parsed
    return parsed.replace(tzinfo=resolve_timezone(tz_name))


def html_to_text(content: str) -> str:
    if not content:
        return ""
    return html.unescape(_TAG_RE.sub("", content)).replace("\xa0", " ").strip()


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


def map_list_source(raw: dict) -> CalendarSource:
    native_id = str(raw.get("Id") or "").strip()
    site_url = str(raw.get("SiteUrl") or "").rstrip("/")
    return CalendarSource(
        id=f"{BackendKind.LIST.prefix}_{native_id}",
        native_id=native_id,
        title=str(raw.get("Title") or "").strip(),
        backend_kind=BackendKind.LIST,
        color=str(raw.get("Color") or ""),
        is_enabled=raw.get("IsEnabled", True) is not False,
        can_edit=bool(raw.get("CanEdit", True)),
        can_share=bool(raw.get("CanShare", True)),
        item_count=raw.get("ItemCount"),
        site_url=site_url,
        description=str(raw.get("Description") or ""),
    )


def map_mailbox_source(raw: dict) -> CalendarSource:
    native_id = str(raw.get("id") or "").strip()
    owner = (raw.get("owner") or {}).get("name")
    return CalendarSource(
        id=f"{BackendKind.MAILBOX.prefix}_{native_id}",
        native_id=native_id,
        title=str(raw.get("name") or "").strip(),
        backend_kind=BackendKind.MAILBOX,
        color=mailbox_color(raw.get("color")) or "",
        is_enabled=raw.get("isEnabled", True) is not False,
        can_edit=bool(raw.get("canEdit", False)),
        can_share=bool(raw.get("canShare", False)),
        site_url=MAILBOX_SITE_URL,
        description=f"Personal calendar ({owner})" if owner else "Personal calendar",
    )


def map_source(raw: dict, kind: BackendKind) -> CalendarSource:
    if kind is BackendKind.LIST:
        return map_list_source(raw)
    return map_mailbox_source(raw)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


def map_list_item(raw: dict, source: CalendarSource) -> CalendarEvent:
    start = parse_datetime(raw["EventDate"])
    end = parse_datetime(raw["EndDate"]) if raw.get("EndDate") else start
    if raw.get("fRecurrence"):
        # Recurring list items store the series end in EndDate and the
        # per-occurrence length (seconds) in Duration.
        if raw.get("Duration") is not None:
            end = start + timedelta(seconds=int(raw["Duration"]))
        elif end - start > timedelta(days=1):
            end = start
    item_id = raw.get("ID", raw.get("Id"))
    author = raw.get("Author") or {}
    list_path = re.sub(r"\s+", "", source.title)
    return CalendarEvent(
        id=f"{BackendKind.LIST.prefix}_{source.native_id}_{item_id}",
        title=str(raw.get("Title") or "Untitled Event"),
        description=html_to_text(str(raw.get("Description") or "")),
        start=start,
        end=end,
        is_all_day=bool(raw.get("fAllDayEvent")),
        is_recurring=bool(raw.get("fRecurrence")),
        source_id=source.id,
        organizer=str(author.get("Title") or "Unknown"),
        color=source.color,
        location=str(raw.get("Location") or ""),
        category=str(raw.get("Category") or ""),
        web_url=f"{source.site_url}/Lists/{list_path}/DispForm.aspx?ID={item_id}",
    )


def _map_attendees(raw: list | None) -> tuple[Attendee, ...]:
    attendees = []
    for item in raw or []:
        address = item.get("emailAddress") or {}
        attendees.append(
            Attendee(
                name=str(address.get("name") or ""),
                email=str(address.get("address") or ""),
                response=str((item.get("status") or {}).get("response") or "none"),
                type=str(item.get("type") or "required"),
            )
        )
    return tuple(attendees)


def map_mailbox_event(raw: dict, source: CalendarSource) -> CalendarEvent:
    start_raw = raw.get("start") or {}
    end_raw = raw.get("end") or {}
    start = parse_datetime(start_raw["dateTime"], start_raw.get("timeZone"))
    end = parse_datetime(end_raw["dateTime"], end_raw.get("timeZone")) if end_raw.get("dateTime") else start
    organizer = ((raw.get("organizer") or {}).get("emailAddress") or {}).get("name")
    series_master = raw.get("seriesMasterId")
    return CalendarEvent(
        id=f"{BackendKind.MAILBOX.prefix}_{source.native_id}_{raw['id']}",
        title=str(raw.get("subject") or "Untitled Event"),
        description=html_to_text(str((raw.get("body") or {}).get("content") or "")),
        start=start,
        end=end,
        is_all_day=bool(raw.get("isAllDay")),
        is_recurring=bool(raw.get("recurrence")) or bool(series_master),
        source_id=source.id,
        organizer=str(organizer or "Unknown"),
        attendees=_map_attendees(raw.get("attendees")),
        importance=Importance.parse(raw.get("importance")),
        color=source.color,
        location=str((raw.get("location") or {}).get("displayName") or ""),
        category=", ".join(raw.get("categories") or []),
        web_url=str(raw.get("webLink") or MAILBOX_SITE_URL + "/calendar"),
        master_series_id=(
            f"{BackendKind.MAILBOX.prefix}_{source.native_id}_{series_master}" if series_master else None
        ),
    )


def _raw_recurrence(raw: dict, kind: BackendKind) -> Any:
    if kind is BackendKind.LIST:
        return raw.get("RecurrenceData") if raw.get("fRecurrence") else None
    return raw.get("recurrence")


def build_events(
    raw: dict,
    source: CalendarSource,
    window_start: datetime | None = None,
    window_end: datetime | None = None,
    max_occurrences: int = DEFAULT_MAX_OCCURRENCES,
) -> list[CalendarEvent]:
    """Map one raw record into events, expanding recurring series in the window.

    Without a window the base event is returned as-is. A recurrence rule that
    cannot be normalized degrades the record to a single non-recurring event.
    """
    kind = source.backend_kind
    base = map_list_item(raw, source) if kind is BackendKind.LIST else map_mailbox_event(raw, source)

    recurrence = _raw_recurrence(raw, kind)
    if not recurrence or window_start is None or window_end is None:
        return [base]

    pattern = normalize(recurrence, kind)
    if pattern is None:
        logger.info("Treating %s as non-recurring: unreadable recurrence", base.id)
        return [replace(base, is_recurring=False)]

    return expand(base, pattern, window_start, window_end, max_occurrences)
