"""Input and record validation shared by the registry and the aggregator."""

from __future__ import annotations

import re
from datetime import datetime, timezone, tzinfo
from urllib.parse import urlparse

from multical.data.models import BackendKind, CalendarEvent, CalendarSource
from multical.ports.calendar_port import ValidationError

GUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
# Graph ids are URL-safe base64 with the odd '=' / '-' / '_'
MAILBOX_ID_RE = re.compile(r"^[A-Za-z0-9+/=_\-]+$")
HEX_COLOR_RE = re.compile(r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$")


def is_valid_guid(value: str | None) -> bool:
    return bool(value) and GUID_RE.match(value.strip()) is not None


def is_valid_url(value: str | None) -> bool:
    if not value:
        return False
    parsed = urlparse(value.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def is_valid_hex_color(value: str | None) -> bool:
    return bool(value) and HEX_COLOR_RE.match(value.strip()) is not None


def is_valid_native_id(native_id: str | None, kind: BackendKind) -> bool:
    if not native_id:
        return False
    if kind is BackendKind.LIST:
        return is_valid_guid(native_id)
    return MAILBOX_ID_RE.match(native_id) is not None


def source_errors(source: CalendarSource) -> list[str]:
    """Return every problem with ``source``; an empty list means it is usable."""
    errors: list[str] = []
    if not source.title or not source.title.strip():
        errors.append("Calendar title is required")
    if not is_valid_native_id(source.native_id, source.backend_kind):
        errors.append(f"Invalid calendar id {source.native_id!r}")
    elif source.id != f"{source.backend_kind.prefix}_{source.native_id}":
        errors.append(f"Composite id {source.id!r} does not match its backend")
    if not is_valid_url(source.site_url):
        errors.append(f"Invalid site URL {source.site_url!r}")
    return errors


def event_errors(event: CalendarEvent) -> list[str]:
    errors: list[str] = []
    if not event.title or not event.title.strip():
        errors.append("Event title is required")
    if event.end < event.start:
        errors.append("Event end is before its start")
    if not event.source_id:
        errors.append("Event has no source")
    return errors


def require_date_range(
    start: datetime, end: datetime, tz: tzinfo = timezone.utc
) -> tuple[datetime, datetime]:
    """Check a query window and return it timezone-aware.

    A naive pair is read as wall-clock time in ``tz``.
    """
    if not isinstance(start, datetime) or not isinstance(end, datetime):
        raise ValidationError("Start and end must be datetimes")
    if (start.tzinfo is None) != (end.tzinfo is None):
        raise ValidationError("Start and end must both be timezone-aware or both naive")
    if start.tzinfo is None:
        start, end = start.replace(tzinfo=tz), end.replace(tzinfo=tz)
    if start >= end:
        raise ValidationError("End date must be after start date")
    return start, end


def require_query(query: str | None) -> str:
    if not isinstance(query, str) or not query.strip():
        raise ValidationError("Search query cannot be empty")
    return query.strip()


def require_positive(name: str, value: int) -> None:
    if not isinstance(value, int) or value < 1:
        raise ValidationError(f"{name} must be a positive integer, got {value!r}")


def require_sources(sources: object) -> list[CalendarSource]:
    if not isinstance(sources, (list, tuple)):
        raise ValidationError("Sources must be a list of CalendarSource")
    for source in sources:
        if not isinstance(source, CalendarSource) or not source.id:
            raise ValidationError(f"Invalid calendar source: {source!r}")
    return list(sources)
