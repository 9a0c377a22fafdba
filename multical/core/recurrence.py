"""
Multi-Calendar Aggregator — Recurrence Pattern Normalizer.

List backends describe recurrence with an attribute-tagged XML rule; mailbox
backends use a JSON pattern/range pair. Both are parsed into one canonical
RecurrencePattern. Parsing never raises: an unreadable rule yields None and the
caller keeps the event as a single, non-recurring item.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any

from dateutil.parser import isoparse
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from multical.data.models import BackendKind

logger = logging.getLogger(__name__)


class RecurrenceKind(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    WEEKDAYS = "weekdays"
    CUSTOM = "custom"


# Sunday=0 … Saturday=6 throughout the canonical grammar.
DAY_NAMES = ("sunday", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday")
_LIST_DAY_FLAGS = ("su", "mo", "tu", "we", "th", "fr", "sa")

_ORDINALS = {"first": 1, "second": 2, "third": 3, "fourth": 4, "last": -1}

_MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)


class RecurrencePattern(BaseModel):
    """Backend-agnostic recurrence rule.

    At most one of ``end_date`` / ``occurrence_count`` may be set; with neither
    the series is unbounded and expansion must be bounded by a window.
    """

    model_config = ConfigDict(frozen=True)

    kind: RecurrenceKind
    interval: int = 1
    days_of_week: frozenset[int] | None = None
    day_of_month: int | None = None
    week_of_month: int | None = None
    month_of_year: int | None = None
    end_date: datetime | None = None
    occurrence_count: int | None = None

    @field_validator("interval")
    @classmethod
    def _check_interval(cls, v: int) -> int:
        if v < 1:
            raise ValueError("interval must be at least 1")
        return v

    @field_validator("days_of_week")
    @classmethod
    def _check_days(cls, v: frozenset[int] | None) -> frozenset[int] | None:
        if v is None:
            return v
        if any(d < 0 or d > 6 for d in v):
            raise ValueError("days of week must be between 0 (Sunday) and 6 (Saturday)")
        return v or None

    @field_validator("day_of_month")
    @classmethod
    def _check_day_of_month(cls, v: int | None) -> int | None:
        if v is not None and not 1 <= v <= 31:
            raise ValueError("day of month must be between 1 and 31")
        return v

    @field_validator("week_of_month")
    @classmethod
    def _check_week_of_month(cls, v: int | None) -> int | None:
        if v is not None and v not in (1, 2, 3, 4, -1):
            raise ValueError("week of month must be 1-4 or -1 (last)")
        return v

    @field_validator("month_of_year")
    @classmethod
    def _check_month(cls, v: int | None) -> int | None:
        if v is not None and not 1 <= v <= 12:
            raise ValueError("month of year must be between 1 and 12")
        return v

    @field_validator("occurrence_count")
    @classmethod
    def _check_count(cls, v: int | None) -> int | None:
        if v is not None and v < 1:
            raise ValueError("occurrence count must be at least 1")
        return v

    @model_validator(mode="after")
    def _check_termination(self) -> RecurrencePattern:
        if self.end_date is not None and self.occurrence_count is not None:
            raise ValueError("cannot specify both end date and number of occurrences")
        return self

    @property
    def is_bounded(self) -> bool:
        return self.end_date is not None or self.occurrence_count is not None


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def normalize(raw: Any, source_format: BackendKind) -> RecurrencePattern | None:
    """Parse a backend recurrence payload into a canonical pattern.

    Returns None for anything malformed or unrecognized.
    """
    if source_format is BackendKind.LIST:
        return parse_list_recurrence(raw)
    if source_format is BackendKind.MAILBOX:
        return parse_mailbox_recurrence(raw)
    return None


# ---------------------------------------------------------------------------
# List dialect (XML rule)
# ---------------------------------------------------------------------------


def _int_attr(element: ET.Element, name: str, default: int | None = None) -> int | None:
    value = element.get(name)
    if value is None or not value.strip():
        return default
    return int(value)


def _flag(element: ET.Element, name: str) -> bool:
    return (element.get(name) or "").strip().upper() == "TRUE"


def _list_days(element: ET.Element) -> frozenset[int]:
    if _flag(element, "day"):
        return frozenset(range(7))
    days = {i for i, flag in enumerate(_LIST_DAY_FLAGS) if _flag(element, flag)}
    if _flag(element, "weekday"):
        days.update(range(1, 6))
    if _flag(element, "weekend_day"):
        days.update((0, 6))
    return frozenset(days)


def _ordinal(token: str | None) -> int | None:
    if not token:
        return None
    return _ORDINALS.get(token.strip().lower())


def _parse_boundary(value: str) -> datetime:
    parsed = isoparse(value.strip())
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_list_recurrence(recurrence_xml: str | None) -> RecurrencePattern | None:
    """Parse SharePoint-style ``RecurrenceData`` XML."""
    if not recurrence_xml or not isinstance(recurrence_xml, str):
        return None

    try:
        root = ET.fromstring(recurrence_xml.strip())
        rule = root if root.tag == "rule" else root.find("rule")
        if rule is None:
            return None
        repeat = rule.find("repeat")
        if repeat is None or len(repeat) == 0:
            return None

        freq = repeat[0]
        fields: dict[str, Any] = {}

        if freq.tag == "daily":
            if _flag(freq, "weekday"):
                fields["kind"] = RecurrenceKind.WEEKDAYS
            else:
                fields["kind"] = RecurrenceKind.DAILY
                fields["interval"] = _int_attr(freq, "dayFrequency", 1)
        elif freq.tag == "weekly":
            fields["kind"] = RecurrenceKind.WEEKLY
            fields["interval"] = _int_attr(freq, "weekFrequency", 1)
            fields["days_of_week"] = _list_days(freq)
        elif freq.tag == "monthly":
            fields["kind"] = RecurrenceKind.MONTHLY
            fields["interval"] = _int_attr(freq, "monthFrequency", 1)
            fields["day_of_month"] = _int_attr(freq, "day")
        elif freq.tag == "monthlyByDay":
            week = _ordinal(freq.get("weekdayOfMonth"))
            if week is None:
                return None
            fields["kind"] = RecurrenceKind.MONTHLY
            fields["interval"] = _int_attr(freq, "monthFrequency", 1)
            fields["week_of_month"] = week
            fields["days_of_week"] = _list_days(freq)
        elif freq.tag == "yearly":
            fields["kind"] = RecurrenceKind.YEARLY
            fields["interval"] = _int_attr(freq, "yearFrequency", 1)
            fields["month_of_year"] = _int_attr(freq, "month")
            fields["day_of_month"] = _int_attr(freq, "day")
        elif freq.tag == "yearlyByDay":
            week = _ordinal(freq.get("weekdayOfMonth"))
            if week is None:
                return None
            fields["kind"] = RecurrenceKind.YEARLY
            fields["interval"] = _int_attr(freq, "yearFrequency", 1)
            fields["month_of_year"] = _int_attr(freq, "month")
            fields["week_of_month"] = week
            fields["days_of_week"] = _list_days(freq)
        else:
            logger.warning("Unrecognized list recurrence rule <%s>", freq.tag)
            return None

        window_end = rule.find("windowEnd")
        if window_end is not None and (window_end.text or "").strip():
            fields["end_date"] = _parse_boundary(window_end.text)

        instances = rule.find("repeatInstances")
        if instances is not None and (instances.text or "").strip():
            fields["occurrence_count"] = int(instances.text.strip())

        return RecurrencePattern(**fields)
    except (ET.ParseError, ValueError, TypeError, ValidationError) as exc:
        logger.warning("Could not parse list recurrence: %s", exc)
        return None


# ---------------------------------------------------------------------------
# Mailbox dialect (JSON pattern/range)
# ---------------------------------------------------------------------------


def _day_names_to_ints(names: Any) -> frozenset[int]:
    if not names:
        return frozenset()
    lookup = {name: i for i, name in enumerate(DAY_NAMES)}
    return frozenset(
        lookup[n.lower()] for n in names if isinstance(n, str) and n.lower() in lookup
    )


def _range_end(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        # An end date is inclusive of that whole day
        return datetime.combine(value, time.max, tzinfo=timezone.utc)
    text = str(value).strip()
    if len(text) == 10:
        return datetime.combine(date.fromisoformat(text), time.max, tzinfo=timezone.utc)
    return _parse_boundary(text)


def parse_mailbox_recurrence(data: Any) -> RecurrencePattern | None:
    """Parse a Graph-style ``{"pattern": {...}, "range": {...}}`` payload."""
    if not isinstance(data, dict):
        return None
    pattern = data.get("pattern")
    if not isinstance(pattern, dict):
        return None

    try:
        fields: dict[str, Any] = {"interval": int(pattern.get("interval") or 1)}
        ptype = pattern.get("type")

        if ptype == "daily":
            fields["kind"] = RecurrenceKind.DAILY
        elif ptype == "weekly":
            fields["kind"] = RecurrenceKind.WEEKLY
            fields["days_of_week"] = _day_names_to_ints(pattern.get("daysOfWeek"))
        elif ptype == "absoluteMonthly":
            fields["kind"] = RecurrenceKind.MONTHLY
            fields["day_of_month"] = pattern.get("dayOfMonth")
        elif ptype == "relativeMonthly":
            fields["kind"] = RecurrenceKind.MONTHLY
            fields["week_of_month"] = _ordinal(pattern.get("index")) or 1
            fields["days_of_week"] = _day_names_to_ints(pattern.get("daysOfWeek"))
        elif ptype == "absoluteYearly":
            fields["kind"] = RecurrenceKind.YEARLY
            fields["day_of_month"] = pattern.get("dayOfMonth")
            fields["month_of_year"] = pattern.get("month")
        elif ptype == "relativeYearly":
            fields["kind"] = RecurrenceKind.YEARLY
            fields["week_of_month"] = _ordinal(pattern.get("index")) or 1
            fields["days_of_week"] = _day_names_to_ints(pattern.get("daysOfWeek"))
            fields["month_of_year"] = pattern.get("month")
        else:
            logger.warning("Unrecognized mailbox recurrence type %r", ptype)
            return None

        rng = data.get("range")
        if isinstance(rng, dict):
            rtype = rng.get("type")
            if rtype == "endDate" and rng.get("endDate"):
                fields["end_date"] = _range_end(rng["endDate"])
            elif rtype == "numbered" and rng.get("numberOfOccurrences"):
                fields["occurrence_count"] = int(rng["numberOfOccurrences"])

        return RecurrencePattern(**fields)
    except (ValueError, TypeError, ValidationError) as exc:
        logger.warning("Could not parse mailbox recurrence: %s", exc)
        return None


# ---------------------------------------------------------------------------
# Human-readable summary
# ---------------------------------------------------------------------------


def describe(pattern: RecurrencePattern) -> str:
    """Return a short English summary such as "Weekly on Monday, Friday"."""
    n = pattern.interval
    days = ""
    if pattern.days_of_week:
        days = ", ".join(DAY_NAMES[d].capitalize() for d in sorted(pattern.days_of_week))

    if pattern.kind is RecurrenceKind.DAILY:
        text = "Daily" if n == 1 else f"Every {n} days"
    elif pattern.kind is RecurrenceKind.WEEKLY:
        text = "Weekly" if n == 1 else f"Every {n} weeks"
        if days:
            text += f" on {days}"
    elif pattern.kind is RecurrenceKind.MONTHLY:
        text = "Monthly" if n == 1 else f"Every {n} months"
        if pattern.week_of_month and days:
            text += f" on the {_ordinal_name(pattern.week_of_month)} {days}"
        elif pattern.day_of_month:
            text += f" on day {pattern.day_of_month}"
    elif pattern.kind is RecurrenceKind.YEARLY:
        text = "Yearly" if n == 1 else f"Every {n} years"
        if pattern.month_of_year and pattern.day_of_month:
            text += f" on {_MONTH_NAMES[pattern.month_of_year - 1]} {pattern.day_of_month}"
    elif pattern.kind is RecurrenceKind.WEEKDAYS:
        text = "Every weekday (Monday to Friday)"
    else:
        text = "Custom recurrence pattern"

    if pattern.end_date is not None:
        end = pattern.end_date
        text += f" until {_MONTH_NAMES[end.month - 1]} {end.day}, {end.year}"
    elif pattern.occurrence_count is not None:
        count = pattern.occurrence_count
        text += f" for {count} occurrence{'s' if count > 1 else ''}"
    return text


def _ordinal_name(week: int) -> str:
    for name, value in _ORDINALS.items():
        if value == week:
            return name
    return str(week)
