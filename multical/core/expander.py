"""
Multi-Calendar Aggregator — Occurrence Expander.

Turns a base event plus a canonical RecurrencePattern into the concrete
occurrences that fall inside a query window. The result is always a finite
list: callers bound unbounded series with a window and an occurrence cap.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Iterator

from dateutil.relativedelta import FR, MO, SA, SU, TH, TU, WE, relativedelta

from multical.core.recurrence import RecurrenceKind, RecurrencePattern
from multical.data.models import CalendarEvent

logger = logging.getLogger(__name__)

DEFAULT_MAX_OCCURRENCES = 100

# Upper bound on candidates walked before the window is reached, so that a
# daily series anchored decades ago cannot stall a fetch.
MAX_SCAN_STEPS = 20_000

# Indexed Sunday=0 like the canonical grammar.
_RELATIVE_WEEKDAYS = (SU, MO, TU, WE, TH, FR, SA)


def day_index(moment: datetime) -> int:
    """Weekday of ``moment`` with Sunday=0 … Saturday=6."""
    return (moment.weekday() + 1) % 7


def _nth_weekday(moment: datetime, weekday: int, week_of_month: int) -> datetime:
    """Move ``moment`` to the n-th (or last, for -1) ``weekday`` of its month."""
    if week_of_month == -1:
        return moment + relativedelta(day=31, weekday=_RELATIVE_WEEKDAYS[weekday](-1))
    return moment + relativedelta(day=1, weekday=_RELATIVE_WEEKDAYS[weekday](week_of_month))


def next_occurrence(current: datetime, pattern: RecurrencePattern, anchor: datetime) -> datetime:
    """Compute the occurrence that follows ``current``.

    ``anchor`` is the first occurrence of the series; it supplies the
    day-of-month / weekday when the pattern leaves them open.
    """
    kind = pattern.kind
    interval = pattern.interval

    if kind is RecurrenceKind.DAILY:
        return current + timedelta(days=interval)

    if kind is RecurrenceKind.WEEKLY:
        if not pattern.days_of_week:
            return current + timedelta(weeks=interval)
        days = sorted(pattern.days_of_week)
        today = day_index(current)
        later = [d for d in days if d > today]
        if later:
            return current + timedelta(days=later[0] - today)
        return current + timedelta(weeks=interval, days=days[0] - today)

    if kind is RecurrenceKind.MONTHLY:
        if pattern.week_of_month is not None:
            weekday = min(pattern.days_of_week) if pattern.days_of_week else day_index(anchor)
            target = current + relativedelta(months=interval)
            return _nth_weekday(target, weekday, pattern.week_of_month)
        # relativedelta clamps day=31 to the last day of a shorter month
        day = pattern.day_of_month or anchor.day
        return current + relativedelta(months=interval, day=day)

    if kind is RecurrenceKind.YEARLY:
        month = pattern.month_of_year or anchor.month
        if pattern.week_of_month is not None:
            weekday = min(pattern.days_of_week) if pattern.days_of_week else day_index(anchor)
            target = current + relativedelta(years=interval, month=month)
            return _nth_weekday(target, weekday, pattern.week_of_month)
        day = pattern.day_of_month or anchor.day
        return current + relativedelta(years=interval, month=month, day=day)

    if kind is RecurrenceKind.WEEKDAYS:
        nxt = current + timedelta(days=1)
        while day_index(nxt) in (0, 6):
            nxt += timedelta(days=1)
        return nxt

    return current + timedelta(days=interval)


def iter_occurrence_starts(anchor: datetime, pattern: RecurrencePattern) -> Iterator[datetime]:
    """Yield the series start times beginning with ``anchor``.

    The iterator honours the pattern's own end date and occurrence count but is
    otherwise unbounded; it stops early if the pattern fails to advance.
    """
    current = anchor
    produced = 0
    while True:
        if pattern.end_date is not None and current >= pattern.end_date:
            return
        if pattern.occurrence_count is not None and produced >= pattern.occurrence_count:
            return
        yield current
        produced += 1
        nxt = next_occurrence(current, pattern, anchor)
        if nxt <= current:
            logger.warning("Recurrence pattern %s did not advance past %s", pattern.kind.value, current)
            return
        current = nxt


def expand(
    base_event: CalendarEvent,
    pattern: RecurrencePattern,
    window_start: datetime,
    window_end: datetime,
    max_occurrences: int = DEFAULT_MAX_OCCURRENCES,
) -> list[CalendarEvent]:
    """Generate the occurrences of ``base_event`` with start in [window_start, window_end).

    Each occurrence copies the base event, gets the id ``<base id>_recur_<n>``
    where ``n`` is its index in the whole series, and keeps the base duration.
    """
    duration = base_event.end - base_event.start
    occurrences: list[CalendarEvent] = []
    if max_occurrences <= 0 or window_start >= window_end:
        return occurrences

    for index, start in enumerate(iter_occurrence_starts(base_event.start, pattern)):
        if start >= window_end or len(occurrences) >= max_occurrences:
            break
        if start < window_start:
            if index >= MAX_SCAN_STEPS:
                logger.warning(
                    "Gave up scanning series %s after %d candidates before the window",
                    base_event.id,
                    index,
                )
                break
            continue
        occurrences.append(
            replace(
                base_event,
                id=f"{base_event.id}_recur_{index}",
                start=start,
                end=start + duration,
                is_recurring=True,
                master_series_id=base_event.id,
            )
        )

    logger.debug("Expanded %s into %d occurrence(s)", base_event.id, len(occurrences))
    return occurrences
