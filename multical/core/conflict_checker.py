"""
Multi-Calendar Aggregator — Event Conflict Checker.

Finds pairs of timed events whose intervals overlap. All-day events never
conflict; they describe a day, not a slot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from itertools import combinations

from multical.data.models import CalendarEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventConflict:
    """Two events that overlap by ``overlap_minutes`` whole minutes."""

    first: CalendarEvent
    second: CalendarEvent
    overlap_minutes: int


def calculate_overlap_minutes(a: CalendarEvent, b: CalendarEvent) -> int:
    """Whole minutes shared by the two intervals, floored at 0."""
    overlap = min(a.end, b.end) - max(a.start, b.start)
    if overlap <= timedelta(0):
        return 0
    return int(overlap // timedelta(minutes=1))


def find_conflicts(events: list[CalendarEvent]) -> list[EventConflict]:
    """Pairwise conflict scan over ``events``.

    Pairs are reported in input order (first appears before second); a pair
    whose overlap rounds down to zero minutes is not a conflict.
    """
    timed = [event for event in events if not event.is_all_day]
    conflicts: list[EventConflict] = []
    for first, second in combinations(timed, 2):
        if first.start < second.end and second.start < first.end:
            minutes = calculate_overlap_minutes(first, second)
            if minutes > 0:
                conflicts.append(EventConflict(first=first, second=second, overlap_minutes=minutes))

    logger.info("Found %d conflict(s) among %d timed event(s)", len(conflicts), len(timed))
    return conflicts
