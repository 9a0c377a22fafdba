"""
Multi-Calendar Aggregator — Data Models.

Sources and events are value types: they are built once from backend records
and never mutated afterwards. Cached lists hand out the same instances to every
caller, so any "change" goes through dataclasses.replace().
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class BackendKind(Enum):
    """The two families of calendar backends the aggregator understands."""

    LIST = "list"          # SharePoint-style calendar lists
    MAILBOX = "mailbox"    # Exchange / Graph mailbox calendars

    @property
    def prefix(self) -> str:
        return "sp" if self is BackendKind.LIST else "ex"


class Importance(Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"

    @classmethod
    def parse(cls, value: str | None) -> Importance:
        if not value:
            return cls.NORMAL
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.NORMAL


@dataclass(frozen=True)
class CalendarSource:
    """One addressable calendar container (a list or a mailbox calendar).

    ``id`` is the composite ``<prefix>_<native_id>`` so that it stays unique
    once sources from different backends are merged.
    """

    id: str
    native_id: str
    title: str
    backend_kind: BackendKind
    color: str = ""
    is_enabled: bool = True
    can_edit: bool = False
    can_share: bool = False
    item_count: int | None = None
    site_url: str = ""
    description: str = ""


@dataclass(frozen=True)
class Attendee:
    name: str
    email: str
    response: str = "none"
    type: str = "required"


@dataclass(frozen=True)
class CalendarEvent:
    """A concrete, dated calendar entry.

    Generated occurrences of a recurring series carry ``master_series_id``
    pointing at the base event id; it is a plain reference, nothing more.
    """

    id: str
    title: str
    start: datetime
    end: datetime
    source_id: str
    description: str = ""
    is_all_day: bool = False
    is_recurring: bool = False
    organizer: str = ""
    attendees: tuple[Attendee, ...] = field(default_factory=tuple)
    importance: Importance = Importance.NORMAL
    color: str = ""
    location: str = ""
    category: str = ""
    web_url: str = ""
    master_series_id: str | None = None

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)


@dataclass(frozen=True)
class SourceFailure:
    """A work unit that failed during fan-out. Reported, never raised."""

    source_id: str
    title: str
    error: str


@dataclass
class AggregateResult:
    """Merged events of one aggregate call plus the per-source failures."""

    events: list[CalendarEvent] = field(default_factory=list)
    failures: list[SourceFailure] = field(default_factory=list)
    from_cache: bool = False
