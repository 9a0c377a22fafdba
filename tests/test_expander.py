"""Tests for multical.core.expander — occurrence generation inside a window."""

from datetime import datetime, timedelta, timezone

import pytest

from multical.core.expander import day_index, expand, iter_occurrence_starts, next_occurrence
from multical.core.recurrence import RecurrenceKind, RecurrencePattern
from multical.data.models import CalendarEvent

UTC = timezone.utc


def _base(start: datetime, minutes: int = 30) -> CalendarEvent:
    return CalendarEvent(
        id="sp_list_7",
        title="Standup",
        start=start,
        end=start + timedelta(minutes=minutes),
        source_id="sp_list",
        organizer="Bob",
    )


# ---------------------------------------------------------------------------
# Tests for next_occurrence
# ---------------------------------------------------------------------------


class TestNextOccurrence:
    def test_daily_interval(self):
        anchor = datetime(2026, 1, 1, 9, tzinfo=UTC)
        pattern = RecurrencePattern(kind=RecurrenceKind.DAILY, interval=3)
        assert next_occurrence(anchor, pattern, anchor) == datetime(2026, 1, 4, 9, tzinfo=UTC)

    def test_weekly_moves_to_next_listed_day(self):
        monday = datetime(2026, 3, 2, 9, tzinfo=UTC)
        pattern = RecurrencePattern(kind=RecurrenceKind.WEEKLY, days_of_week=[1, 3, 5])
        assert next_occurrence(monday, pattern, monday) == datetime(2026, 3, 4, 9, tzinfo=UTC)

    def test_weekly_wraps_by_interval(self):
        friday = datetime(2026, 3, 6, 9, tzinfo=UTC)
        pattern = RecurrencePattern(kind=RecurrenceKind.WEEKLY, interval=2, days_of_week=[1, 5])
        # Last listed day of the week: jump two weeks ahead to the first listed day
        assert next_occurrence(friday, pattern, friday) == datetime(2026, 3, 16, 9, tzinfo=UTC)

    def test_monthly_day_31_clamps_to_end_of_february(self):
        jan31 = datetime(2026, 1, 31, 9, tzinfo=UTC)
        pattern = RecurrencePattern(kind=RecurrenceKind.MONTHLY, day_of_month=31)
        assert next_occurrence(jan31, pattern, jan31) == datetime(2026, 2, 28, 9, tzinfo=UTC)

    def test_monthly_returns_to_day_31_after_short_month(self):
        jan31 = datetime(2026, 1, 31, 9, tzinfo=UTC)
        pattern = RecurrencePattern(kind=RecurrenceKind.MONTHLY, day_of_month=31)
        feb28 = next_occurrence(jan31, pattern, jan31)
        assert next_occurrence(feb28, pattern, jan31) == datetime(2026, 3, 31, 9, tzinfo=UTC)

    def test_monthly_leap_year(self):
        jan31 = datetime(2028, 1, 31, 9, tzinfo=UTC)
        pattern = RecurrencePattern(kind=RecurrenceKind.MONTHLY, day_of_month=31)
        assert next_occurrence(jan31, pattern, jan31) == datetime(2028, 2, 29, 9, tzinfo=UTC)

    def test_monthly_without_day_keeps_anchor_day(self):
        anchor = datetime(2026, 1, 15, 9, tzinfo=UTC)
        pattern = RecurrencePattern(kind=RecurrenceKind.MONTHLY, interval=2)
        assert next_occurrence(anchor, pattern, anchor) == datetime(2026, 3, 15, 9, tzinfo=UTC)

    def test_monthly_second_tuesday(self):
        anchor = datetime(2026, 1, 13, 9, tzinfo=UTC)  # second Tuesday of January
        pattern = RecurrencePattern(kind=RecurrenceKind.MONTHLY, week_of_month=2, days_of_week=[2])
        assert next_occurrence(anchor, pattern, anchor) == datetime(2026, 2, 10, 9, tzinfo=UTC)

    def test_monthly_last_friday(self):
        anchor = datetime(2026, 1, 30, 9, tzinfo=UTC)
        pattern = RecurrencePattern(kind=RecurrenceKind.MONTHLY, week_of_month=-1, days_of_week=[5])
        assert next_occurrence(anchor, pattern, anchor) == datetime(2026, 2, 27, 9, tzinfo=UTC)

    def test_yearly_fixed_date(self):
        anchor = datetime(2026, 7, 4, 12, tzinfo=UTC)
        pattern = RecurrencePattern(kind=RecurrenceKind.YEARLY, month_of_year=7, day_of_month=4)
        assert next_occurrence(anchor, pattern, anchor) == datetime(2027, 7, 4, 12, tzinfo=UTC)

    def test_yearly_feb_29_clamps(self):
        anchor = datetime(2028, 2, 29, 12, tzinfo=UTC)
        pattern = RecurrencePattern(kind=RecurrenceKind.YEARLY)
        assert next_occurrence(anchor, pattern, anchor) == datetime(2029, 2, 28, 12, tzinfo=UTC)

    def test_weekdays_skip_weekend(self):
        friday = datetime(2026, 3, 6, 9, tzinfo=UTC)
        pattern = RecurrencePattern(kind=RecurrenceKind.WEEKDAYS)
        assert next_occurrence(friday, pattern, friday) == datetime(2026, 3, 9, 9, tzinfo=UTC)

    def test_day_index_sunday_is_zero(self):
        assert day_index(datetime(2026, 3, 1, tzinfo=UTC)) == 0
        assert day_index(datetime(2026, 3, 7, tzinfo=UTC)) == 6


# ---------------------------------------------------------------------------
# Tests for iter_occurrence_starts
# ---------------------------------------------------------------------------


class TestIterOccurrenceStarts:
    def test_occurrence_count_bounds_series(self):
        anchor = datetime(2026, 1, 1, 9, tzinfo=UTC)
        pattern = RecurrencePattern(kind=RecurrenceKind.DAILY, occurrence_count=3)
        assert len(list(iter_occurrence_starts(anchor, pattern))) == 3

    def test_end_date_bounds_series(self):
        anchor = datetime(2026, 1, 1, 9, tzinfo=UTC)
        pattern = RecurrencePattern(
            kind=RecurrenceKind.DAILY, end_date=datetime(2026, 1, 4, 9, tzinfo=UTC)
        )
        starts = list(iter_occurrence_starts(anchor, pattern))
        assert [s.day for s in starts] == [1, 2, 3]


# ---------------------------------------------------------------------------
# Tests for expand
# ---------------------------------------------------------------------------


class TestExpand:
    def test_mon_wed_fri_over_two_weeks(self):
        monday = datetime(2026, 3, 2, 9, tzinfo=UTC)
        pattern = RecurrencePattern(kind=RecurrenceKind.WEEKLY, interval=1, days_of_week=[1, 3, 5])
        occurrences = expand(_base(monday), pattern, monday, monday + timedelta(days=14))

        assert len(occurrences) == 6
        assert {day_index(o.start) for o in occurrences} == {1, 3, 5}

    def test_monthly_31_through_february(self):
        jan31 = datetime(2026, 1, 31, 9, tzinfo=UTC)
        pattern = RecurrencePattern(kind=RecurrenceKind.MONTHLY, day_of_month=31)
        occurrences = expand(_base(jan31), pattern, jan31, datetime(2026, 3, 1, tzinfo=UTC))

        assert [o.start.date().isoformat() for o in occurrences] == ["2026-01-31", "2026-02-28"]

    def test_window_containment(self):
        anchor = datetime(2026, 1, 1, 9, tzinfo=UTC)
        pattern = RecurrencePattern(kind=RecurrenceKind.DAILY)
        window_start = datetime(2026, 1, 10, tzinfo=UTC)
        window_end = datetime(2026, 1, 20, tzinfo=UTC)
        occurrences = expand(_base(anchor), pattern, window_start, window_end)

        assert len(occurrences) == 10
        assert all(window_start <= o.start < window_end for o in occurrences)

    def test_occurrences_copy_base_and_link_back(self):
        anchor = datetime(2026, 1, 1, 9, tzinfo=UTC)
        pattern = RecurrencePattern(kind=RecurrenceKind.DAILY)
        occurrences = expand(_base(anchor, minutes=45), pattern, anchor, anchor + timedelta(days=2))

        assert [o.id for o in occurrences] == ["sp_list_7_recur_0", "sp_list_7_recur_1"]
        assert all(o.master_series_id == "sp_list_7" for o in occurrences)
        assert all(o.is_recurring for o in occurrences)
        assert all(o.duration_minutes == 45 for o in occurrences)
        assert all(o.title == "Standup" and o.organizer == "Bob" for o in occurrences)

    def test_ids_are_stable_across_windows(self):
        anchor = datetime(2026, 1, 1, 9, tzinfo=UTC)
        pattern = RecurrencePattern(kind=RecurrenceKind.DAILY)
        later = expand(_base(anchor), pattern, datetime(2026, 1, 5, tzinfo=UTC), datetime(2026, 1, 6, tzinfo=UTC))
        assert [o.id for o in later] == ["sp_list_7_recur_4"]

    def test_count_includes_occurrences_before_window(self):
        anchor = datetime(2026, 1, 1, 9, tzinfo=UTC)
        pattern = RecurrencePattern(kind=RecurrenceKind.DAILY, occurrence_count=5)
        occurrences = expand(
            _base(anchor), pattern, datetime(2026, 1, 4, tzinfo=UTC), datetime(2026, 2, 1, tzinfo=UTC)
        )
        assert [o.start.day for o in occurrences] == [4, 5]

    def test_max_occurrences_caps_unbounded_series(self):
        anchor = datetime(2026, 1, 1, 9, tzinfo=UTC)
        pattern = RecurrencePattern(kind=RecurrenceKind.DAILY)
        occurrences = expand(_base(anchor), pattern, anchor, anchor + timedelta(days=365), max_occurrences=10)
        assert len(occurrences) == 10

    @pytest.mark.parametrize("max_occurrences", [0, -1])
    def test_non_positive_cap_yields_nothing(self, max_occurrences):
        anchor = datetime(2026, 1, 1, 9, tzinfo=UTC)
        pattern = RecurrencePattern(kind=RecurrenceKind.DAILY)
        assert expand(_base(anchor), pattern, anchor, anchor + timedelta(days=3), max_occurrences) == []

    def test_empty_window_yields_nothing(self):
        anchor = datetime(2026, 1, 1, 9, tzinfo=UTC)
        pattern = RecurrencePattern(kind=RecurrenceKind.DAILY)
        assert expand(_base(anchor), pattern, anchor, anchor) == []
