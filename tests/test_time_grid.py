"""Tests for calendar geometry and grid dates."""
import logging
from datetime import date

import pytest

from medflow_scheduler.models.schemas import CalendarEvent
from medflow_scheduler.scheduling.time_grid import (
    FormatError,
    InvalidRangeError,
    day_of_week_index,
    events_for_date,
    is_same_month,
    layout_day_events,
    month_cells,
    parse_time_of_day,
    slot_geometry,
    sort_events_by_time,
    time_slots,
    week_dates,
)


def make_event(event_id: str, start: str, end: str, day: date = date(2024, 3, 4)) -> CalendarEvent:
    return CalendarEvent(
        id=event_id,
        title=f"Patient {event_id}",
        start_time=start,
        end_time=end,
        color="#F59E0B",
        day_of_week=day.isoweekday(),
        event_date=day,
    )


class TestParseTimeOfDay:
    """Test "HH:MM" parsing."""

    @pytest.mark.parametrize("value,expected", [
        ("08:00", 8.0),
        ("09:30", 9.5),
        ("9:15", 9.25),
        ("00:00", 0.0),
        ("23:45", 23.75),
        ("24:00", 24.0),
    ])
    def test_valid_times(self, value, expected):
        """Should convert to hour + minute / 60."""
        assert parse_time_of_day(value) == pytest.approx(expected)

    @pytest.mark.parametrize("value", ["", "9", "25:00", "12:60", "24:30", "ab:cd", "12-30", None])
    def test_malformed_times(self, value):
        """Should raise FormatError for malformed input."""
        with pytest.raises(FormatError):
            parse_time_of_day(value)

    def test_format_error_is_value_error(self):
        with pytest.raises(ValueError):
            parse_time_of_day("noon")


class TestSlotGeometry:
    """Test event placement in a day column."""

    def test_default_grid(self):
        """09:00-10:30 at 80px/hour from 08:00 sits at 80px, 120px tall."""
        geometry = slot_geometry("09:00", "10:30", 80, 8)

        assert geometry.offset == pytest.approx(80)
        assert geometry.length == pytest.approx(120)

    def test_event_before_grid_start_has_negative_offset(self):
        geometry = slot_geometry("07:30", "08:30", 80, 8)

        assert geometry.offset == pytest.approx(-40)
        assert geometry.length == pytest.approx(80)

    def test_end_before_start_rejected(self):
        with pytest.raises(InvalidRangeError):
            slot_geometry("10:00", "09:00", 80, 8)

    def test_zero_length_rejected(self):
        with pytest.raises(InvalidRangeError):
            slot_geometry("10:00", "10:00", 80, 8)

    def test_length_positive_and_offset_increases_with_start(self):
        """For every valid pair, length > 0 and later starts sit lower."""
        times = [f"{h:02d}:{m:02d}" for h in range(0, 24) for m in (0, 15, 30, 45)] + ["24:00"]
        previous_offset = None

        for i, start in enumerate(times[:-1]):
            for end in times[i + 1:]:
                assert slot_geometry(start, end, 80, 8).length > 0

            offset = slot_geometry(start, times[i + 1], 80, 8).offset
            if previous_offset is not None:
                assert offset > previous_offset
            previous_offset = offset


class TestGridDates:
    """Test week and month grids."""

    def test_week_dates_start_monday(self):
        """Thursday 2024-03-07 belongs to the week of Monday 2024-03-04."""
        days = week_dates(date(2024, 3, 7))

        assert days[0] == date(2024, 3, 4)
        assert days[-1] == date(2024, 3, 10)
        assert len(days) == 7

    def test_week_dates_with_sunday_start(self):
        days = week_dates(date(2024, 3, 7), week_start_day=6)

        assert days[0] == date(2024, 3, 3)
        assert days[0].weekday() == 6

    def test_week_dates_on_boundary(self):
        assert week_dates(date(2024, 3, 4))[0] == date(2024, 3, 4)

    @pytest.mark.parametrize("week_start_day", range(7))
    def test_month_cells_complete(self, week_start_day):
        """Grid is whole weeks and contains every date of the month once."""
        for year in (2023, 2024):
            for month in range(1, 13):
                anchor = date(year, month, 15)
                cells = month_cells(anchor, week_start_day)
                in_month = [d for d in cells if d.month == month]

                assert len(cells) % 7 == 0
                assert cells[0].weekday() == week_start_day
                assert len(in_month) == len(set(in_month))
                assert in_month[0] == date(year, month, 1)
                assert len(in_month) == (date(year + month // 12, month % 12 + 1, 1) - date(year, month, 1)).days

    def test_month_cells_february_2021_fits_four_weeks(self):
        """February 2021 starts on a Monday and has 28 days."""
        cells = month_cells(date(2021, 2, 10))

        assert len(cells) == 28
        assert cells[0] == date(2021, 2, 1)

    def test_month_cells_consecutive(self):
        cells = month_cells(date(2024, 2, 29))

        assert all((b - a).days == 1 for a, b in zip(cells, cells[1:]))


class TestHelpers:
    """Test small calendar helpers."""

    def test_time_slots_hourly(self):
        assert time_slots(8, 11) == ["08:00", "09:00", "10:00", "11:00"]

    def test_time_slots_half_hour(self):
        assert time_slots(8, 9, 30) == ["08:00", "08:30", "09:00"]

    def test_time_slots_rejects_zero_step(self):
        with pytest.raises(InvalidRangeError):
            time_slots(8, 9, 0)

    def test_day_of_week_index_sunday_is_seven(self):
        assert day_of_week_index(date(2024, 3, 10)) == 7
        assert day_of_week_index(date(2024, 3, 4)) == 1

    def test_is_same_month(self):
        assert is_same_month(date(2024, 3, 1), date(2024, 3, 31))
        assert not is_same_month(date(2024, 2, 29), date(2024, 3, 1))
        assert not is_same_month(date(2023, 3, 1), date(2024, 3, 1))

    def test_events_for_date_and_sorting(self):
        events = [
            make_event("late", "15:00", "16:00"),
            make_event("other-day", "08:00", "09:00", day=date(2024, 3, 5)),
            make_event("early", "9:00", "10:00"),
        ]

        today = events_for_date(events, date(2024, 3, 4))
        ordered = sort_events_by_time(today)

        assert [e.id for e in ordered] == ["early", "late"]


class TestLayoutDayEvents:
    """Test lanes for overlapping events."""

    def test_non_overlapping_events_share_one_lane(self):
        layouts = layout_day_events(
            [make_event("a", "09:00", "10:00"), make_event("b", "10:00", "11:00")], 80, 8
        )

        assert [(l.event.id, l.lane, l.lane_count) for l in layouts] == [
            ("a", 0, 1),
            ("b", 0, 1),
        ]

    def test_overlapping_events_get_parallel_lanes(self):
        layouts = layout_day_events(
            [
                make_event("a", "09:00", "11:00"),
                make_event("b", "09:30", "10:00"),
                make_event("c", "10:00", "10:30"),
                make_event("d", "12:00", "13:00"),
            ],
            80,
            8,
        )
        by_id = {l.event.id: l for l in layouts}

        assert by_id["a"].lane == 0
        assert by_id["b"].lane == 1
        # "c" starts when "b" ends, so it reuses lane 1
        assert by_id["c"].lane == 1
        assert by_id["a"].lane_count == by_id["b"].lane_count == by_id["c"].lane_count == 2
        assert (by_id["d"].lane, by_id["d"].lane_count) == (0, 1)
        assert by_id["a"].offset == pytest.approx(80)
        assert by_id["a"].length == pytest.approx(160)

    def test_invalid_events_skipped_and_logged(self, caplog):
        """A broken event is dropped; the rest of the day still renders."""
        events = [
            make_event("ok", "09:00", "10:00"),
            make_event("reversed", "11:00", "10:00"),
            make_event("garbled", "9am", "10:00"),
        ]

        with caplog.at_level(logging.WARNING):
            layouts = layout_day_events(events, 80, 8)

        assert [l.event.id for l in layouts] == ["ok"]
        assert "reversed" in caplog.text
        assert "garbled" in caplog.text

    def test_empty_day(self):
        assert layout_day_events([], 80, 8) == []
