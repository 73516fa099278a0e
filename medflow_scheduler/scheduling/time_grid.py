"""
Time Grid Service

Pure geometry and calendar-cell computations for the calendar views:
- "HH:MM" time-of-day parsing
- Pixel offset/length of an event inside a day column
- Week and month grid dates
- Side-by-side lanes for overlapping events of one day
"""

import calendar
import logging
from datetime import date, timedelta
from typing import Iterable, List, NamedTuple, Sequence

from medflow_scheduler.models.schemas import TIME_OF_DAY_PATTERN, CalendarEvent

logger = logging.getLogger(__name__)


class FormatError(ValueError):
    """Raised when a time-of-day string is malformed."""
    pass


class InvalidRangeError(ValueError):
    """Raised when an event would have zero or negative duration."""
    pass


class SlotGeometry(NamedTuple):
    offset: float
    length: float


class EventLayout(NamedTuple):
    event: CalendarEvent
    offset: float
    length: float
    lane: int
    lane_count: int


def parse_time_of_day(value: str) -> float:
    """
    Convert an "HH:MM" string into a numeric hour of day.

    Args:
        value: time such as "09:30"; "24:00" is accepted as end of day

    Returns:
        float: hour + minute / 60

    Raises:
        FormatError: If the string is not a valid time of day
    """
    if not isinstance(value, str) or not TIME_OF_DAY_PATTERN.match(value.strip()):
        raise FormatError(f"Invalid time of day {value!r}, expected HH:MM")

    hours, minutes = value.strip().split(":")
    return int(hours) + int(minutes) / 60


def slot_geometry(
    start_time: str,
    end_time: str,
    pixels_per_hour: float,
    grid_start_hour: float,
) -> SlotGeometry:
    """
    Compute where an event sits inside a day column.

    Args:
        start_time: event start "HH:MM"
        end_time: event end "HH:MM"
        pixels_per_hour: vertical size of one grid hour
        grid_start_hour: hour shown at the top of the grid

    Returns:
        SlotGeometry: offset from the grid top and length, in pixels

    Raises:
        FormatError: If either time is malformed
        InvalidRangeError: If end is not after start
    """
    start = parse_time_of_day(start_time)
    end = parse_time_of_day(end_time)

    if end <= start:
        raise InvalidRangeError(
            f"End time {end_time} must be after start time {start_time}"
        )

    return SlotGeometry(
        offset=(start - grid_start_hour) * pixels_per_hour,
        length=(end - start) * pixels_per_hour,
    )


def week_start(anchor: date, week_start_day: int = 0) -> date:
    """First date of the week containing ``anchor`` (Monday = 0)."""
    return anchor - timedelta(days=(anchor.weekday() - week_start_day) % 7)


def week_dates(anchor: date, week_start_day: int = 0) -> List[date]:
    """
    Get the 7 dates of the week containing ``anchor``.

    Args:
        anchor: any date in the week
        week_start_day: first weekday of the week, Monday = 0

    Returns:
        list[date]: 7 consecutive dates starting at the week boundary
    """
    first = week_start(anchor, week_start_day)
    return [first + timedelta(days=offset) for offset in range(7)]


def month_cells(anchor: date, week_start_day: int = 0) -> List[date]:
    """
    Get every cell date of the month grid containing ``anchor``.

    The first and last weeks are padded with days of the adjacent months so
    the grid always holds whole weeks.

    Args:
        anchor: any date in the target month
        week_start_day: first weekday of the week, Monday = 0

    Returns:
        list[date]: consecutive dates; length is a multiple of 7
    """
    first_of_month = anchor.replace(day=1)
    days_in_month = calendar.monthrange(anchor.year, anchor.month)[1]
    last_of_month = anchor.replace(day=days_in_month)

    grid_start = week_start(first_of_month, week_start_day)
    week_end_day = (week_start_day + 6) % 7
    grid_end = last_of_month + timedelta(
        days=(week_end_day - last_of_month.weekday()) % 7
    )

    total_days = (grid_end - grid_start).days + 1
    return [grid_start + timedelta(days=offset) for offset in range(total_days)]


def time_slots(start_hour: int = 8, end_hour: int = 18, step_minutes: int = 60) -> List[str]:
    """Row labels for the day grid, e.g. ["08:00", "09:00", ...]."""
    if step_minutes <= 0:
        raise InvalidRangeError("step_minutes must be positive")

    labels = []
    current = start_hour * 60
    while current <= end_hour * 60:
        labels.append(f"{current // 60:02d}:{current % 60:02d}")
        current += step_minutes
    return labels


def day_of_week_index(day: date) -> int:
    """1 = Monday ... 7 = Sunday."""
    return day.isoweekday()


def is_same_month(day: date, anchor: date) -> bool:
    return day.year == anchor.year and day.month == anchor.month


def events_for_date(events: Iterable[CalendarEvent], day: date) -> List[CalendarEvent]:
    return [event for event in events if event.event_date == day]


def sort_events_by_time(events: Iterable[CalendarEvent]) -> List[CalendarEvent]:
    return sorted(events, key=lambda event: (event.start_time.zfill(5), event.end_time.zfill(5)))


def layout_day_events(
    events: Sequence[CalendarEvent],
    pixels_per_hour: float,
    grid_start_hour: float,
) -> List[EventLayout]:
    """
    Lay out one day's events, placing overlapping events in parallel lanes.

    Events that cannot be rendered (malformed or empty time range) are
    skipped and logged; the rest of the day still renders.

    Args:
        events: events of a single day column
        pixels_per_hour: vertical size of one grid hour
        grid_start_hour: hour shown at the top of the grid

    Returns:
        list[EventLayout]: ordered by start time; events in the same
        overlap cluster share ``lane_count``
    """
    placed = []
    for event in events:
        try:
            geometry = slot_geometry(
                event.start_time, event.end_time, pixels_per_hour, grid_start_hour
            )
        except (FormatError, InvalidRangeError) as e:
            logger.warning(f"Skipping event {event.id}: {e}")
            continue
        placed.append((geometry, event))

    placed.sort(key=lambda item: (item[0].offset, -item[0].length))

    layouts: List[EventLayout] = []
    cluster: List[tuple] = []
    cluster_end = None

    def flush() -> None:
        lane_count = max((lane for _, _, lane in cluster), default=-1) + 1
        for geometry, event, lane in cluster:
            layouts.append(
                EventLayout(event, geometry.offset, geometry.length, lane, lane_count)
            )

    for geometry, event in placed:
        bottom = geometry.offset + geometry.length

        # Half-open: an event starting where the cluster ends starts a new cluster
        if cluster and geometry.offset >= cluster_end:
            flush()
            cluster = []
            cluster_end = None

        lane_ends = {}
        for other_geometry, _, lane in cluster:
            other_bottom = other_geometry.offset + other_geometry.length
            lane_ends[lane] = max(lane_ends.get(lane, other_bottom), other_bottom)

        lane = 0
        while lane in lane_ends and lane_ends[lane] > geometry.offset:
            lane += 1

        cluster.append((geometry, event, lane))
        cluster_end = bottom if cluster_end is None else max(cluster_end, bottom)

    if cluster:
        flush()

    return layouts
