"""
Availability Service

Expands a provider's weekly working-hours template into bookable
candidate slots, considering:
- Working days and hours
- Lunch break
- Slot length plus buffer between appointments
- How far ahead bookings are accepted
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional, Tuple

from medflow_scheduler.config import Settings, settings as default_settings
from medflow_scheduler.models.schemas import Booking, WorkingHoursTemplate

logger = logging.getLogger(__name__)

Interval = Tuple[datetime, datetime]


def template_from_settings(config: Optional[Settings] = None) -> WorkingHoursTemplate:
    """Build the default working-hours template from settings."""
    config = config or default_settings
    return WorkingHoursTemplate(
        work_days=list(config.work_days),
        start=config.work_start,
        end=config.work_end,
        lunch_start=config.lunch_start,
        lunch_end=config.lunch_end,
        slot_duration_minutes=config.slot_duration_minutes,
        buffer_minutes=config.buffer_minutes,
        max_advance_booking_days=config.max_advance_booking_days,
    )


def _at(day: date, hhmm: str) -> datetime:
    hours, minutes = (int(part) for part in hhmm.split(":"))
    return datetime.combine(day, time()) + timedelta(hours=hours, minutes=minutes)


def merge_intervals(intervals: Iterable[Interval]) -> List[Interval]:
    """
    Join adjacent or overlapping intervals.

    Args:
        intervals: (start, end) pairs in any order

    Returns:
        list: merged intervals sorted by start
    """
    ordered = sorted(intervals)
    if not ordered:
        return []

    merged = [ordered[0]]
    for start, end in ordered[1:]:
        last_start, last_end = merged[-1]
        if start <= last_end:
            if end > last_end:
                merged[-1] = (last_start, end)
        else:
            merged.append((start, end))

    return merged


def subtract_interval(interval: Interval, block: Interval) -> List[Interval]:
    """
    Remove a blocked span from an interval.

    Returns:
        list: zero, one or two remaining intervals
    """
    start, end = interval
    block_start, block_end = block

    if block_end <= start or block_start >= end:
        return [interval]

    remaining = []
    if block_start > start:
        remaining.append((start, block_start))
    if block_end < end:
        remaining.append((block_end, end))
    return remaining


def working_intervals(template: WorkingHoursTemplate, day: date) -> List[Interval]:
    """
    Get the working intervals of one day.

    Args:
        template: provider's weekly schedule
        day: target date

    Returns:
        list: sorted, merged (start, end) pairs; empty on non-working days
    """
    if day.weekday() not in template.work_days:
        return []

    day_start = _at(day, template.start)
    day_end = _at(day, template.end)
    if day_end <= day_start:
        logger.warning(
            f"Working hours {template.start}-{template.end} are empty on {day}"
        )
        return []

    intervals = [(day_start, day_end)]
    if template.lunch_start and template.lunch_end:
        lunch = (_at(day, template.lunch_start), _at(day, template.lunch_end))
        intervals = [
            piece
            for interval in intervals
            for piece in subtract_interval(interval, lunch)
        ]

    return merge_intervals(intervals)


def candidate_slots(
    template: WorkingHoursTemplate,
    window_start: datetime,
    window_end: datetime,
    duration_minutes: int,
) -> List[datetime]:
    """
    Generate candidate appointment starts inside a time window.

    Starts step ``slot_duration + buffer`` minutes through every working
    interval. A slot is kept when the whole appointment fits inside the
    interval, it starts at or after ``window_start`` and before
    ``window_end``, and it lies within the template's advance-booking limit.

    Args:
        template: provider's weekly schedule
        window_start: earliest acceptable start (usually "now")
        window_end: starts must be strictly before this instant
        duration_minutes: length of the appointment to place

    Returns:
        list[datetime]: chronologically ordered slot starts
    """
    if duration_minutes <= 0 or window_end <= window_start:
        return []

    step = timedelta(minutes=template.slot_duration_minutes + template.buffer_minutes)
    length = timedelta(minutes=duration_minutes)
    advance_limit = window_start + timedelta(days=template.max_advance_booking_days)
    last_start = min(window_end, advance_limit)

    slots = []
    current_day = window_start.date()
    while current_day <= last_start.date():
        for interval_start, interval_end in working_intervals(template, current_day):
            slot_start = interval_start
            while slot_start + length <= interval_end:
                if slot_start >= last_start:
                    break
                if slot_start >= window_start:
                    slots.append(slot_start)
                slot_start += step
        current_day += timedelta(days=1)

    return slots


def is_fully_covered(start: datetime, end: datetime, bookings: Iterable[Booking]) -> bool:
    """
    Check whether active bookings cover every minute of an interval.

    Args:
        start: interval start
        end: interval end
        bookings: bookings of the provider

    Returns:
        bool: True when no free gap remains
    """
    remaining = [(start, end)]
    for booking in bookings:
        if not booking.is_active:
            continue
        remaining = [
            piece
            for interval in remaining
            for piece in subtract_interval(interval, (booking.start, booking.end))
        ]
        if not remaining:
            return True
    return not remaining
