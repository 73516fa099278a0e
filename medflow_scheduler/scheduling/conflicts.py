"""
Conflict Detection Service

Detects scheduling conflicts (overlaps) between a candidate interval and a
provider's existing bookings, considering:
- Booking status (cancelled and no-show bookings never block)
- The booking being edited (excluded from its own check)
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional

from medflow_scheduler.models.schemas import Booking

logger = logging.getLogger(__name__)


class ConflictWarning(UserWarning):
    """
    Advisory raised (or emitted via ``warnings.warn``) when a booking
    overlaps existing active bookings.
    """

    def __init__(self, message: str, booking_ids: Optional[List[str]] = None):
        super().__init__(message)
        self.booking_ids = list(booking_ids or [])


@dataclass
class ConflictReport:
    """Result of a conflict check."""

    booking_ids: List[str] = field(default_factory=list)
    bookings: List[Booking] = field(default_factory=list)
    descriptions: List[str] = field(default_factory=list)

    @property
    def has_conflict(self) -> bool:
        return bool(self.booking_ids)


def intervals_overlap(
    a_start: datetime,
    a_end: datetime,
    b_start: datetime,
    b_end: datetime,
) -> bool:
    """Half-open overlap: touching intervals do not overlap."""
    return a_start < b_end and b_start < a_end


def _wall_clock(value: datetime) -> datetime:
    # Bookings hold naive wall-clock times; an aware candidate is read the same way
    return value.replace(tzinfo=None) if value.tzinfo is not None else value


def _overlapping(
    candidate_start: datetime,
    candidate_end: datetime,
    bookings: Iterable[Booking],
    exclude_booking_id: Optional[str],
) -> List[Booking]:
    candidate_start = _wall_clock(candidate_start)
    candidate_end = _wall_clock(candidate_end)
    overlapping = []
    for booking in bookings:
        if not booking.is_active:
            continue
        if exclude_booking_id is not None and booking.id == exclude_booking_id:
            continue
        if intervals_overlap(candidate_start, candidate_end, booking.start, booking.end):
            overlapping.append(booking)
    return overlapping


def find_conflicts(
    candidate_start: datetime,
    candidate_end: datetime,
    bookings: Iterable[Booking],
    exclude_booking_id: Optional[str] = None,
) -> List[str]:
    """
    Find active bookings that overlap a candidate interval.

    Args:
        candidate_start: start of the interval to validate; an aware value
            is compared by its wall-clock time
        candidate_end: end of the interval to validate
        bookings: the provider's bookings
        exclude_booking_id: booking to skip (the one being edited)

    Returns:
        list[str]: ids of overlapping bookings, in input order; empty when
        the candidate is free
    """
    return [
        booking.id
        for booking in _overlapping(candidate_start, candidate_end, bookings, exclude_booking_id)
    ]


def describe_conflict(booking: Booking) -> str:
    """Human-readable line for one conflicting booking."""
    return (
        f"Overlaps {booking.patient_name} "
        f"{booking.start:%Y-%m-%d %H:%M}-{booking.end:%H:%M} ({booking.status.value})"
    )


def check_conflicts(
    candidate_start: datetime,
    candidate_end: datetime,
    bookings: Iterable[Booking],
    exclude_booking_id: Optional[str] = None,
) -> ConflictReport:
    """
    Detect overlaps and describe them for display.

    Args:
        candidate_start: start of the interval to validate
        candidate_end: end of the interval to validate
        bookings: the provider's bookings
        exclude_booking_id: booking to skip (the one being edited)

    Returns:
        ConflictReport: overlapping ids, bookings and descriptions
    """
    overlapping = _overlapping(candidate_start, candidate_end, bookings, exclude_booking_id)

    report = ConflictReport(
        booking_ids=[booking.id for booking in overlapping],
        bookings=overlapping,
        descriptions=[describe_conflict(booking) for booking in overlapping],
    )

    if report.has_conflict:
        logger.debug(
            f"Interval {candidate_start} - {candidate_end} overlaps {report.booking_ids}"
        )

    return report
