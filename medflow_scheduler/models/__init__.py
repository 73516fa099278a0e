"""
Models Module Initialization

Exports booking, calendar and suggestion schemas.
"""

from medflow_scheduler.models.schemas import (
    ACTIVE_STATUSES,
    STATUS_COLORS,
    AppointmentSuggestion,
    Booking,
    BookingDraft,
    BookingStatus,
    BookingUpdate,
    CalendarEvent,
    CalendarViewState,
    Priority,
    SuggestionPreferences,
    SuggestionScores,
    ViewMode,
    WorkingHoursTemplate,
)

__all__ = [
    "ACTIVE_STATUSES",
    "STATUS_COLORS",
    "AppointmentSuggestion",
    "Booking",
    "BookingDraft",
    "BookingStatus",
    "BookingUpdate",
    "CalendarEvent",
    "CalendarViewState",
    "Priority",
    "SuggestionPreferences",
    "SuggestionScores",
    "ViewMode",
    "WorkingHoursTemplate",
]
