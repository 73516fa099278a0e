"""
Scheduling Module Initialization

Pure scheduling logic: calendar geometry, conflict detection, availability,
suggestion ranking and view navigation.
"""

from medflow_scheduler.scheduling.calendar_view import (
    ActionType,
    CalendarViewController,
    ViewAction,
    add_months,
    reduce_view,
    visible_range,
)
from medflow_scheduler.scheduling.conflicts import (
    ConflictReport,
    ConflictWarning,
    check_conflicts,
    find_conflicts,
    intervals_overlap,
)
from medflow_scheduler.scheduling.suggestions import (
    SuggestionRanker,
    confidence_stars,
    filter_suggestions,
    schedule_analytics,
)
from medflow_scheduler.scheduling.time_grid import (
    EventLayout,
    FormatError,
    InvalidRangeError,
    SlotGeometry,
    layout_day_events,
    month_cells,
    parse_time_of_day,
    slot_geometry,
    week_dates,
)

__all__ = [
    "ActionType",
    "CalendarViewController",
    "ConflictReport",
    "ConflictWarning",
    "EventLayout",
    "FormatError",
    "InvalidRangeError",
    "SlotGeometry",
    "SuggestionRanker",
    "ViewAction",
    "add_months",
    "check_conflicts",
    "confidence_stars",
    "filter_suggestions",
    "find_conflicts",
    "intervals_overlap",
    "layout_day_events",
    "month_cells",
    "parse_time_of_day",
    "reduce_view",
    "schedule_analytics",
    "slot_geometry",
    "visible_range",
    "week_dates",
]
