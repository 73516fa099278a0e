"""
Calendar View Controller

State machine over {day, week, month} x anchor date. Navigation is
mode-aware: day mode steps one day, week mode seven days and month mode one
calendar month (day-of-month clamped to the target month's length, with the
requested day remembered so stepping back restores it).

The transitions live in a pure reducer, ``reduce_view``; the controller
holds the current state and notifies listeners when the visible date range
changes, which is the trigger for re-fetching bookings.
"""

import calendar
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Callable, List, Optional, Tuple

from medflow_scheduler.models.schemas import CalendarViewState, ViewMode
from medflow_scheduler.scheduling.time_grid import month_cells, week_dates

logger = logging.getLogger(__name__)

DateRange = Tuple[date, date]
RangeListener = Callable[[CalendarViewState, DateRange], None]


class ActionType(str, Enum):
    """Navigation actions."""
    SET_VIEW = "set_view"
    GO_TODAY = "go_today"
    GO_PREVIOUS = "go_previous"
    GO_NEXT = "go_next"
    JUMP_TO = "jump_to"


@dataclass(frozen=True)
class ViewAction:
    type: ActionType
    mode: Optional[ViewMode] = None
    target: Optional[date] = None


def add_months(day: date, months: int, day_of_month: Optional[int] = None) -> date:
    """
    Shift a date by whole calendar months.

    The day of month is clamped to the target month's length, so
    2024-01-31 + 1 month is 2024-02-29.

    Args:
        day: date to shift
        months: number of months, negative to go back
        day_of_month: day to aim for instead of ``day.day``
    """
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day_of_month or day.day, last_day))


def _step(state: CalendarViewState, direction: int) -> CalendarViewState:
    if state.mode == ViewMode.DAY:
        return CalendarViewState(anchor=state.anchor + timedelta(days=direction), mode=state.mode)
    if state.mode == ViewMode.WEEK:
        return CalendarViewState(anchor=state.anchor + timedelta(days=7 * direction), mode=state.mode)

    wanted = state.month_day or state.anchor.day
    anchor = add_months(state.anchor, direction, wanted)
    return CalendarViewState(
        anchor=anchor,
        mode=state.mode,
        month_day=wanted if anchor.day != wanted else None,
    )


def reduce_view(state: CalendarViewState, action: ViewAction, today: date) -> CalendarViewState:
    """
    Apply one navigation action.

    Args:
        state: current view state
        action: transition to apply
        today: the current date, used by GO_TODAY

    Returns:
        CalendarViewState: the next state (``state`` itself when unchanged)

    Raises:
        ValueError: If the action lacks its mode or target
    """
    if action.type == ActionType.SET_VIEW:
        if action.mode is None:
            raise ValueError("set_view requires a mode")
        mode = ViewMode(action.mode)
        next_state = CalendarViewState(
            anchor=state.anchor,
            mode=mode,
            month_day=state.month_day if mode == state.mode else None,
        )
    elif action.type == ActionType.GO_TODAY:
        next_state = CalendarViewState(anchor=today, mode=state.mode)
    elif action.type == ActionType.GO_PREVIOUS:
        next_state = _step(state, -1)
    elif action.type == ActionType.GO_NEXT:
        next_state = _step(state, 1)
    elif action.type == ActionType.JUMP_TO:
        if action.target is None:
            raise ValueError("jump_to requires a target date")
        next_state = CalendarViewState(
            anchor=action.target,
            mode=ViewMode(action.mode) if action.mode is not None else state.mode,
        )
    else:
        raise ValueError(f"Unknown view action: {action.type}")

    return state if next_state == state else next_state


def visible_range(state: CalendarViewState, week_start_day: int = 0) -> DateRange:
    """
    Inclusive date span shown by a view state.

    Day view shows the anchor, week view its week and month view the padded
    month grid (leading and trailing days of adjacent months included).
    """
    if state.mode == ViewMode.DAY:
        return state.anchor, state.anchor
    if state.mode == ViewMode.WEEK:
        days = week_dates(state.anchor, week_start_day)
    else:
        days = month_cells(state.anchor, week_start_day)
    return days[0], days[-1]


class CalendarViewController:
    """
    Long-lived holder of the calendar view state.

    Example:
        >>> controller = CalendarViewController(today_provider=date.today)
        >>> controller.subscribe(lambda state, span: print(span))
        >>> controller.set_view(ViewMode.MONTH)
    """

    def __init__(
        self,
        today_provider: Callable[[], date] = date.today,
        week_start_day: int = 0,
        initial_state: Optional[CalendarViewState] = None,
    ):
        self._today = today_provider
        self.week_start_day = week_start_day
        self._state = initial_state or CalendarViewState(anchor=today_provider(), mode=ViewMode.WEEK)
        self._listeners: List[RangeListener] = []

    @property
    def state(self) -> CalendarViewState:
        return self._state

    @property
    def anchor(self) -> date:
        return self._state.anchor

    @property
    def mode(self) -> ViewMode:
        return self._state.mode

    def visible_range(self) -> DateRange:
        return visible_range(self._state, self.week_start_day)

    def subscribe(self, listener: RangeListener) -> Callable[[], None]:
        """
        Register a listener called when the visible range changes.

        Returns:
            Callable: unsubscribes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dispatch(self, action: ViewAction) -> CalendarViewState:
        previous_range = self.visible_range()
        self._state = reduce_view(self._state, action, self._today())
        current_range = self.visible_range()

        if current_range != previous_range:
            logger.debug(
                f"Visible range {previous_range[0]}..{previous_range[1]} -> "
                f"{current_range[0]}..{current_range[1]} ({self._state.mode.value})"
            )
            for listener in list(self._listeners):
                listener(self._state, current_range)

        return self._state

    def set_view(self, mode: ViewMode) -> CalendarViewState:
        return self.dispatch(ViewAction(ActionType.SET_VIEW, mode=mode))

    def go_to_today(self) -> CalendarViewState:
        return self.dispatch(ViewAction(ActionType.GO_TODAY))

    def go_previous(self) -> CalendarViewState:
        return self.dispatch(ViewAction(ActionType.GO_PREVIOUS))

    def go_next(self) -> CalendarViewState:
        return self.dispatch(ViewAction(ActionType.GO_NEXT))

    def jump_to(self, target: date, mode: Optional[ViewMode] = None) -> CalendarViewState:
        """Move the anchor to ``target``; optionally switch mode in the same step."""
        return self.dispatch(ViewAction(ActionType.JUMP_TO, mode=mode, target=target))
