"""Tests for calendar view navigation."""
from datetime import date

import pytest

from medflow_scheduler.models.schemas import CalendarViewState, ViewMode
from medflow_scheduler.scheduling.calendar_view import (
    ActionType,
    CalendarViewController,
    ViewAction,
    add_months,
    reduce_view,
    visible_range,
)

TODAY = date(2024, 3, 6)


@pytest.fixture
def controller() -> CalendarViewController:
    return CalendarViewController(today_provider=lambda: TODAY)


class TestAddMonths:
    """Test calendar-month arithmetic."""

    def test_clamps_to_shorter_month(self):
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)

    def test_crosses_year(self):
        assert add_months(date(2024, 12, 15), 1) == date(2025, 1, 15)
        assert add_months(date(2024, 1, 15), -1) == date(2023, 12, 15)

    def test_backwards_clamp(self):
        assert add_months(date(2024, 3, 31), -1) == date(2024, 2, 29)


class TestReduceView:
    """Test the pure transition function."""

    def test_set_view_keeps_anchor(self):
        state = CalendarViewState(anchor=TODAY, mode=ViewMode.WEEK)

        result = reduce_view(state, ViewAction(ActionType.SET_VIEW, mode=ViewMode.MONTH), TODAY)

        assert result == CalendarViewState(anchor=TODAY, mode=ViewMode.MONTH)

    @pytest.mark.parametrize("mode,expected", [
        (ViewMode.DAY, date(2024, 3, 7)),
        (ViewMode.WEEK, date(2024, 3, 13)),
        (ViewMode.MONTH, date(2024, 4, 6)),
    ])
    def test_go_next_is_mode_aware(self, mode, expected):
        state = CalendarViewState(anchor=TODAY, mode=mode)

        assert reduce_view(state, ViewAction(ActionType.GO_NEXT), TODAY).anchor == expected

    def test_jump_to_with_mode(self):
        state = CalendarViewState(anchor=TODAY, mode=ViewMode.MONTH)

        result = reduce_view(
            state, ViewAction(ActionType.JUMP_TO, mode=ViewMode.DAY, target=date(2024, 3, 20)), TODAY
        )

        assert result == CalendarViewState(anchor=date(2024, 3, 20), mode=ViewMode.DAY)

    def test_unchanged_state_is_same_object(self):
        state = CalendarViewState(anchor=TODAY, mode=ViewMode.WEEK)

        assert reduce_view(state, ViewAction(ActionType.GO_TODAY), TODAY) is state

    def test_missing_arguments(self):
        state = CalendarViewState(anchor=TODAY)

        with pytest.raises(ValueError):
            reduce_view(state, ViewAction(ActionType.SET_VIEW), TODAY)
        with pytest.raises(ValueError):
            reduce_view(state, ViewAction(ActionType.JUMP_TO), TODAY)


class TestVisibleRange:
    def test_day(self):
        assert visible_range(CalendarViewState(anchor=TODAY, mode=ViewMode.DAY)) == (TODAY, TODAY)

    def test_week(self):
        assert visible_range(CalendarViewState(anchor=TODAY, mode=ViewMode.WEEK)) == (
            date(2024, 3, 4),
            date(2024, 3, 10),
        )

    def test_month_includes_padding(self):
        first, last = visible_range(CalendarViewState(anchor=TODAY, mode=ViewMode.MONTH))

        assert first == date(2024, 2, 26)
        assert last == date(2024, 3, 31)


class TestCalendarViewController:
    """Test the long-lived controller."""

    def test_initial_state_is_week_of_today(self, controller):
        assert controller.mode == ViewMode.WEEK
        assert controller.anchor == TODAY

    def test_month_next_from_january_31(self, controller):
        """setView(month) then goNext() on 2024-01-31 lands on a valid February date."""
        controller.jump_to(date(2024, 1, 31))
        controller.set_view(ViewMode.MONTH)
        controller.go_next()

        assert controller.anchor == date(2024, 2, 29)
        assert controller.mode == ViewMode.MONTH

    @pytest.mark.parametrize("mode", list(ViewMode))
    def test_today_next_previous_returns_to_today(self, controller, mode):
        controller.set_view(mode)
        controller.jump_to(date(2023, 11, 30))

        controller.go_to_today()
        expected = controller.anchor
        controller.go_next()
        controller.go_previous()

        assert controller.anchor == expected == TODAY

    def test_month_round_trip_from_31st_restores_day(self):
        controller = CalendarViewController(today_provider=lambda: date(2024, 1, 31))
        controller.set_view(ViewMode.MONTH)

        controller.go_to_today()
        controller.go_next()
        assert controller.anchor == date(2024, 2, 29)
        assert controller.state.month_day == 31

        controller.go_previous()

        assert controller.anchor == date(2024, 1, 31)
        assert controller.state == CalendarViewState(anchor=date(2024, 1, 31), mode=ViewMode.MONTH)

    def test_remembered_day_survives_several_short_months(self):
        controller = CalendarViewController(today_provider=lambda: date(2024, 1, 31))
        controller.set_view(ViewMode.MONTH)

        controller.go_next()  # 2024-02-29
        controller.go_next()  # 2024-03-31
        controller.go_next()  # 2024-04-30

        assert controller.anchor == date(2024, 4, 30)
        controller.jump_to(date(2024, 4, 10))
        assert controller.state.month_day is None

    def test_listeners_fire_only_on_range_change(self, controller):
        calls = []
        controller.subscribe(lambda state, span: calls.append((state.mode, span)))

        controller.jump_to(date(2024, 3, 8))  # same week
        assert calls == []

        controller.go_next()
        assert calls == [(ViewMode.WEEK, (date(2024, 3, 11), date(2024, 3, 17)))]

        controller.set_view(ViewMode.WEEK)  # no-op
        assert len(calls) == 1

        controller.set_view(ViewMode.DAY)
        assert len(calls) == 2

    def test_unsubscribe(self, controller):
        calls = []
        unsubscribe = controller.subscribe(lambda state, span: calls.append(span))

        unsubscribe()
        controller.go_next()

        assert calls == []

    def test_custom_week_start(self):
        controller = CalendarViewController(today_provider=lambda: TODAY, week_start_day=6)

        assert controller.visible_range() == (date(2024, 3, 3), date(2024, 3, 9))
