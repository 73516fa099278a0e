"""
Calendar Service

Business logic behind the scheduling calendar. Composes view navigation,
the appointment store, optimistic updates, conflict checks and slot
suggestions, and reports every outcome as a user-facing result dictionary.
"""

import asyncio
import itertools
import logging
import warnings
from datetime import date, datetime, time, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from medflow_scheduler.config import Settings, settings as default_settings
from medflow_scheduler.models.schemas import (
    AppointmentSuggestion,
    Booking,
    CalendarEvent,
    SuggestionPreferences,
    ViewMode,
    WorkingHoursTemplate,
)
from medflow_scheduler.scheduling.calendar_view import CalendarViewController
from medflow_scheduler.scheduling.conflicts import (
    ConflictReport,
    ConflictWarning,
    check_conflicts,
)
from medflow_scheduler.scheduling.suggestions import SuggestionRanker
from medflow_scheduler.scheduling.time_grid import (
    EventLayout,
    events_for_date,
    layout_day_events,
    sort_events_by_time,
)
from medflow_scheduler.services.optimistic import (
    OptimisticBookingList,
    add_booking,
    patch_booking,
    remove_booking,
)
from medflow_scheduler.services.store import (
    AppointmentStore,
    BackendError,
    ProviderContext,
    StoreTimeoutError,
    ValidationError,
)

logger = logging.getLogger(__name__)

CONFLICT_POLICIES = ("warn", "block")

# Fields whose change can move a booking onto another one
SCHEDULE_FIELDS = {"start", "duration_minutes", "status", "provider_id"}

ViewKey = Tuple[Optional[str], date, date]


def _day_bounds(first_day: date, last_day: date) -> Tuple[datetime, datetime]:
    return datetime.combine(first_day, time.min), datetime.combine(last_day + timedelta(days=1), time.min)


def _backend_failure(action: str, error: BackendError) -> Dict[str, Any]:
    if isinstance(error, StoreTimeoutError):
        message = f"The server took too long to {action}. Please try again."
        code = "timeout"
    else:
        message = f"We couldn't {action} right now. Please try again."
        code = "backend_error"
    return {"success": False, "message": message, "error": code}


def _validation_failure(error: ValidationError) -> Dict[str, Any]:
    fields = ", ".join(error.fields) if error.fields else "the appointment details"
    return {
        "success": False,
        "message": f"Please check the following: {fields}.",
        "error": "validation",
        "fields": error.fields,
    }


def _not_found() -> Dict[str, Any]:
    return {
        "success": False,
        "message": "That appointment is no longer on the calendar.",
        "error": "not_found",
    }


def _conflict_details(report: Optional[ConflictReport]) -> Dict[str, Any]:
    return {
        "conflicts": report.descriptions if report is not None else [],
        "conflicts_checked": report is not None,
    }


class CalendarService:
    """
    Service backing a provider's scheduling calendar.

    Holds the view state and the visible booking list; re-fetches whenever
    the visible range changes and ignores responses that no longer match
    the current view.
    """

    def __init__(
        self,
        store: AppointmentStore,
        provider_context: ProviderContext,
        controller: Optional[CalendarViewController] = None,
        ranker: Optional[SuggestionRanker] = None,
        config: Optional[Settings] = None,
        conflict_policy: str = "warn",
        now_provider: Callable[[], datetime] = datetime.now,
        template: Optional[WorkingHoursTemplate] = None,
    ):
        """
        Initialize CalendarService.

        Args:
            store: Appointment store adapter
            provider_context: Supplies the active provider id
            controller: View controller (a week view of today by default)
            ranker: Suggestion ranker
            config: Settings (defaults to the global settings)
            conflict_policy: "warn" to proceed with a ConflictWarning,
                "block" to refuse overlapping bookings
            now_provider: Clock used for suggestions
            template: Provider working hours for suggestions
        """
        if conflict_policy not in CONFLICT_POLICIES:
            raise ValueError(f"Unknown conflict policy: {conflict_policy}")

        self.settings = config or default_settings
        self.store = store
        self.provider_context = provider_context
        self.controller = controller or CalendarViewController(
            today_provider=lambda: now_provider().date(),
            week_start_day=self.settings.week_start_day,
        )
        self.ranker = ranker or SuggestionRanker(self.settings)
        self.conflict_policy = conflict_policy
        self.now_provider = now_provider
        self.template = template

        self.bookings = OptimisticBookingList()
        self._loaded_key: Optional[ViewKey] = None
        self._range_changed = False
        self._temp_ids = itertools.count(1)
        self._schedule_lock = asyncio.Lock()
        self._conflict_checks = itertools.count(1)
        self._pending_creates: Dict[str, "asyncio.Future[Optional[str]]"] = {}

        self.controller.subscribe(self._on_range_change)

        logger.info(f"CalendarService initialized ({conflict_policy} on conflicts)")

    # View and navigation

    def view_key(self) -> ViewKey:
        first_day, last_day = self.controller.visible_range()
        return self.provider_context.current_provider_id(), first_day, last_day

    def view_info(self) -> Dict[str, Any]:
        state = self.controller.state
        first_day, last_day = self.controller.visible_range()
        return {
            "mode": state.mode.value,
            "anchor": state.anchor.isoformat(),
            "range_start": first_day.isoformat(),
            "range_end": last_day.isoformat(),
        }

    async def refresh(self) -> Dict[str, Any]:
        """
        Fetch the bookings of the visible range.

        Returns:
            Dictionary with keys:
                - success: Boolean
                - message: User-facing message
                - stale: True when the response was superseded and ignored
                - count: Number of bookings loaded (when applied)
        """
        key = self.view_key()
        provider_id, first_day, last_day = key

        if not provider_id:
            return {
                "success": False,
                "message": "Select a provider to see the calendar.",
                "error": "no_provider",
            }

        start, end = _day_bounds(first_day, last_day)
        try:
            bookings = await self.store.fetch_range(provider_id, start, end)
        except BackendError as e:
            logger.error(f"Failed to load bookings for {provider_id}: {e}")
            return _backend_failure("load the calendar", e)

        if bookings is None or self.view_key() != key:
            logger.debug(f"Ignoring bookings for outdated view {key}")
            return {"success": True, "message": "View changed while loading.", "stale": True}

        self.bookings.rebase(bookings)
        self._loaded_key = key

        return {
            "success": True,
            "message": f"Loaded {len(bookings)} appointments.",
            "stale": False,
            "count": len(bookings),
        }

    async def set_view(self, mode: ViewMode) -> Dict[str, Any]:
        return await self._navigate(lambda: self.controller.set_view(mode))

    async def go_today(self) -> Dict[str, Any]:
        return await self._navigate(self.controller.go_to_today)

    async def go_next(self) -> Dict[str, Any]:
        return await self._navigate(self.controller.go_next)

    async def go_previous(self) -> Dict[str, Any]:
        return await self._navigate(self.controller.go_previous)

    async def jump_to(self, target: date, mode: Optional[ViewMode] = None) -> Dict[str, Any]:
        return await self._navigate(lambda: self.controller.jump_to(target, mode))

    async def open_day(self, day: date) -> Dict[str, Any]:
        """Clicking a day cell: jump there and switch to the day view."""
        return await self.jump_to(day, ViewMode.DAY)

    def events(self) -> List[CalendarEvent]:
        """Render-ready events of the visible range, ordered by time."""
        first_day, last_day = self.controller.visible_range()
        events = [
            CalendarEvent.from_booking(booking, location=self.settings.default_location)
            for booking in self.bookings.bookings
            if first_day <= booking.start.date() <= last_day
        ]
        return sorted(sort_events_by_time(events), key=lambda event: event.event_date)

    def day_layout(self, day: date) -> List[EventLayout]:
        """Positioned events of one day column."""
        return layout_day_events(
            events_for_date(self.events(), day),
            pixels_per_hour=self.settings.pixels_per_hour,
            grid_start_hour=self.settings.grid_start_hour,
        )

    # Mutations

    async def create_booking(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a booking for the current provider.

        The booking appears in the calendar immediately and is removed again
        if the backend rejects it.

        Args:
            fields: Booking fields (patient_name, start, duration_minutes, ...)

        Returns:
            Dictionary with keys:
                - success: Boolean
                - message: User-facing message
                - booking_id: New booking id (if successful)
                - conflicts: Descriptions of overlapping bookings
        """
        payload = {"provider_id": self.provider_context.current_provider_id(), **fields}
        try:
            draft = self.store.validate_draft(payload)
        except ValidationError as e:
            return _validation_failure(e)

        # Checks and optimistic applies run one at a time, so a later check
        # sees every booking an earlier one let through
        async with self._schedule_lock:
            report = await self._conflicts(draft.provider_id, draft.start, draft.end)
            blocked = self._apply_conflict_policy(report)
            if blocked:
                return blocked

            temp_id = f"pending-{next(self._temp_ids)}"
            op_id = self.bookings.begin("create", temp_id, add_booking(draft.to_booking(temp_id)))
            self._pending_creates[temp_id] = asyncio.get_running_loop().create_future()

        booking_id: Optional[str] = None
        try:
            booking_id = await self.store.create(draft)
            self.bookings.confirm(op_id, booking_id)
        except BackendError as e:
            self.bookings.revert(op_id)
            logger.error(f"Failed to create booking for {draft.patient_name}: {e}")
            return _backend_failure("book this appointment", e)
        finally:
            # Edits waiting on the temporary id continue with the real one
            self._pending_creates.pop(temp_id).set_result(booking_id)

        return {
            "success": True,
            "message": (
                f"Appointment booked for {draft.patient_name} on "
                f"{draft.start.strftime('%B %d, %Y')} at {draft.start:%H:%M}."
            ),
            "booking_id": booking_id,
            **_conflict_details(report),
        }

    async def update_booking(self, booking_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """
        Update a visible booking.

        A booking still being created is updated once the backend has
        assigned its id.

        Args:
            booking_id: Booking to change
            fields: Fields to change (any except id)

        Returns:
            Dictionary with success, message, and conflicts keys
        """
        try:
            changes = self.store.validate_update(fields)
        except ValidationError as e:
            return _validation_failure(e)

        booking_id = await self._created_id(booking_id)

        async with self._schedule_lock:
            current = self.bookings.get(booking_id)
            if current is None:
                return _not_found()

            updated = current.model_copy(update=changes)
            report: Optional[ConflictReport] = ConflictReport()
            if SCHEDULE_FIELDS & changes.keys() and updated.is_active:
                report = await self._conflicts(
                    updated.provider_id, updated.start, updated.end, exclude_booking_id=booking_id
                )
                blocked = self._apply_conflict_policy(report)
                if blocked:
                    return blocked

            op_id = self.bookings.begin("update", booking_id, patch_booking(booking_id, changes))

        try:
            await self.store.update(booking_id, changes)
        except BackendError as e:
            self.bookings.revert(op_id)
            logger.error(f"Failed to update booking {booking_id}: {e}")
            return _backend_failure("save your changes", e)

        self.bookings.confirm(op_id)

        return {
            "success": True,
            "message": "Appointment updated.",
            "booking_id": booking_id,
            **_conflict_details(report),
        }

    async def delete_booking(self, booking_id: str) -> Dict[str, Any]:
        """Delete a visible booking, restoring it if the backend fails. Waits for a pending create."""
        booking_id = await self._created_id(booking_id)
        if self.bookings.get(booking_id) is None:
            return _not_found()

        op_id = self.bookings.begin("delete", booking_id, remove_booking(booking_id))

        try:
            await self.store.delete(booking_id)
        except BackendError as e:
            self.bookings.revert(op_id)
            logger.error(f"Failed to delete booking {booking_id}: {e}")
            return _backend_failure("delete this appointment", e)

        self.bookings.confirm(op_id)
        return {"success": True, "message": "Appointment deleted.", "booking_id": booking_id}

    # Suggestions

    async def suggest(self, preferences: Optional[SuggestionPreferences] = None) -> Dict[str, Any]:
        """
        Suggest appointment slots for the current provider.

        Returns:
            Dictionary with keys:
                - success: Boolean
                - message: User-facing message
                - suggestions: Ranked AppointmentSuggestion list
        """
        provider_id = self.provider_context.current_provider_id()
        if not provider_id:
            return {
                "success": False,
                "message": "Select a provider to get suggestions.",
                "error": "no_provider",
            }

        preferences = preferences or SuggestionPreferences()
        now = self.now_provider()
        horizon_end = self.ranker.horizon_end(preferences, now)

        if horizon_end <= now:
            bookings: Optional[List[Booking]] = []
        else:
            try:
                bookings = await self.store.fetch_range(
                    provider_id, now, horizon_end, channel="suggestions"
                )
            except BackendError as e:
                logger.error(f"Failed to load bookings for suggestions: {e}")
                return _backend_failure("look up free slots", e)

        if bookings is None or self.provider_context.current_provider_id() != provider_id:
            return {"success": True, "message": "Request superseded.", "stale": True, "suggestions": []}

        suggestions = self.ranker.suggest(
            provider_id, bookings, preferences, now=now, template=self.template
        )

        if not suggestions:
            message = "No available slots were found. Try a longer wait or another provider."
        else:
            message = f"Found {len(suggestions)} suggested slots."

        return {"success": True, "message": message, "stale": False, "suggestions": suggestions}

    async def accept_suggestion(
        self,
        suggestion: AppointmentSuggestion,
        patient_name: str,
        **fields: Any,
    ) -> Dict[str, Any]:
        """Turn a suggestion into a booking through ``create_booking``."""
        payload: Dict[str, Any] = {
            **fields,
            "patient_name": patient_name,
            "start": suggestion.start,
            "duration_minutes": suggestion.duration_minutes,
        }
        if suggestion.provider_id:
            payload["provider_id"] = suggestion.provider_id
        return await self.create_booking(payload)

    # Internals

    def _on_range_change(self, state, visible) -> None:
        self._range_changed = True

    async def _navigate(self, transition: Callable[[], Any]) -> Dict[str, Any]:
        self._range_changed = False
        transition()

        if self._range_changed or self._loaded_key != self.view_key():
            result = await self.refresh()
        else:
            result = {"success": True, "message": "View unchanged.", "stale": False}

        result["view"] = self.view_info()
        return result

    async def _created_id(self, booking_id: str) -> str:
        """
        Wait for a create still in flight under a temporary id.

        Returns the id assigned by the backend, or ``booking_id`` unchanged
        when it is not a pending create or the create failed.
        """
        created = self._pending_creates.get(booking_id)
        if created is None:
            return booking_id

        logger.debug(f"Waiting for booking {booking_id} to be saved")
        real_id = await asyncio.shield(created)
        return real_id or booking_id

    async def _conflicts(
        self,
        provider_id: str,
        start: datetime,
        end: datetime,
        exclude_booking_id: Optional[str] = None,
    ) -> Optional[ConflictReport]:
        """
        Check against the visible list, or fetch the interval when it is off-screen.

        Returns:
            ConflictReport, or None when the bookings of the interval could
            not be loaded
        """
        loaded = self._loaded_key
        visible = self.bookings.bookings
        bookings: Optional[List[Booking]] = None

        if loaded is not None and loaded[0] == provider_id:
            loaded_start, loaded_end = _day_bounds(loaded[1], loaded[2])
            if loaded_start <= start and end <= loaded_end:
                bookings = visible

        if bookings is None:
            channel = f"conflicts-{next(self._conflict_checks)}"
            try:
                fetched = await self.store.fetch_range(provider_id, start, end, channel=channel)
            except BackendError as e:
                logger.warning(f"Conflict check unavailable for {provider_id}: {e}")
                return None
            if fetched is None:
                return None

            # Local changes not yet saved take precedence over fetched copies
            merged = {booking.id: booking for booking in fetched}
            merged.update({booking.id: booking for booking in visible})
            bookings = list(merged.values())

        same_provider = [b for b in bookings if b.provider_id == provider_id]
        return check_conflicts(start, end, same_provider, exclude_booking_id)

    def _apply_conflict_policy(self, report: Optional[ConflictReport]) -> Optional[Dict[str, Any]]:
        if report is None:
            message = "Existing appointments could not be loaded to check for overlaps."
            if self.conflict_policy == "block":
                return {
                    "success": False,
                    "message": f"{message} Please try again.",
                    "error": "conflict_check_failed",
                    "conflicts": [],
                    "conflicting_booking_ids": [],
                }
            warnings.warn(ConflictWarning(message), stacklevel=3)
            return None

        if not report.has_conflict:
            return None

        message = "This time overlaps: " + "; ".join(report.descriptions)
        if self.conflict_policy == "block":
            logger.info(f"Blocked overlapping booking: {report.booking_ids}")
            return {
                "success": False,
                "message": message,
                "error": "conflict",
                "conflicts": report.descriptions,
                "conflicting_booking_ids": report.booking_ids,
            }

        warnings.warn(ConflictWarning(message, report.booking_ids), stacklevel=3)
        return None
