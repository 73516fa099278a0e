"""Tests for the booking and calendar schemas."""
from datetime import date, datetime, timezone

import pytest
from pydantic import ValidationError

from conftest import make_booking
from medflow_scheduler.models.schemas import (
    AppointmentSuggestion,
    BookingDraft,
    BookingStatus,
    BookingUpdate,
    CalendarEvent,
    CalendarViewState,
    Priority,
    SuggestionPreferences,
    WorkingHoursTemplate,
)


def draft_fields(**overrides):
    fields = {
        "provider_id": "dr-1",
        "patient_name": "Maria Ionescu",
        "start": datetime(2024, 3, 5, 9, 0),
        "duration_minutes": 30,
    }
    fields.update(overrides)
    return fields


class TestBooking:
    """Test booking properties."""

    def test_end(self):
        booking = make_booking("b1", datetime(2024, 3, 5, 9, 0), 45)

        assert booking.end == datetime(2024, 3, 5, 9, 45)

    @pytest.mark.parametrize("status,active", [
        (BookingStatus.SCHEDULED, True),
        (BookingStatus.CONFIRMED, True),
        (BookingStatus.COMPLETED, True),
        (BookingStatus.CANCELLED, False),
        (BookingStatus.NO_SHOW, False),
    ])
    def test_is_active(self, status, active):
        assert make_booking("b1", datetime(2024, 3, 5, 9), status=status).is_active is active


class TestBookingDraft:
    """Test create payload validation."""

    def test_valid_draft(self):
        draft = BookingDraft(**draft_fields(patient_name="  Maria Ionescu ", patient_phone="+40 721 123 456"))

        assert draft.patient_name == "Maria Ionescu"
        assert draft.patient_phone == "+40 721 123 456"
        assert draft.status == BookingStatus.SCHEDULED
        assert draft.end == datetime(2024, 3, 5, 9, 30)

    def test_short_patient_name(self):
        with pytest.raises(ValidationError):
            BookingDraft(**draft_fields(patient_name="M"))

    def test_non_positive_duration(self):
        with pytest.raises(ValidationError):
            BookingDraft(**draft_fields(duration_minutes=0))

    def test_timezone_aware_start_rejected(self):
        with pytest.raises(ValidationError):
            BookingDraft(**draft_fields(start=datetime(2024, 3, 5, 9, tzinfo=timezone.utc)))

    def test_invalid_contacts(self):
        with pytest.raises(ValidationError) as exc_info:
            BookingDraft(**draft_fields(patient_email="maria@", patient_phone="12"))

        fields = {error["loc"][0] for error in exc_info.value.errors()}
        assert fields == {"patient_email", "patient_phone"}

    def test_blank_contacts_become_none(self):
        draft = BookingDraft(**draft_fields(patient_email="  ", patient_phone=""))

        assert draft.patient_email is None
        assert draft.patient_phone is None

    def test_notes_too_long(self):
        with pytest.raises(ValidationError):
            BookingDraft(**draft_fields(notes="x" * 1001))

    def test_to_booking(self):
        booking = BookingDraft(**draft_fields(notes="Fasting")).to_booking("b7")

        assert booking.id == "b7"
        assert booking.notes == "Fasting"
        assert booking.provider_id == "dr-1"


class TestBookingUpdate:
    """Test partial updates."""

    def test_changes_only_supplied_fields(self):
        update = BookingUpdate(notes="Bring results", status=BookingStatus.CONFIRMED)

        assert update.changes() == {"notes": "Bring results", "status": BookingStatus.CONFIRMED}

    def test_identifier_cannot_change(self):
        with pytest.raises(ValidationError):
            BookingUpdate(id="b2")

    def test_apply_to(self):
        booking = make_booking("b1", datetime(2024, 3, 5, 9))

        updated = BookingUpdate(duration_minutes=90).apply_to(booking)

        assert updated.end == datetime(2024, 3, 5, 10, 30)
        assert booking.duration_minutes == 60


class TestCalendarEvent:
    """Test the booking projection."""

    def test_from_booking(self):
        booking = make_booking("b1", datetime(2024, 3, 7, 14, 30), 45, status=BookingStatus.CONFIRMED)

        event = CalendarEvent.from_booking(booking, location="Room 2")

        assert event.start_time == "14:30"
        assert event.end_time == "15:15"
        assert event.day_of_week == 4
        assert event.event_date == date(2024, 3, 7)
        assert event.color == "#10B981"
        assert event.title == "Ana Popescu"
        assert event.attendees == ["Ana Popescu"]
        assert event.organizer == "dr-1"
        assert event.location == "Room 2"

    def test_past_midnight_is_clipped(self):
        booking = make_booking("b1", datetime(2024, 3, 10, 23, 30), 60)

        event = CalendarEvent.from_booking(booking)

        assert event.end_time == "24:00"
        assert event.day_of_week == 7
        assert event.event_date == date(2024, 3, 10)


class TestSuggestionModels:
    """Test suggestion payloads and preferences."""

    def test_to_draft(self):
        suggestion = AppointmentSuggestion(
            start=datetime(2024, 3, 5, 9),
            duration_minutes=15,
            priority=Priority.URGENT,
            confidence=0.9,
            provider_id="dr-1",
        )

        draft = suggestion.to_draft("Maria Ionescu", notes="Chest pain")

        assert draft.start == datetime(2024, 3, 5, 9)
        assert draft.duration_minutes == 15
        assert draft.provider_id == "dr-1"
        assert draft.notes == "Chest pain"

    def test_confidence_bounds(self):
        with pytest.raises(ValidationError):
            AppointmentSuggestion(
                start=datetime(2024, 3, 5, 9), duration_minutes=15, priority=Priority.LOW, confidence=1.5
            )

    def test_preferences_ranges(self):
        with pytest.raises(ValidationError):
            SuggestionPreferences(preferred_hours={24})
        with pytest.raises(ValidationError):
            SuggestionPreferences(preferred_weekdays={7})
        with pytest.raises(ValidationError):
            SuggestionPreferences(max_wait_days=-1)

    def test_empty_preferences_mean_no_preference(self):
        preferences = SuggestionPreferences(preferred_hours=set(), preferred_weekdays=set())

        assert preferences.preferred_hours is None
        assert preferences.preferred_weekdays is None
        assert preferences.urgency == Priority.MEDIUM


class TestWorkingHoursTemplate:
    def test_defaults(self):
        template = WorkingHoursTemplate()

        assert template.work_days == [0, 1, 2, 3, 4]
        assert (template.start, template.end) == ("08:00", "18:00")
        assert template.slot_duration_minutes == 30
        assert template.buffer_minutes == 15

    def test_invalid_time(self):
        with pytest.raises(ValidationError):
            WorkingHoursTemplate(start="25:00")

    def test_lunch_needs_both_ends(self):
        with pytest.raises(ValidationError):
            WorkingHoursTemplate(lunch_start="12:00", lunch_end=None)


class TestCalendarViewState:
    def test_frozen(self):
        state = CalendarViewState(anchor=date(2024, 3, 6))

        with pytest.raises(ValidationError):
            state.anchor = date(2024, 3, 7)
