"""
Pydantic Schemas

Data validation and serialization schemas for bookings, calendar projections,
suggestions and view state.
"""

import re
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

TIME_OF_DAY_PATTERN = re.compile(r"^(?:[01]?\d|2[0-3]):[0-5]\d$|^24:00$")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^\+?[0-9][0-9\s\-().]{5,20}$")

MAX_PATIENT_NAME_LENGTH = 100
MAX_NOTES_LENGTH = 1000


class BookingStatus(str, Enum):
    """Lifecycle status of a booking."""
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


# Statuses that occupy the provider's time. Completed bookings still block,
# so edits to history never silently overlap.
ACTIVE_STATUSES = frozenset({
    BookingStatus.SCHEDULED,
    BookingStatus.CONFIRMED,
    BookingStatus.COMPLETED,
})


class Priority(str, Enum):
    """Urgency level of a patient request, reused as suggestion priority."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ViewMode(str, Enum):
    """Calendar granularity."""
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


STATUS_COLORS: Dict[BookingStatus, str] = {
    BookingStatus.SCHEDULED: "#F59E0B",
    BookingStatus.CONFIRMED: "#10B981",
    BookingStatus.COMPLETED: "#3B82F6",
    BookingStatus.CANCELLED: "#EF4444",
    BookingStatus.NO_SHOW: "#6B7280",
}


def _reject_aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        raise ValueError(
            "start must be a naive local wall-clock datetime in the provider's calendar"
        )
    return value


def _check_patient_name(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    value = value.strip()
    if len(value) < 2:
        raise ValueError("patient name must have at least 2 characters")
    if len(value) > MAX_PATIENT_NAME_LENGTH:
        raise ValueError(
            f"patient name must be {MAX_PATIENT_NAME_LENGTH} characters or fewer"
        )
    return value


def _check_notes(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    value = value.strip()
    if len(value) > MAX_NOTES_LENGTH:
        raise ValueError(f"notes must be {MAX_NOTES_LENGTH} characters or fewer")
    return value


def _check_email(value: Optional[str]) -> Optional[str]:
    if value is None or not value.strip():
        return None
    value = value.strip()
    if not EMAIL_PATTERN.match(value):
        raise ValueError("invalid email address")
    return value


def _check_phone(value: Optional[str]) -> Optional[str]:
    if value is None or not value.strip():
        return None
    value = value.strip()
    digits = re.sub(r"\D", "", value)
    if not PHONE_PATTERN.match(value) or not 7 <= len(digits) <= 15:
        raise ValueError("invalid phone number")
    return value


class BookingFields(BaseModel):
    """Optional patient contact fields shared by bookings and their payloads."""

    patient_id: Optional[str] = None
    notes: str = ""
    patient_national_id: Optional[str] = None
    patient_email: Optional[str] = None
    patient_phone: Optional[str] = None
    patient_birth_date: Optional[date] = None

    @field_validator("notes", mode="before")
    @classmethod
    def validate_notes(cls, v: Optional[str]) -> str:
        return _check_notes(v) or ""

    @field_validator("patient_email")
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        return _check_email(v)

    @field_validator("patient_phone")
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        return _check_phone(v)


class Booking(BookingFields):
    """A persisted appointment owned by one provider."""

    id: str
    provider_id: str
    patient_name: str
    start: datetime
    duration_minutes: int = Field(gt=0)
    status: BookingStatus = BookingStatus.SCHEDULED
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("start")
    @classmethod
    def validate_start(cls, v: datetime) -> datetime:
        return _reject_aware(v)

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration_minutes)

    @property
    def is_active(self) -> bool:
        """Whether this booking occupies the provider's time."""
        return self.status in ACTIVE_STATUSES


class BookingDraft(BookingFields):
    """
    Payload for creating a booking.

    Provider, patient name, start instant and duration are required.
    """

    provider_id: str = Field(min_length=1)
    patient_name: str
    start: datetime
    duration_minutes: int = Field(gt=0)
    status: BookingStatus = BookingStatus.SCHEDULED

    @field_validator("patient_name")
    @classmethod
    def validate_patient_name(cls, v: str) -> str:
        return _check_patient_name(v)

    @field_validator("start")
    @classmethod
    def validate_start(cls, v: datetime) -> datetime:
        return _reject_aware(v)

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration_minutes)

    def to_booking(self, booking_id: str) -> Booking:
        """Materialize the draft as a booking with the given identifier."""
        return Booking(id=booking_id, **self.model_dump())


class BookingUpdate(BaseModel):
    """Partial update: any booking field except the identifier."""

    model_config = ConfigDict(extra="forbid")

    provider_id: Optional[str] = Field(default=None, min_length=1)
    patient_id: Optional[str] = None
    patient_name: Optional[str] = None
    start: Optional[datetime] = None
    duration_minutes: Optional[int] = Field(default=None, gt=0)
    status: Optional[BookingStatus] = None
    notes: Optional[str] = None
    patient_national_id: Optional[str] = None
    patient_email: Optional[str] = None
    patient_phone: Optional[str] = None
    patient_birth_date: Optional[date] = None

    @field_validator("patient_name")
    @classmethod
    def validate_patient_name(cls, v: Optional[str]) -> Optional[str]:
        return _check_patient_name(v)

    @field_validator("start")
    @classmethod
    def validate_start(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _reject_aware(v)

    @field_validator("notes")
    @classmethod
    def validate_notes(cls, v: Optional[str]) -> Optional[str]:
        return _check_notes(v)

    @field_validator("patient_email")
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        return _check_email(v)

    @field_validator("patient_phone")
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        return _check_phone(v)

    def changes(self) -> Dict[str, Any]:
        """Only the fields the caller actually supplied."""
        return self.model_dump(exclude_unset=True)

    def apply_to(self, booking: Booking) -> Booking:
        """Return a copy of ``booking`` with these changes applied."""
        return booking.model_copy(update=self.changes())


def _format_hhmm(value: time) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


class CalendarEvent(BaseModel):
    """View-layer projection of a booking. Rebuilt on every fetch."""

    id: str
    title: str
    start_time: str
    end_time: str
    color: str
    day_of_week: int = Field(ge=1, le=7)
    event_date: date
    description: str = ""
    location: str = ""
    attendees: List[str] = Field(default_factory=list)
    organizer: str = ""
    status: BookingStatus = BookingStatus.SCHEDULED

    @classmethod
    def from_booking(cls, booking: Booking, location: str = "") -> "CalendarEvent":
        """
        Project a booking onto the calendar.

        Bookings running past midnight are clipped to "24:00" on their start day.

        Args:
            booking: Booking to project
            location: Location label shown on the event

        Returns:
            CalendarEvent: Render-ready event
        """
        start = booking.start
        end = booking.end
        if end.date() > start.date():
            end_time = "24:00"
        else:
            end_time = _format_hhmm(end.time())

        return cls(
            id=booking.id,
            title=booking.patient_name,
            start_time=_format_hhmm(start.time()),
            end_time=end_time,
            color=STATUS_COLORS[booking.status],
            day_of_week=start.isoweekday(),
            event_date=start.date(),
            description=booking.notes,
            location=location,
            attendees=[booking.patient_name],
            organizer=booking.provider_id,
            status=booking.status,
        )


class SuggestionScores(BaseModel):
    """Sub-scores that make up a suggestion's confidence."""

    preference: float = Field(ge=0.0, le=1.0)
    urgency: float = Field(ge=0.0, le=1.0)
    conflict_penalty: float = Field(ge=0.0, le=1.0)


class AppointmentSuggestion(BaseModel):
    """A proposed slot. Ephemeral until turned into a create request."""

    start: datetime
    duration_minutes: int = Field(gt=0)
    priority: Priority
    confidence: float = Field(ge=0.0, le=1.0)
    conflicts: List[str] = Field(default_factory=list)
    conflicting_booking_ids: List[str] = Field(default_factory=list)
    reasoning: str = ""
    provider_id: Optional[str] = None
    scores: Optional[SuggestionScores] = None

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration_minutes)

    def to_draft(self, patient_name: str, **fields: Any) -> BookingDraft:
        """
        Build a create-booking payload from this suggestion.

        Args:
            patient_name: Patient display name
            **fields: Any other booking fields (notes, patient contacts, ...)

        Returns:
            BookingDraft: Payload for AppointmentStore.create
        """
        payload: Dict[str, Any] = {
            "provider_id": self.provider_id,
            "start": self.start,
            "duration_minutes": self.duration_minutes,
        }
        payload.update(fields)
        payload["patient_name"] = patient_name
        return BookingDraft(**payload)


class SuggestionPreferences(BaseModel):
    """Patient scheduling preferences."""

    preferred_hours: Optional[Set[int]] = None
    preferred_weekdays: Optional[Set[int]] = None
    max_wait_days: Optional[int] = Field(default=None, ge=0)
    urgency: Priority = Priority.MEDIUM

    @field_validator("preferred_hours")
    @classmethod
    def validate_hours(cls, v: Optional[Set[int]]) -> Optional[Set[int]]:
        if v is not None and any(h < 0 or h > 23 for h in v):
            raise ValueError("preferred hours must be within 0-23")
        return v or None

    @field_validator("preferred_weekdays")
    @classmethod
    def validate_weekdays(cls, v: Optional[Set[int]]) -> Optional[Set[int]]:
        if v is not None and any(d < 0 or d > 6 for d in v):
            raise ValueError("preferred weekdays must be within 0-6 (Monday = 0)")
        return v or None


class WorkingHoursTemplate(BaseModel):
    """A provider's weekly working schedule."""

    work_days: List[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4])
    start: str = "08:00"
    end: str = "18:00"
    lunch_start: Optional[str] = "12:00"
    lunch_end: Optional[str] = "13:00"
    slot_duration_minutes: int = Field(default=30, gt=0)
    buffer_minutes: int = Field(default=15, ge=0)
    max_advance_booking_days: int = Field(default=90, ge=1)

    @field_validator("start", "end", "lunch_start", "lunch_end")
    @classmethod
    def validate_time_of_day(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not TIME_OF_DAY_PATTERN.match(v.strip()):
            raise ValueError(f"invalid time of day: {v!r}")
        return v.strip() if v is not None else v

    @model_validator(mode="after")
    def validate_lunch_break(self) -> "WorkingHoursTemplate":
        if (self.lunch_start is None) != (self.lunch_end is None):
            raise ValueError("lunch_start and lunch_end must be given together")
        return self


class CalendarViewState(BaseModel):
    """Anchor date plus exactly one active view mode."""

    model_config = ConfigDict(frozen=True)

    anchor: date
    mode: ViewMode = ViewMode.WEEK
    # Day of month requested before month navigation clamped the anchor
    month_day: Optional[int] = Field(default=None, ge=1, le=31)
