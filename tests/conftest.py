"""Shared test fixtures."""
import asyncio
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import pytest

from medflow_scheduler.config import Settings
from medflow_scheduler.models.schemas import Booking, BookingDraft, BookingStatus
from medflow_scheduler.services.store import AppointmentStore, StaticProviderContext


# Monday
MONDAY = date(2024, 3, 4)


def make_booking(
    booking_id: str,
    start: datetime,
    duration_minutes: int = 60,
    status: BookingStatus = BookingStatus.SCHEDULED,
    provider_id: str = "dr-1",
    patient_name: str = "Ana Popescu",
) -> Booking:
    return Booking(
        id=booking_id,
        provider_id=provider_id,
        patient_name=patient_name,
        start=start,
        duration_minutes=duration_minutes,
        status=status,
    )


class FakeBackend:
    """
    In-memory booking collection.

    ``delays`` maps an operation name to a list of per-call delays (seconds),
    ``failures`` maps an operation name to the number of calls that raise.
    """

    def __init__(self, bookings: Optional[List[Booking]] = None):
        self.bookings: Dict[str, Booking] = {b.id: b for b in bookings or []}
        self.delays: Dict[str, List[float]] = {}
        self.failures: Dict[str, int] = {}
        self.calls: List[tuple] = []
        self.active: Dict[str, int] = {}
        self.max_concurrent: Dict[str, int] = {}
        self._next_id = 0

    async def _enter(self, operation: str, key: str) -> None:
        self.calls.append((operation, key))
        self.active[key] = self.active.get(key, 0) + 1
        self.max_concurrent[key] = max(self.max_concurrent.get(key, 0), self.active[key])
        delays = self.delays.get(operation)
        delay = delays.pop(0) if delays else 0
        fail = self.failures.get(operation, 0) > 0
        if fail:
            self.failures[operation] -= 1

        try:
            await asyncio.sleep(delay)
            if fail:
                raise ConnectionError(f"{operation} unavailable")
        finally:
            self.active[key] -= 1

    async def fetch_range(self, provider_id: str, start: datetime, end: datetime) -> List[Booking]:
        await self._enter("fetch_range", f"{start}-{end}")
        return sorted(
            (
                b for b in self.bookings.values()
                if b.provider_id == provider_id and b.start < end and b.end > start
            ),
            key=lambda b: b.start,
        )

    async def create(self, draft: BookingDraft) -> str:
        await self._enter("create", draft.patient_name)
        self._next_id += 1
        booking_id = f"b{self._next_id}"
        self.bookings[booking_id] = draft.to_booking(booking_id)
        return booking_id

    async def update(self, booking_id: str, changes: Dict[str, Any]) -> None:
        await self._enter("update", booking_id)
        if booking_id not in self.bookings:
            raise KeyError(booking_id)
        self.bookings[booking_id] = self.bookings[booking_id].model_copy(update=changes)

    async def delete(self, booking_id: str) -> None:
        await self._enter("delete", booking_id)
        if booking_id not in self.bookings:
            raise KeyError(booking_id)
        del self.bookings[booking_id]


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.events: List[tuple] = []
        self.fail = fail

    async def booking_changed(self, action: str, booking_id: str) -> None:
        await asyncio.sleep(0)
        if self.fail:
            raise RuntimeError("notification service down")
        self.events.append((action, booking_id))


@pytest.fixture
def settings() -> Settings:
    """Settings with library defaults, independent of the environment."""
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
    )


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def store(backend) -> AppointmentStore:
    return AppointmentStore(backend, timeout=1.0)


@pytest.fixture
def provider_context() -> StaticProviderContext:
    return StaticProviderContext("dr-1")
