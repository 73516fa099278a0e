"""
Appointment Store Adapter

Async boundary between the calendar and the persistence collaborator:
- Range fetches with "last request wins" discard per channel
- Validated create/update/delete
- Mutations of one booking queued, never concurrent
- Every backend call bounded by a timeout
- Change notifications fired in the background
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Dict, List, Optional, Protocol, Set, Union

from pydantic import ValidationError as PydanticValidationError

from medflow_scheduler.config import settings
from medflow_scheduler.models.schemas import Booking, BookingDraft, BookingUpdate

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base exception for store operations."""
    pass


class ValidationError(StoreError):
    """Missing or invalid booking fields. Never retried."""

    def __init__(self, message: str, fields: Optional[List[str]] = None):
        super().__init__(message)
        self.fields = list(fields or [])


class BackendError(StoreError):
    """The persistence collaborator failed; the caller may retry."""
    pass


class StoreTimeoutError(BackendError):
    """A backend call did not finish within the store timeout."""
    pass


class BookingBackend(Protocol):
    """Persistence collaborator keyed by booking id."""

    async def fetch_range(self, provider_id: str, start: datetime, end: datetime) -> List[Booking]:
        ...

    async def create(self, draft: BookingDraft) -> str:
        ...

    async def update(self, booking_id: str, changes: Dict[str, Any]) -> None:
        ...

    async def delete(self, booking_id: str) -> None:
        ...


class ProviderContext(Protocol):
    """Read-only view of the current user/session."""

    def current_provider_id(self) -> Optional[str]:
        ...


class Notifier(Protocol):
    """Side channel told about successful changes."""

    async def booking_changed(self, action: str, booking_id: str) -> None:
        ...


class StaticProviderContext:
    """Provider context with a fixed provider id."""

    def __init__(self, provider_id: Optional[str]):
        self._provider_id = provider_id

    def current_provider_id(self) -> Optional[str]:
        return self._provider_id


def _error_fields(error: PydanticValidationError) -> List[str]:
    fields = []
    for detail in error.errors():
        name = ".".join(str(part) for part in detail.get("loc", ())) or "__root__"
        if name not in fields:
            fields.append(name)
    return fields


class AppointmentStore:
    """
    Async adapter over a BookingBackend.

    Example:
        >>> store = AppointmentStore(DatabaseBookingBackend())
        >>> bookings = await store.fetch_range("dr-1", start, end)
        >>> booking_id = await store.create(draft)
    """

    def __init__(
        self,
        backend: BookingBackend,
        timeout: Optional[float] = None,
        notifier: Optional[Notifier] = None,
    ):
        """
        Initialize the store.

        Args:
            backend: Persistence collaborator
            timeout: Seconds allowed per backend call (defaults to settings)
            notifier: Optional change notifier
        """
        self.backend = backend
        self.timeout = timeout if timeout is not None else settings.store_timeout_seconds
        self.notifier = notifier

        self._sequences: Dict[str, int] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._notifications: Set[asyncio.Task] = set()

    def next_sequence(self, channel: str = "view") -> int:
        """Issue the next request number for a channel."""
        self._sequences[channel] = self._sequences.get(channel, 0) + 1
        return self._sequences[channel]

    def latest_sequence(self, channel: str = "view") -> int:
        return self._sequences.get(channel, 0)

    def is_current(self, sequence: int, channel: str = "view") -> bool:
        return sequence == self.latest_sequence(channel)

    async def fetch_range(
        self,
        provider_id: str,
        start: datetime,
        end: datetime,
        channel: str = "view",
    ) -> Optional[List[Booking]]:
        """
        Fetch a provider's bookings for a time range.

        Args:
            provider_id: Provider to fetch for
            start: Range start
            end: Range end (exclusive)
            channel: Requests on the same channel supersede each other

        Returns:
            list[Booking] or None when a newer fetch on the channel was
            issued while this one was in flight

        Raises:
            ValidationError: If the range is empty or the provider is missing
            BackendError: If the backend fails (StoreTimeoutError on timeout)
        """
        if not provider_id:
            raise ValidationError("A provider is required to fetch bookings", ["provider_id"])
        if end <= start:
            raise ValidationError("Range end must be after its start", ["end"])

        sequence = self.next_sequence(channel)
        try:
            bookings = await self._call(
                "fetch_range", self.backend.fetch_range(provider_id, start, end)
            )
        except BackendError:
            if not self.is_current(sequence, channel):
                logger.debug(f"Ignoring failure of superseded fetch #{sequence} on {channel}")
                return None
            raise

        if not self.is_current(sequence, channel):
            logger.debug(
                f"Discarding stale fetch #{sequence} on {channel} "
                f"(latest #{self.latest_sequence(channel)})"
            )
            return None

        return list(bookings)

    def validate_draft(self, draft: Union[BookingDraft, Dict[str, Any]]) -> BookingDraft:
        """
        Validate a create payload.

        Raises:
            ValidationError: With the names of the missing or invalid fields
        """
        if isinstance(draft, BookingDraft):
            return draft
        try:
            return BookingDraft(**draft)
        except PydanticValidationError as e:
            fields = _error_fields(e)
            raise ValidationError(f"Invalid booking: {', '.join(fields)}", fields) from e

    def validate_update(self, fields: Union[BookingUpdate, Dict[str, Any]]) -> Dict[str, Any]:
        """
        Validate a partial update.

        Returns:
            dict: Only the supplied fields

        Raises:
            ValidationError: If a field is unknown, invalid, or nothing is supplied
        """
        if isinstance(fields, BookingUpdate):
            update = fields
        else:
            try:
                update = BookingUpdate(**fields)
            except PydanticValidationError as e:
                names = _error_fields(e)
                raise ValidationError(f"Invalid update: {', '.join(names)}", names) from e

        changes = update.changes()
        if not changes:
            raise ValidationError("No fields to update")
        return changes

    async def create(self, draft: Union[BookingDraft, Dict[str, Any]]) -> str:
        """
        Create a booking.

        Args:
            draft: Create payload (model or plain dict)

        Returns:
            str: The new booking id

        Raises:
            ValidationError: If required fields are missing or invalid
            BackendError: If the backend fails
        """
        draft = self.validate_draft(draft)
        booking_id = await self._call("create", self.backend.create(draft))

        logger.info(f"Created booking {booking_id} for provider {draft.provider_id}")
        self._notify("created", booking_id)
        return booking_id

    async def update(self, booking_id: str, fields: Union[BookingUpdate, Dict[str, Any]]) -> None:
        """
        Update any booking field except its id.

        A second update to the same booking waits for the first to finish.
        """
        changes = self.validate_update(fields)

        async with self._booking_lock(booking_id):
            await self._call("update", self.backend.update(booking_id, changes))

        logger.info(f"Updated booking {booking_id}: {sorted(changes)}")
        self._notify("updated", booking_id)

    async def delete(self, booking_id: str) -> None:
        """Hard-delete a booking, queued behind other edits of the same booking."""
        async with self._booking_lock(booking_id):
            await self._call("delete", self.backend.delete(booking_id))

        logger.info(f"Deleted booking {booking_id}")

    async def wait_for_notifications(self) -> None:
        """Wait for outstanding notifications (shutdown, tests)."""
        if self._notifications:
            await asyncio.gather(*list(self._notifications), return_exceptions=True)

    async def _call(self, operation: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Backend {operation} timed out after {self.timeout}s")
            raise StoreTimeoutError(
                f"{operation} did not complete within {self.timeout} seconds"
            ) from e
        except StoreError:
            raise
        except Exception as e:
            logger.error(f"Backend {operation} failed: {e}")
            raise BackendError(f"{operation} failed: {str(e)}") from e

    def _booking_lock(self, booking_id: str) -> "_QueuedLock":
        return _QueuedLock(self, booking_id)

    def _notify(self, action: str, booking_id: str) -> None:
        if self.notifier is None:
            return

        task = asyncio.create_task(self.notifier.booking_changed(action, booking_id))
        self._notifications.add(task)
        task.add_done_callback(self._notification_done)

    def _notification_done(self, task: asyncio.Task) -> None:
        self._notifications.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Booking notification failed: {error}")


class _QueuedLock:
    """Per-booking lock, dropped once nobody holds or waits for it."""

    def __init__(self, store: AppointmentStore, booking_id: str):
        self.store = store
        self.booking_id = booking_id

    async def __aenter__(self) -> None:
        locks = self.store._locks
        users = self.store._lock_users

        lock = locks.setdefault(self.booking_id, asyncio.Lock())
        users[self.booking_id] = users.get(self.booking_id, 0) + 1
        if lock.locked():
            logger.debug(f"Queuing edit of booking {self.booking_id}")

        try:
            await lock.acquire()
        except BaseException:
            self._release_user()
            raise

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.store._locks[self.booking_id].release()
        self._release_user()

    def _release_user(self) -> None:
        users = self.store._lock_users
        users[self.booking_id] -= 1
        if users[self.booking_id] == 0:
            del users[self.booking_id]
            del self.store._locks[self.booking_id]
