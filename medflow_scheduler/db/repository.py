"""
Database Repository Layer

Implements the repository pattern for the booking collection and the
persistence collaborator used by AppointmentStore.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import Date, DateTime, bindparam, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql.elements import TextClause

from medflow_scheduler.config import settings
from medflow_scheduler.db.session import get_db_context
from medflow_scheduler.models.schemas import Booking, BookingDraft

logger = logging.getLogger(__name__)


class DatabaseError(Exception):
    """Custom exception for database operations."""
    pass


class BookingNotFoundError(DatabaseError):
    """Raised when an update or delete targets an unknown booking."""
    pass


BOOKING_COLUMNS = (
    "id",
    "provider_id",
    "patient_id",
    "patient_name",
    "start_at",
    "duration_minutes",
    "status",
    "notes",
    "patient_national_id",
    "patient_email",
    "patient_phone",
    "patient_birth_date",
    "created_at",
    "updated_at",
)

# Booking fields that map to a differently named column
FIELD_TO_COLUMN = {"start": "start_at"}

UPDATABLE_COLUMNS = set(BOOKING_COLUMNS) - {"id", "created_at", "updated_at"}

DATETIME_PARAMS = ("start_at", "created_at", "updated_at", "range_start", "range_end", "lookback_start")

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS bookings (
        id VARCHAR(64) PRIMARY KEY,
        provider_id VARCHAR(64) NOT NULL,
        patient_id VARCHAR(64),
        patient_name VARCHAR(100) NOT NULL,
        start_at TIMESTAMP NOT NULL,
        duration_minutes INTEGER NOT NULL CHECK (duration_minutes > 0),
        status VARCHAR(16) NOT NULL DEFAULT 'scheduled',
        notes TEXT NOT NULL DEFAULT '',
        patient_national_id VARCHAR(32),
        patient_email VARCHAR(255),
        patient_phone VARCHAR(32),
        patient_birth_date DATE,
        created_at TIMESTAMP NOT NULL,
        updated_at TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS ix_bookings_provider_start
        ON bookings (provider_id, start_at)
    """,
)

_SELECT_BOOKINGS = f"SELECT {', '.join(BOOKING_COLUMNS)} FROM bookings"


def _typed(statement: str, params: Dict[str, Any]) -> TextClause:
    """Attach date/time types so values round-trip on SQLite and PostgreSQL."""
    clause = text(statement)
    typed_params = [
        bindparam(name, type_=DateTime()) for name in DATETIME_PARAMS if name in params
    ]
    if "patient_birth_date" in params:
        typed_params.append(bindparam("patient_birth_date", type_=Date()))
    if typed_params:
        clause = clause.bindparams(*typed_params)
    return clause


def _select(statement: str, params: Dict[str, Any]):
    return _typed(statement, params).columns(
        start_at=DateTime(),
        created_at=DateTime(),
        updated_at=DateTime(),
        patient_birth_date=Date(),
    )


def _row_to_booking(row: Dict[str, Any]) -> Booking:
    data = dict(row)
    data["start"] = data.pop("start_at")
    data["notes"] = data.get("notes") or ""
    return Booking(**data)


class BaseRepository:
    """Base repository with common database operations."""

    def __init__(self, session: AsyncSession):
        """
        Initialize repository with database session.

        Args:
            session: AsyncSession instance for database operations
        """
        self.session = session

    async def execute_query(
        self,
        query: Union[str, Any],
        params: Optional[Dict[str, Any]] = None
    ) -> Any:
        """
        Execute a parametrized SQL query safely.

        Args:
            query: SQL query string or prepared text clause
            params: Dictionary of query parameters

        Returns:
            Query result

        Raises:
            DatabaseError: If query execution fails
        """
        statement = text(query) if isinstance(query, str) else query
        try:
            result = await self.session.execute(statement, params or {})
            return result
        except SQLAlchemyError as e:
            logger.error(f"Query execution failed: {e}")
            raise DatabaseError(f"Database operation failed: {str(e)}") from e


class BookingRepository(BaseRepository):
    """Repository for booking records."""

    async def ensure_schema(self) -> None:
        """Create the bookings table and its index when missing."""
        for statement in SCHEMA_STATEMENTS:
            await self.execute_query(statement)
        await self.session.commit()
        logger.info("Bookings schema ensured")

    async def fetch_range(
        self,
        provider_id: str,
        range_start: datetime,
        range_end: datetime,
    ) -> List[Booking]:
        """
        Get a provider's bookings that overlap a time range.

        Bookings that started before ``range_start`` but are still running
        are included; the look-back is bounded by ``max_booking_minutes``.

        Args:
            provider_id: Provider identifier
            range_start: Range start (inclusive)
            range_end: Range end (exclusive)

        Returns:
            List of bookings ordered by start
        """
        query = f"""
            {_SELECT_BOOKINGS}
            WHERE provider_id = :provider_id
                AND start_at >= :lookback_start
                AND start_at < :range_end
            ORDER BY start_at, id
        """
        params = {
            "provider_id": provider_id,
            "lookback_start": range_start - timedelta(minutes=settings.max_booking_minutes),
            "range_end": range_end,
        }

        result = await self.execute_query(_select(query, params), params)
        bookings = [_row_to_booking(row) for row in result.mappings().fetchall()]

        return [booking for booking in bookings if booking.end > range_start]

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        """
        Get booking details by ID.

        Args:
            booking_id: Unique booking identifier

        Returns:
            Booking or None if not found
        """
        query = f"{_SELECT_BOOKINGS} WHERE id = :booking_id"
        params = {"booking_id": booking_id}

        result = await self.execute_query(_select(query, params), params)
        row = result.mappings().fetchone()

        if not row:
            return None
        return _row_to_booking(row)

    async def create_booking(self, draft: BookingDraft) -> Booking:
        """
        Insert a new booking with transaction handling.

        Args:
            draft: Validated create payload

        Returns:
            The stored booking

        Raises:
            DatabaseError: If booking creation fails
        """
        now = datetime.now()
        booking_id = uuid.uuid4().hex
        booking = draft.to_booking(booking_id).model_copy(
            update={"created_at": now, "updated_at": now}
        )

        query = f"""
            INSERT INTO bookings ({', '.join(BOOKING_COLUMNS)})
            VALUES ({', '.join(':' + column for column in BOOKING_COLUMNS)})
        """
        params = {
            "id": booking.id,
            "provider_id": booking.provider_id,
            "patient_id": booking.patient_id,
            "patient_name": booking.patient_name,
            "start_at": booking.start,
            "duration_minutes": booking.duration_minutes,
            "status": booking.status.value,
            "notes": booking.notes,
            "patient_national_id": booking.patient_national_id,
            "patient_email": booking.patient_email,
            "patient_phone": booking.patient_phone,
            "patient_birth_date": booking.patient_birth_date,
            "created_at": now,
            "updated_at": now,
        }

        try:
            await self.execute_query(_typed(query, params), params)
            await self.session.commit()
        except DatabaseError as e:
            await self.session.rollback()
            logger.error(f"Failed to create booking: {e}")
            raise

        logger.info(
            f"Created booking {booking_id} for provider {booking.provider_id} "
            f"at {booking.start:%Y-%m-%d %H:%M}"
        )
        return booking

    async def update_booking(self, booking_id: str, changes: Dict[str, Any]) -> Optional[Booking]:
        """
        Update booking fields.

        Args:
            booking_id: Booking ID
            changes: Booking field names mapped to new values

        Returns:
            Updated booking or None if not found
        """
        update_fields: Dict[str, Any] = {}
        for field, value in changes.items():
            column = FIELD_TO_COLUMN.get(field, field)
            if column not in UPDATABLE_COLUMNS:
                logger.warning(f"Ignoring non-updatable field {field}")
                continue
            update_fields[column] = getattr(value, "value", value)

        if not update_fields:
            logger.warning("No valid fields provided for update")
            return await self.get_booking(booking_id)

        set_clause = ", ".join([f"{column} = :{column}" for column in update_fields])
        query = f"""
            UPDATE bookings
            SET
                {set_clause},
                updated_at = :updated_at
            WHERE id = :booking_id
        """
        params = {**update_fields, "updated_at": datetime.now(), "booking_id": booking_id}

        try:
            result = await self.execute_query(_typed(query, params), params)
            await self.session.commit()
        except DatabaseError as e:
            await self.session.rollback()
            logger.error(f"Failed to update booking {booking_id}: {e}")
            raise

        if result.rowcount == 0:
            return None

        logger.info(f"Updated booking {booking_id}: {sorted(update_fields)}")
        return await self.get_booking(booking_id)

    async def delete_booking(self, booking_id: str) -> bool:
        """
        Hard-delete a booking.

        Returns:
            True if a row was removed, False if the booking did not exist
        """
        try:
            result = await self.execute_query(
                "DELETE FROM bookings WHERE id = :booking_id",
                {"booking_id": booking_id}
            )
            await self.session.commit()
        except DatabaseError as e:
            await self.session.rollback()
            logger.error(f"Failed to delete booking {booking_id}: {e}")
            raise

        deleted = result.rowcount > 0
        if deleted:
            logger.info(f"Deleted booking {booking_id}")
        return deleted


class DatabaseBookingBackend:
    """
    Persistence collaborator backed by the bookings table.

    Opens one session per call, so it is safe to share between concurrent
    store operations.
    """

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self.session_factory = session_factory

    async def ensure_schema(self) -> None:
        async with get_db_context(self.session_factory) as session:
            await BookingRepository(session).ensure_schema()

    async def fetch_range(self, provider_id: str, start: datetime, end: datetime) -> List[Booking]:
        async with get_db_context(self.session_factory) as session:
            return await BookingRepository(session).fetch_range(provider_id, start, end)

    async def create(self, draft: BookingDraft) -> str:
        async with get_db_context(self.session_factory) as session:
            booking = await BookingRepository(session).create_booking(draft)
            return booking.id

    async def update(self, booking_id: str, changes: Dict[str, Any]) -> None:
        async with get_db_context(self.session_factory) as session:
            updated = await BookingRepository(session).update_booking(booking_id, changes)
        if updated is None:
            raise BookingNotFoundError(f"Booking {booking_id} not found")

    async def delete(self, booking_id: str) -> None:
        async with get_db_context(self.session_factory) as session:
            deleted = await BookingRepository(session).delete_booking(booking_id)
        if not deleted:
            raise BookingNotFoundError(f"Booking {booking_id} not found")
