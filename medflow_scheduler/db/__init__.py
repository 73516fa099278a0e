"""
Database Module Initialization

Exports session management and the booking repository.
"""

from medflow_scheduler.db.repository import (
    BookingNotFoundError,
    BookingRepository,
    DatabaseBookingBackend,
    DatabaseError,
)
from medflow_scheduler.db.session import (
    build_engine,
    build_session_factory,
    check_database_connection,
    close_database_connection,
    get_db_context,
    get_engine,
    get_session_factory,
)

__all__ = [
    "BookingNotFoundError",
    "BookingRepository",
    "DatabaseBookingBackend",
    "DatabaseError",
    "build_engine",
    "build_session_factory",
    "check_database_connection",
    "close_database_connection",
    "get_db_context",
    "get_engine",
    "get_session_factory",
]
