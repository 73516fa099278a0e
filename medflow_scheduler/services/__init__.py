"""
Services Module Initialization

Exports the appointment store adapter, the optimistic booking list and the
calendar service.
"""

from medflow_scheduler.services.calendar import CalendarService
from medflow_scheduler.services.optimistic import OptimisticBookingList
from medflow_scheduler.services.store import (
    AppointmentStore,
    BackendError,
    BookingBackend,
    Notifier,
    ProviderContext,
    StaticProviderContext,
    StoreError,
    StoreTimeoutError,
    ValidationError,
)

__all__ = [
    "AppointmentStore",
    "BackendError",
    "BookingBackend",
    "CalendarService",
    "Notifier",
    "OptimisticBookingList",
    "ProviderContext",
    "StaticProviderContext",
    "StoreError",
    "StoreTimeoutError",
    "ValidationError",
]
