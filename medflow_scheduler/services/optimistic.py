"""
Optimistic Booking List

The visible booking list plus a log of pending operations. Each operation is
applied locally as soon as it starts; the log keeps the rollback snapshot so
a failed operation can be undone without losing the other operations still
in flight.
"""

import itertools
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from medflow_scheduler.models.schemas import Booking

logger = logging.getLogger(__name__)

ApplyFn = Callable[[List[Booking]], List[Booking]]


def add_booking(booking: Booking) -> ApplyFn:
    """Insert (or replace) ``booking`` in the list."""
    def apply(bookings: List[Booking]) -> List[Booking]:
        return [b for b in bookings if b.id != booking.id] + [booking]
    return apply


def patch_booking(booking_id: str, changes: Dict[str, Any]) -> ApplyFn:
    """Apply field changes to the booking with ``booking_id``, if present."""
    def apply(bookings: List[Booking]) -> List[Booking]:
        return [b.model_copy(update=changes) if b.id == booking_id else b for b in bookings]
    return apply


def remove_booking(booking_id: str) -> ApplyFn:
    def apply(bookings: List[Booking]) -> List[Booking]:
        return [b for b in bookings if b.id != booking_id]
    return apply


def _renamed(apply: ApplyFn, old_id: str, new_id: str) -> ApplyFn:
    def renamed(bookings: List[Booking]) -> List[Booking]:
        result = []
        for booking in apply(bookings):
            if booking.id == old_id:
                booking = booking.model_copy(update={"id": new_id})
            result.append(booking)
        # Drop the server copy if both are present after the rename
        seen = set()
        deduped = []
        for booking in reversed(result):
            if booking.id not in seen:
                seen.add(booking.id)
                deduped.append(booking)
        return list(reversed(deduped))
    return renamed


def _ordered(bookings: Iterable[Booking]) -> List[Booking]:
    return sorted(bookings, key=lambda booking: (booking.start, booking.id))


@dataclass
class PendingOperation:
    """One optimistic change waiting for the backend."""

    op_id: int
    kind: str
    booking_id: str
    apply: ApplyFn
    snapshot: List[Booking]
    confirmed: bool = False


class OptimisticBookingList:
    """
    Booking list with optimistic updates and rollback.

    Example:
        >>> view = OptimisticBookingList(bookings)
        >>> op_id = view.begin("delete", "b1", remove_booking("b1"))
        >>> view.revert(op_id)   # backend failed: "b1" is visible again
    """

    def __init__(self, bookings: Optional[Iterable[Booking]] = None):
        self._base: List[Booking] = _ordered(bookings or [])
        self._log: List[PendingOperation] = []
        self._visible: List[Booking] = list(self._base)
        self._ids = itertools.count(1)

    @property
    def bookings(self) -> List[Booking]:
        """What the calendar shows, optimistic changes included."""
        return list(self._visible)

    @property
    def last_known_good(self) -> List[Booking]:
        """The list as confirmed by the backend."""
        return list(self._base)

    @property
    def pending(self) -> List[PendingOperation]:
        return [entry for entry in self._log if not entry.confirmed]

    def has_pending(self, booking_id: str) -> bool:
        return any(entry.booking_id == booking_id for entry in self.pending)

    def get(self, booking_id: str) -> Optional[Booking]:
        for booking in self._visible:
            if booking.id == booking_id:
                return booking
        return None

    def begin(self, kind: str, booking_id: str, apply: ApplyFn) -> int:
        """
        Apply a change locally and log it.

        Args:
            kind: "create", "update" or "delete"
            booking_id: Booking the change targets (a temporary id for creates)
            apply: Function producing the new list from the current one

        Returns:
            int: Operation id to confirm or revert later
        """
        op_id = next(self._ids)
        entry = PendingOperation(
            op_id=op_id,
            kind=kind,
            booking_id=booking_id,
            apply=apply,
            snapshot=list(self._visible),
        )
        self._log.append(entry)
        self._visible = _ordered(apply(list(self._visible)))

        logger.debug(f"Optimistic {kind} #{op_id} applied to booking {booking_id}")
        return op_id

    def confirm(self, op_id: int, booking_id: Optional[str] = None) -> None:
        """
        Mark an operation as persisted.

        Args:
            op_id: Operation id from ``begin``
            booking_id: Id assigned by the backend, when it differs from the
                temporary id used for a create
        """
        entry = self._find(op_id)
        if entry is None:
            logger.warning(f"Confirm of unknown operation #{op_id}")
            return

        if booking_id is not None and booking_id != entry.booking_id:
            entry.apply = _renamed(entry.apply, entry.booking_id, booking_id)
            entry.booking_id = booking_id

        entry.confirmed = True
        self._fold_confirmed()
        self._replay()

    def revert(self, op_id: int) -> None:
        """
        Undo a failed operation.

        The list returns to the last known-good base with the operations
        still in flight re-applied on top.
        """
        entry = self._find(op_id)
        if entry is None:
            logger.warning(f"Revert of unknown operation #{op_id}")
            return

        self._log.remove(entry)
        self._fold_confirmed()
        self._replay()

        logger.info(f"Rolled back {entry.kind} #{op_id} of booking {entry.booking_id}")

    def rebase(self, bookings: Iterable[Booking]) -> None:
        """Replace the known-good base with freshly fetched bookings."""
        self._base = _ordered(bookings)
        self._replay()

    def _find(self, op_id: int) -> Optional[PendingOperation]:
        for entry in self._log:
            if entry.op_id == op_id:
                return entry
        return None

    def _fold_confirmed(self) -> None:
        # Confirmed entries at the head of the log become part of the base
        while self._log and self._log[0].confirmed:
            head = self._log.pop(0)
            self._base = _ordered(head.apply(list(self._base)))

    def _replay(self) -> None:
        visible = list(self._base)
        for entry in self._log:
            visible = entry.apply(visible)
        self._visible = _ordered(visible)
