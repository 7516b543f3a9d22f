"""Booking status transition rules.

Every mutation of Booking.status goes through validate_transition; the
allowed edges are listed once, here.
"""

from slotbook.db.enums import BookingStatus


class IllegalStatusTransitionError(Exception):
    """Requested status change is not an edge of the booking graph."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move booking from {current} to {target}")


ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.BOOKED: frozenset({
        BookingStatus.CONFIRMED,
        BookingStatus.COMPLETED,
        BookingStatus.NO_SHOW,
        BookingStatus.CANCELLED,
    }),
    BookingStatus.CONFIRMED: frozenset({
        BookingStatus.COMPLETED,
        BookingStatus.NO_SHOW,
        BookingStatus.CANCELLED,
    }),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.NO_SHOW: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.RESCHEDULED: frozenset(),
}

# Targets accepted by the admin status endpoint (cancel has its own flow)
MANUAL_TARGETS = frozenset({
    BookingStatus.CONFIRMED,
    BookingStatus.COMPLETED,
    BookingStatus.NO_SHOW,
})


def _coerce(status: str | BookingStatus) -> BookingStatus:
    if isinstance(status, BookingStatus):
        return status
    if not BookingStatus.has_value(status):
        raise ValueError(f"Unknown booking status: {status}")
    return BookingStatus(status)


def can_transition(current: str | BookingStatus, target: str | BookingStatus) -> bool:
    """True if current → target is an edge of the graph."""
    return _coerce(target) in ALLOWED_TRANSITIONS[_coerce(current)]


def validate_transition(
    current: str | BookingStatus, target: str | BookingStatus
) -> BookingStatus:
    """Return the target status or raise IllegalStatusTransitionError."""
    current_status = _coerce(current)
    target_status = _coerce(target)
    if target_status not in ALLOWED_TRANSITIONS[current_status]:
        raise IllegalStatusTransitionError(current_status.value, target_status.value)
    return target_status


def is_active(status: str | BookingStatus) -> bool:
    """Active bookings hold a slot and can still be cancelled or moved."""
    return _coerce(status) in (BookingStatus.BOOKED, BookingStatus.CONFIRMED)
