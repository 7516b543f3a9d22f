"""Map service-layer errors onto HTTP responses."""

import logging

from fastapi import HTTPException

from slotbook.db.transactions import TransactionAbortedError
from slotbook.services.booking_status import IllegalStatusTransitionError
from slotbook.services.reservation_service import (
    BookingNotFoundError,
    ProviderNotFoundError,
    ReservationAccessError,
    ReservationError,
    ReservationValidationError,
    SlotConflictError,
    SlotNotBlockedError,
)

logger = logging.getLogger(__name__)

# Everything a router catches around a service call
SERVICE_ERRORS = (ReservationError, IllegalStatusTransitionError, TransactionAbortedError)

STATUS_BY_ERROR: tuple[tuple[type[Exception], int], ...] = (
    (ReservationValidationError, 422),
    (SlotConflictError, 409),
    (TransactionAbortedError, 409),
    (BookingNotFoundError, 404),
    (ProviderNotFoundError, 404),
    (ReservationAccessError, 403),
    (IllegalStatusTransitionError, 400),
    (SlotNotBlockedError, 400),
)


def to_http(exc: Exception) -> HTTPException:
    """HTTPException for a known service error; anything else is a 500 with no detail leak."""
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            if isinstance(exc, TransactionAbortedError):
                return HTTPException(status_code=status_code, detail="Please try again")
            return HTTPException(status_code=status_code, detail=str(exc))
    logger.error("Unmapped service error: %s", type(exc).__name__)
    return HTTPException(status_code=500, detail="Internal server error")
