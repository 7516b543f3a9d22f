"""Enum definitions for application constants."""

from enum import Enum


class SlotKind(str, Enum):
    """What is holding a provider slot."""
    BOOKING = "booking"
    BLOCK = "block"


class BookingStatus(str, Enum):
    """
    Booking lifecycle status.

        booked → confirmed → completed | no_show
        booked → completed | no_show
        booked | confirmed → cancelled

    cancelled and rescheduled are sinks. Allowed edges live in
    slotbook.services.booking_status.
    """
    BOOKED = "booked"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    NO_SHOW = "no_show"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"

    @classmethod
    def has_value(cls, value: str) -> bool:
        """Check if value is a valid status."""
        return value in cls._value2member_map_


class WhatsappStatus(str, Enum):
    """Whether the booking confirmation reached the customer."""
    PENDING = "pending"
    SENT = "sent"


class CancelledBy(str, Enum):
    """Who cancelled a booking."""
    CUSTOMER = "customer"
    ADMIN = "admin"


class ActorRole(str, Enum):
    """Admin console actor roles."""
    OWNER = "owner"
    PROVIDER = "provider"


class MessageType(str, Enum):
    """Kinds of outbound WhatsApp messages."""
    CONFIRMATION = "confirmation"
    RESCHEDULE = "reschedule"
    REMINDER = "reminder"
    CANCELLATION = "cancellation"
    BIRTHDAY = "birthday"
    BROADCAST = "broadcast"


class OutboundStatus(str, Enum):
    """
    Outbound queue item status.

        pending →(success) sent
        pending →(failure, attempts < max) pending
        pending →(failure, attempts == max) failed
    """
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class IdempotencyStatus(str, Enum):
    """Delivery ledger status for a (kind, target, content) key."""
    PENDING = "pending"
    SENT = "sent"


class MediaType(str, Enum):
    """Media kinds accepted by the gateway."""
    IMAGE = "image"
    VIDEO = "video"
    DOCUMENT = "document"


DEFAULT_BOOKING_STATUS = BookingStatus.BOOKED
DEFAULT_WHATSAPP_STATUS = WhatsappStatus.PENDING
DEFAULT_OUTBOUND_STATUS = OutboundStatus.PENDING

# Statuses that still hold a slot
ACTIVE_BOOKING_STATUSES = (BookingStatus.BOOKED, BookingStatus.CONFIRMED)
