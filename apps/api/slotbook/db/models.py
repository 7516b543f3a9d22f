"""SQLAlchemy ORM models for providers, slots, bookings, customers and messaging."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON, Boolean, ForeignKey, Index, Integer, String, Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from slotbook.db.base import Base
from slotbook.db.enums import (
    DEFAULT_BOOKING_STATUS, DEFAULT_OUTBOUND_STATUS, DEFAULT_WHATSAPP_STATUS,
    IdempotencyStatus,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


# =============================================================================
# Catalog & Providers
# =============================================================================

class CatalogService(Base):
    """A bookable service (haircut, beard...). Read-only for the booking core."""

    __tablename__ = "catalog_services"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    label: Mapped[str] = mapped_column(String(100), nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow)


class Provider(Base):
    """
    A service professional with an independent calendar.

    schedule is an optional weekly map keyed "0" (Sunday) .. "6":
    {"1": {"active": true, "start": "09:00", "end": "18:00",
           "breaks": [{"start": "12:00", "end": "13:00"}]}, ...}
    """

    __tablename__ = "providers"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    whatsapp_e164: Mapped[str | None] = mapped_column(String(20), nullable=True)
    schedule: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


# =============================================================================
# Reservation Ledger
# =============================================================================

class Slot(Base):
    """
    One row per held (provider, 30-minute slot).

    The composite primary key is the reservation lock: the row existing
    means the slot is taken, either by a booking or an admin block.
    """

    __tablename__ = "slots"
    __table_args__ = (
        Index("idx_slots_provider_date", "provider_id", "date_key"),
    )

    provider_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("providers.id", ondelete="CASCADE"), primary_key=True
    )
    slot_id: Mapped[str] = mapped_column(String(13), primary_key=True)  # YYYYMMDD_HHMM
    slot_start: Mapped[datetime] = mapped_column(nullable=False)
    date_key: Mapped[str] = mapped_column(String(10), nullable=False)
    kind: Mapped[str] = mapped_column(String(10), nullable=False)
    booking_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    reason: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)


class Booking(Base):
    """
    A reservation of one slot by one customer.

    Customer identity fields are a snapshot taken at booking time so
    messages can be rendered without loading the customer profile.
    """

    __tablename__ = "bookings"
    __table_args__ = (
        Index("idx_bookings_provider_date", "provider_id", "date_key"),
        Index("idx_bookings_status_start", "status", "slot_start"),
        Index("uq_bookings_cancel_code_hash", "cancel_code_hash", unique=True),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    customer_id: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    provider_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("providers.id"), nullable=False
    )
    service_id: Mapped[str] = mapped_column(String(50), nullable=False)
    slot_start: Mapped[datetime] = mapped_column(nullable=False)
    date_key: Mapped[str] = mapped_column(String(10), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DEFAULT_BOOKING_STATUS.value
    )
    whatsapp_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DEFAULT_WHATSAPP_STATUS.value
    )
    cancel_code_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    customer_first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    customer_last_name: Mapped[str] = mapped_column(String(50), nullable=False)
    customer_phone_e164: Mapped[str] = mapped_column(String(20), nullable=False)

    created_by: Mapped[str | None] = mapped_column(String(50), nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(20), nullable=True)
    rescheduled_from_slot_id: Mapped[str | None] = mapped_column(String(13), nullable=True)

    confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    no_show_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rescheduled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    confirmation_sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reminder_sent_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    # Bumped on every UPDATE; a stale write raises StaleDataError
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}


# =============================================================================
# Customers
# =============================================================================

class Customer(Base):
    """
    One profile per phone number.

    id is derived from the E.164 phone (see slotbook.utils.identifiers), so
    repeated bookings from the same phone resolve to the same row.
    """

    __tablename__ = "customers"
    __table_args__ = (
        Index("idx_customers_birthday_mmdd", "birthday_mmdd"),
    )

    id: Mapped[str] = mapped_column(String(40), primary_key=True)

    # identity
    first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    last_name: Mapped[str] = mapped_column(String(50), nullable=False)
    phone_e164: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)

    # profile
    birthday: Mapped[str | None] = mapped_column(String(10), nullable=True)  # YYYY-MM-DD
    birthday_mmdd: Mapped[str | None] = mapped_column(String(4), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # consent
    marketing_opt_in: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    marketing_opt_in_at: Mapped[datetime | None] = mapped_column(nullable=True)
    marketing_opt_out_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # stats
    total_bookings: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    no_show_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    first_booking_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_booking_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}


# =============================================================================
# Messaging
# =============================================================================

class OutboundMessage(Base):
    """
    Outbound WhatsApp message waiting for (re)delivery.

    Only created when a direct send fails. The sweeper retries pending
    rows oldest first until they are sent or max_attempts is reached.
    """

    __tablename__ = "outbound_messages"
    __table_args__ = (
        Index("idx_outbound_status_created", "status", "created_at"),
        Index("idx_outbound_idempotency_key", "idempotency_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    booking_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    customer_id: Mapped[str | None] = mapped_column(String(40), nullable=True)
    target_phone: Mapped[str] = mapped_column(String(20), nullable=False)
    message_type: Mapped[str] = mapped_column(String(20), nullable=False)
    message_text: Mapped[str] = mapped_column(Text, nullable=False)
    idempotency_key: Mapped[str | None] = mapped_column(String(64), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DEFAULT_OUTBOUND_STATUS.value
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    last_attempt_at: Mapped[datetime | None] = mapped_column(nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)


class IdempotencyRecord(Base):
    """Delivery ledger keyed by sha256(kind, target, content)."""

    __tablename__ = "idempotency_records"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    target: Mapped[str] = mapped_column(String(20), nullable=False)
    booking_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    text_length: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=IdempotencyStatus.PENDING.value
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)


class NotificationSettings(Base):
    """Shop-wide WhatsApp notification settings (single row, id='default')."""

    __tablename__ = "notification_settings"

    id: Mapped[str] = mapped_column(String(20), primary_key=True, default="default")
    confirmation_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    confirmation_message: Mapped[str] = mapped_column(Text, nullable=False)
    reminder_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    reminder_minutes_before: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    reminder_message: Mapped[str] = mapped_column(Text, nullable=False)
    cancellation_message: Mapped[str] = mapped_column(Text, nullable=False)
    birthday_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    birthday_message: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)
    updated_by: Mapped[str | None] = mapped_column(String(50), nullable=True)
