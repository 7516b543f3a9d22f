"""Reservation service - the only writer of slots, bookings and customer counters.

Handles:
- Booking creation (slot lock + booking + customer merge in one transaction)
- Cancellation (admin and by customer cancel code)
- Reschedule (atomic slot swap)
- Status transitions with customer counters
- Admin slot blocks, availability and booking listings

Every mutation runs through run_transaction: reads first, then writes,
then a single commit. A held slot is a row in ``slots``; its primary key
(provider_id, slot_id) is what makes double booking impossible.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import NamedTuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from slotbook.core.structured_logging import build_log_context
from slotbook.db.enums import BookingStatus, CancelledBy, SlotKind, WhatsappStatus
from slotbook.db.models import Booking, Customer, Provider, Slot, new_id
from slotbook.db.transactions import run_transaction
from slotbook.schemas.auth import ActorContext
from slotbook.schemas.provider import WeeklySchedule
from slotbook.services import customer_service
from slotbook.services.booking_status import (
    MANUAL_TARGETS,
    IllegalStatusTransitionError,
    is_active,
    validate_transition,
)
from slotbook.services.catalog_service import ServiceCatalog
from slotbook.services.customer_service import CustomerInput
from slotbook.services.schedule_rules import closed_reason, day_schedule_for
from slotbook.utils.identifiers import (
    customer_id_for_phone,
    generate_cancel_code,
    hash_cancel_code,
)
from slotbook.utils.slots import (
    date_key_for,
    day_slots,
    is_on_slot_grid,
    parse_date_key,
    slot_id_for,
    to_local,
    utc,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Errors
# =============================================================================

class ReservationError(Exception):
    """Base exception for reservation operations."""
    pass


class ReservationValidationError(ReservationError):
    """Request cannot be honored as given (closed day, bad time, inactive service)."""
    pass


class SlotConflictError(ReservationError):
    """Slot is already held. Pick a different slot; retrying the same one will fail."""

    def __init__(self, provider_id: str, slot_id: str):
        self.provider_id = provider_id
        self.slot_id = slot_id
        super().__init__(f"Slot {slot_id} is already taken for provider {provider_id}")


class BookingNotFoundError(ReservationError):
    """Booking does not exist (or is not visible to the actor)."""
    pass


class ProviderNotFoundError(ReservationError):
    """Provider does not exist."""
    pass


class ReservationAccessError(ReservationError):
    """Actor is not allowed to act on this provider's calendar."""
    pass


class SlotNotBlockedError(ReservationError):
    """Slot is free or held by a booking, so there is no block to remove."""
    pass


# =============================================================================
# Types
# =============================================================================

class CreateBookingResult(NamedTuple):
    """New booking plus the raw cancel code (only returned once, never stored)."""
    booking: Booking
    cancel_code: str


class CancelResult(NamedTuple):
    booking: Booking
    cancelled: bool  # False when the booking was already not cancellable


class BlockResult(NamedTuple):
    created_slot_ids: list[str]
    skipped_slot_ids: list[str]


# =============================================================================
# Helpers
# =============================================================================

def _now() -> datetime:
    return datetime.now(timezone.utc)


def _load_slot(db: Session, provider_id: str, slot_id: str) -> Slot | None:
    return db.get(Slot, (provider_id, slot_id))


def _load_booking_for_update(db: Session, booking_id: str) -> Booking:
    # Row lock where supported; the version column catches the rest (SQLite)
    booking = db.get(Booking, booking_id, with_for_update=True, populate_existing=True)
    if booking is None:
        raise BookingNotFoundError(f"Booking {booking_id} not found")
    return booking


def _check_actor(actor: ActorContext | None, provider_id: str) -> None:
    if actor is not None and not actor.can_access_provider(provider_id):
        raise ReservationAccessError("Not allowed to manage this provider's calendar")


def get_provider(db: Session, provider_id: str) -> Provider:
    provider = db.get(Provider, provider_id)
    if provider is None:
        raise ProviderNotFoundError(f"Provider {provider_id} not found")
    return provider


def provider_schedule(provider: Provider) -> WeeklySchedule | None:
    return WeeklySchedule.from_stored(provider.schedule)


def list_providers(db: Session, active_only: bool = True) -> list[Provider]:
    query = db.query(Provider)
    if active_only:
        query = query.filter(Provider.active.is_(True))
    return query.order_by(Provider.name).all()


def _ensure_bookable(provider: Provider, slot_start: datetime) -> None:
    reason = closed_reason(slot_start, provider_schedule(provider))
    if reason:
        raise ReservationValidationError(reason)


# =============================================================================
# Create
# =============================================================================

def create_booking(
    db: Session,
    catalog: ServiceCatalog,
    *,
    provider_id: str,
    service_id: str,
    slot_start: datetime,
    customer: CustomerInput,
    created_by: str | None = None,
    whatsapp_already_sent: bool = False,
) -> CreateBookingResult:
    """
    Reserve a slot for a customer.

    Raises:
        ReservationValidationError: inactive service/provider, closed day,
            off-grid time, break window
        ProviderNotFoundError: unknown provider
        SlotConflictError: the slot is already held
    """
    if not is_on_slot_grid(slot_start):
        raise ReservationValidationError(closed_reason(slot_start, None))

    service = catalog.get_service(db, service_id)
    if service is None or not service.active:
        raise ReservationValidationError(f"Service {service_id} is not available")

    provider = get_provider(db, provider_id)
    if not provider.active:
        raise ReservationValidationError("Provider is not taking bookings")
    _ensure_bookable(provider, slot_start)

    local_start = to_local(slot_start)
    slot_id = slot_id_for(local_start)
    date_key = date_key_for(local_start)
    customer_id = customer_id_for_phone(customer.phone_e164)
    booking_id = new_id()
    cancel_code = generate_cancel_code()
    cancel_code_hash = hash_cancel_code(cancel_code)

    def work(tx: Session) -> Booking:
        existing_slot = _load_slot(tx, provider_id, slot_id)
        existing_customer = tx.get(Customer, customer_id, populate_existing=True)
        if existing_slot is not None:
            raise SlotConflictError(provider_id, slot_id)

        now = _now()
        tx.add(Slot(
            provider_id=provider_id,
            slot_id=slot_id,
            slot_start=utc(local_start),
            date_key=date_key,
            kind=SlotKind.BOOKING.value,
            booking_id=booking_id,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        ))
        booking = Booking(
            id=booking_id,
            customer_id=customer_id,
            provider_id=provider_id,
            service_id=service_id,
            slot_start=utc(local_start),
            date_key=date_key,
            status=BookingStatus.BOOKED.value,
            whatsapp_status=(
                WhatsappStatus.SENT.value if whatsapp_already_sent else WhatsappStatus.PENDING.value
            ),
            confirmation_sent_at=now if whatsapp_already_sent else None,
            cancel_code_hash=cancel_code_hash,
            customer_first_name=customer.first_name,
            customer_last_name=customer.last_name,
            customer_phone_e164=customer.phone_e164,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        tx.add(booking)
        tx.add(customer_service.merge_for_booking(existing_customer, customer, now))
        return booking

    booking = run_transaction(db, work)
    logger.info(
        "Booking created slot=%s",
        slot_id,
        extra=build_log_context(booking_id=booking.id, provider_id=provider_id),
    )
    return CreateBookingResult(booking=booking, cancel_code=cancel_code)


# =============================================================================
# Cancel
# =============================================================================

def cancel_booking(
    db: Session,
    booking_id: str,
    *,
    actor: ActorContext | None = None,
    cancelled_by: CancelledBy = CancelledBy.ADMIN,
) -> Booking:
    """
    Cancel an active booking and free its slot in one transaction.

    Raises:
        BookingNotFoundError, ReservationAccessError,
        IllegalStatusTransitionError (already completed/no-show/cancelled)
    """

    def work(tx: Session) -> Booking:
        booking = _load_booking_for_update(tx, booking_id)
        _check_actor(actor, booking.provider_id)
        slot = _load_slot(tx, booking.provider_id, slot_id_for(booking.slot_start))
        validate_transition(booking.status, BookingStatus.CANCELLED)

        now = _now()
        if slot is not None and slot.booking_id == booking.id:
            tx.delete(slot)
        booking.status = BookingStatus.CANCELLED.value
        booking.cancelled_at = now
        booking.cancelled_by = cancelled_by.value
        booking.updated_at = now
        return booking

    booking = run_transaction(db, work)
    logger.info(
        "Booking cancelled by=%s",
        cancelled_by.value,
        extra=build_log_context(booking_id=booking.id, provider_id=booking.provider_id),
    )
    return booking


def cancel_by_code(db: Session, cancel_code: str) -> CancelResult:
    """
    Customer self-service cancel.

    The booking is found by the hash of the presented code; a booking that
    is no longer cancellable is a no-op rather than an error.
    """
    if not cancel_code or not 8 <= len(cancel_code) <= 128:
        raise ReservationValidationError("Invalid cancel code")

    booking = (
        db.query(Booking)
        .filter(Booking.cancel_code_hash == hash_cancel_code(cancel_code))
        .first()
    )
    if booking is None:
        raise BookingNotFoundError("Booking not found")
    if not is_active(booking.status):
        return CancelResult(booking=booking, cancelled=False)

    try:
        cancelled = cancel_booking(db, booking.id, cancelled_by=CancelledBy.CUSTOMER)
    except IllegalStatusTransitionError:
        # Lost a race with another cancel / completion
        return CancelResult(booking=db.get(Booking, booking.id), cancelled=False)
    return CancelResult(booking=cancelled, cancelled=True)


# =============================================================================
# Reschedule
# =============================================================================

def reschedule_booking(
    db: Session,
    booking_id: str,
    new_slot_start: datetime,
    *,
    actor: ActorContext | None = None,
) -> Booking:
    """
    Move an active booking to another slot of the same provider.

    The new slot is claimed and the old one released in the same commit;
    status is unchanged.

    Raises:
        BookingNotFoundError, ReservationAccessError,
        ReservationValidationError (new time not bookable),
        SlotConflictError (new slot held),
        IllegalStatusTransitionError (booking no longer active)
    """
    current = db.get(Booking, booking_id)
    if current is None:
        raise BookingNotFoundError(f"Booking {booking_id} not found")
    _check_actor(actor, current.provider_id)
    provider = get_provider(db, current.provider_id)
    _ensure_bookable(provider, new_slot_start)

    local_start = to_local(new_slot_start)
    new_slot_id = slot_id_for(local_start)
    new_date_key = date_key_for(local_start)

    def work(tx: Session) -> Booking:
        booking = _load_booking_for_update(tx, booking_id)
        old_slot_id = slot_id_for(booking.slot_start)
        new_slot = _load_slot(tx, booking.provider_id, new_slot_id)
        old_slot = _load_slot(tx, booking.provider_id, old_slot_id)
        if not is_active(booking.status):
            raise IllegalStatusTransitionError(booking.status, "rescheduled")
        if new_slot_id == old_slot_id:
            return booking
        if new_slot is not None:
            raise SlotConflictError(booking.provider_id, new_slot_id)

        now = _now()
        tx.add(Slot(
            provider_id=booking.provider_id,
            slot_id=new_slot_id,
            slot_start=utc(local_start),
            date_key=new_date_key,
            kind=SlotKind.BOOKING.value,
            booking_id=booking.id,
            created_by=actor.actor_id if actor else None,
            created_at=now,
            updated_at=now,
        ))
        if old_slot is not None and old_slot.booking_id == booking.id:
            tx.delete(old_slot)
        booking.slot_start = utc(local_start)
        booking.date_key = new_date_key
        booking.rescheduled_from_slot_id = old_slot_id
        booking.rescheduled_at = now
        booking.reminder_sent_at = None
        booking.updated_at = now
        return booking

    booking = run_transaction(db, work)
    logger.info(
        "Booking rescheduled to slot=%s",
        new_slot_id,
        extra=build_log_context(booking_id=booking.id, provider_id=booking.provider_id),
    )
    return booking


# =============================================================================
# Status transitions
# =============================================================================

def transition_status(
    db: Session,
    booking_id: str,
    next_status: str | BookingStatus,
    *,
    actor: ActorContext | None = None,
) -> Booking:
    """
    Confirm, complete or mark a booking as no-show.

    Customer counters (total_completed, no_show_count) move in the same
    transaction as the status write.
    """
    try:
        target = BookingStatus(next_status)
    except ValueError as exc:
        raise ReservationValidationError(f"Unknown status: {next_status}") from exc
    if target not in MANUAL_TARGETS:
        raise ReservationValidationError(f"Status {target.value} cannot be set directly")

    def work(tx: Session) -> Booking:
        booking = _load_booking_for_update(tx, booking_id)
        _check_actor(actor, booking.provider_id)
        customer = tx.get(Customer, booking.customer_id, populate_existing=True)
        validate_transition(booking.status, target)

        now = _now()
        booking.status = target.value
        booking.updated_at = now
        if target == BookingStatus.CONFIRMED:
            booking.confirmed_at = now
        elif target == BookingStatus.COMPLETED:
            booking.completed_at = now
        elif target == BookingStatus.NO_SHOW:
            booking.no_show_at = now
        customer_service.record_outcome(customer, target, now)
        return booking

    booking = run_transaction(db, work)
    logger.info(
        "Booking status -> %s",
        target.value,
        extra=build_log_context(booking_id=booking.id, provider_id=booking.provider_id),
    )
    return booking


# =============================================================================
# Delivery bookkeeping
# =============================================================================

def mark_whatsapp_sent(
    db: Session,
    booking_id: str,
    *,
    actor: ActorContext | None = None,
) -> Booking:
    """Record that the booking confirmation reached the customer."""

    def work(tx: Session) -> Booking:
        booking = _load_booking_for_update(tx, booking_id)
        _check_actor(actor, booking.provider_id)
        now = _now()
        booking.whatsapp_status = WhatsappStatus.SENT.value
        booking.confirmation_sent_at = booking.confirmation_sent_at or now
        booking.updated_at = now
        return booking

    return run_transaction(db, work)


def mark_reminder_sent(db: Session, booking_id: str) -> Booking:
    def work(tx: Session) -> Booking:
        booking = _load_booking_for_update(tx, booking_id)
        booking.reminder_sent_at = _now()
        return booking

    return run_transaction(db, work)


# =============================================================================
# Admin blocks
# =============================================================================

def block_slots(
    db: Session,
    *,
    provider_id: str,
    date_key: str,
    start_time: str,
    end_time: str,
    reason: str | None = None,
    actor: ActorContext | None = None,
) -> BlockResult:
    """Block every free slot in [start_time, end_time); held slots are skipped."""
    _check_actor(actor, provider_id)
    provider = get_provider(db, provider_id)
    try:
        day_start = parse_date_key(date_key)
    except ValueError as exc:
        raise ReservationValidationError(f"Invalid date: {date_key}") from exc
    if end_time <= start_time:
        raise ReservationValidationError("end_time must be after start_time")

    starts = day_slots(date_key, start_time, end_time)
    if not starts or not all(is_on_slot_grid(s) for s in starts):
        raise ReservationValidationError("Block range must align to the slot grid")
    if not day_schedule_for(day_start, provider_schedule(provider)).active:
        raise ReservationValidationError("Provider is closed on this day")

    wanted = {slot_id_for(s): s for s in starts}

    def work(tx: Session) -> BlockResult:
        held = {
            row.slot_id
            for row in tx.query(Slot.slot_id).filter(
                Slot.provider_id == provider_id,
                Slot.slot_id.in_(list(wanted)),
            )
        }
        now = _now()
        created, skipped = [], []
        for slot_id, start in wanted.items():
            if slot_id in held:
                skipped.append(slot_id)
                continue
            tx.add(Slot(
                provider_id=provider_id,
                slot_id=slot_id,
                slot_start=utc(start),
                date_key=date_key,
                kind=SlotKind.BLOCK.value,
                reason=reason,
                created_by=actor.actor_id if actor else None,
                created_at=now,
                updated_at=now,
            ))
            created.append(slot_id)
        return BlockResult(created_slot_ids=created, skipped_slot_ids=skipped)

    result = run_transaction(db, work)
    logger.info(
        "Blocked %s slots on %s (skipped %s)",
        len(result.created_slot_ids),
        date_key,
        len(result.skipped_slot_ids),
        extra=build_log_context(provider_id=provider_id),
    )
    return result


def unblock_slot(
    db: Session,
    *,
    provider_id: str,
    slot_id: str,
    actor: ActorContext | None = None,
) -> None:
    """Remove an admin block. Booking-held slots are left alone."""
    _check_actor(actor, provider_id)

    def work(tx: Session) -> None:
        slot = _load_slot(tx, provider_id, slot_id)
        if slot is None:
            raise SlotNotBlockedError(f"Slot {slot_id} is not blocked")
        if slot.kind != SlotKind.BLOCK.value:
            raise SlotNotBlockedError(f"Slot {slot_id} is held by a booking")
        tx.delete(slot)

    run_transaction(db, work)


# =============================================================================
# Reads
# =============================================================================

def get_booking(db: Session, booking_id: str, actor: ActorContext | None = None) -> Booking:
    booking = db.get(Booking, booking_id)
    if booking is None:
        raise BookingNotFoundError(f"Booking {booking_id} not found")
    if actor is not None and not actor.can_access_provider(booking.provider_id):
        raise BookingNotFoundError(f"Booking {booking_id} not found")
    return booking


def get_availability(db: Session, provider_id: str, date_key: str) -> dict:
    """Held slots for a provider on a day, split by kind, plus that day's hours."""
    provider = get_provider(db, provider_id)
    try:
        day = parse_date_key(date_key)
    except ValueError as exc:
        raise ReservationValidationError(f"Invalid date: {date_key}") from exc

    rows = (
        db.query(Slot.slot_id, Slot.kind)
        .filter(Slot.provider_id == provider_id, Slot.date_key == date_key)
        .order_by(Slot.slot_id)
        .all()
    )
    return {
        "provider_id": provider_id,
        "date_key": date_key,
        "booked_slot_ids": [r.slot_id for r in rows if r.kind == SlotKind.BOOKING.value],
        "blocked_slot_ids": [r.slot_id for r in rows if r.kind == SlotKind.BLOCK.value],
        "schedule": day_schedule_for(day, provider_schedule(provider)),
    }


def list_bookings(
    db: Session,
    *,
    date_key: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    provider_id: str | None = None,
    status: BookingStatus | None = None,
    actor: ActorContext | None = None,
    limit: int = 200,
) -> list[Booking]:
    """List bookings for the agenda views, earliest slot first."""
    scoped = actor.scoped_provider_id if actor else None
    if scoped and provider_id and provider_id != scoped:
        raise ReservationAccessError("Not allowed to view this provider's calendar")
    provider_id = scoped or provider_id

    query = db.query(Booking)
    if date_key:
        query = query.filter(Booking.date_key == date_key)
    if date_from:
        query = query.filter(Booking.date_key >= date_from)
    if date_to:
        query = query.filter(Booking.date_key <= date_to)
    if provider_id:
        query = query.filter(Booking.provider_id == provider_id)
    if status:
        query = query.filter(Booking.status == status.value)
    return query.order_by(Booking.slot_start, Booking.id).limit(limit).all()


def week_summary(
    db: Session,
    start_date_key: str,
    *,
    provider_id: str | None = None,
    actor: ActorContext | None = None,
) -> list[dict]:
    """Per-day booking counts by status for the 7 days starting at start_date_key."""
    try:
        start = parse_date_key(start_date_key)
    except ValueError as exc:
        raise ReservationValidationError(f"Invalid date: {start_date_key}") from exc
    keys = [date_key_for(start + timedelta(days=i)) for i in range(7)]

    scoped = actor.scoped_provider_id if actor else None
    provider_id = scoped or provider_id

    query = (
        db.query(Booking.date_key, Booking.status, func.count(Booking.id))
        .filter(Booking.date_key >= keys[0], Booking.date_key <= keys[-1])
    )
    if provider_id:
        query = query.filter(Booking.provider_id == provider_id)
    counts: dict[str, dict[str, int]] = {key: {} for key in keys}
    for day_key, status, count in query.group_by(Booking.date_key, Booking.status):
        counts[day_key][status] = count
    return [
        {"date_key": key, "total": sum(counts[key].values()), "by_status": counts[key]}
        for key in keys
    ]
