"""Notification service - WhatsApp dispatch, retry sweep, reminders and broadcasts.

Dispatch makes one direct gateway attempt. Failures land in the outbound
queue; the sweeper retries pending items oldest first, one at a time.
The idempotency ledger is consulted before every send, so a message that
already went out is never delivered twice.
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, NamedTuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from slotbook.core.config import settings
from slotbook.core.structured_logging import build_log_context
from slotbook.db.enums import ACTIVE_BOOKING_STATUSES, MediaType, MessageType, OutboundStatus
from slotbook.db.models import Booking, Customer, OutboundMessage, Provider
from slotbook.services import (
    customer_service,
    idempotency_service,
    notification_settings_service,
    notification_templates,
    outbound_queue_service,
    reservation_service,
)
from slotbook.services.catalog_service import ServiceCatalog
from slotbook.services.messaging_gateway import GatewayError, WhatsAppGateway
from slotbook.utils.normalization import mask_phone
from slotbook.utils.slots import to_local

logger = logging.getLogger(__name__)


# =============================================================================
# Types
# =============================================================================

class DispatchResult(NamedTuple):
    """Outcome of one dispatch. Never raised to the triggering operation."""
    sent: bool
    queued: bool
    deduped: bool = False
    skipped: bool = False
    error: str | None = None
    queue_item_id: int | None = None


SKIPPED = DispatchResult(sent=False, queued=False, skipped=True)


class SweepResult(NamedTuple):
    processed: int
    sent: int
    failed: int
    retrying: int


class ReminderRunResult(NamedTuple):
    processed: int
    sent: int
    queued: int


class BroadcastResult(NamedTuple):
    total: int
    sent: int
    failed: int
    skipped: int
    errors: list[dict[str, str]]


# =============================================================================
# Dispatch
# =============================================================================

def _dispatch(
    db: Session,
    *,
    kind: MessageType,
    target_phone: str,
    content_signature: str,
    send: Callable[[], Any],
    queue_text: str | None = None,
    booking_id: str | None = None,
    customer_id: str | None = None,
) -> DispatchResult:
    key = idempotency_service.make_key(kind.value, target_phone, content_signature)
    if idempotency_service.is_sent(db, key):
        return DispatchResult(sent=True, queued=False, deduped=True)
    if queue_text is not None and outbound_queue_service.has_open_item(db, key):
        return DispatchResult(sent=False, queued=True, deduped=True)

    idempotency_service.claim(
        db,
        key,
        kind=kind.value,
        target=target_phone,
        booking_id=booking_id,
        text_length=len(queue_text or content_signature),
    )
    try:
        send()
    except GatewayError as exc:
        logger.warning(
            "WhatsApp send failed: %s",
            exc.message,
            extra=build_log_context(booking_id=booking_id, message_type=kind.value, phone=target_phone),
        )
        if queue_text is None:
            return DispatchResult(sent=False, queued=False, error=exc.message)
        item = outbound_queue_service.enqueue(
            db,
            target_phone=target_phone,
            message_type=kind,
            message_text=queue_text,
            booking_id=booking_id,
            customer_id=customer_id,
            idempotency_key=key,
            last_error=exc.message,
        )
        return DispatchResult(sent=False, queued=True, error=exc.message, queue_item_id=item.id)

    idempotency_service.mark_sent(db, key)
    return DispatchResult(sent=True, queued=False)


def dispatch_text(
    db: Session,
    gateway: WhatsAppGateway,
    *,
    kind: MessageType,
    target_phone: str,
    text: str,
    booking_id: str | None = None,
    customer_id: str | None = None,
    content_signature: str | None = None,
    queue_on_failure: bool = True,
) -> DispatchResult:
    """
    Deliver a text once.

    Returns immediately (without calling the gateway) when the same
    (kind, target, content) was already delivered or is already queued.
    On gateway failure the message is queued for the sweeper unless
    queue_on_failure is False.
    """
    return _dispatch(
        db,
        kind=kind,
        target_phone=target_phone,
        content_signature=content_signature or text,
        send=lambda: gateway.send_text(target_phone, text),
        queue_text=text if queue_on_failure else None,
        booking_id=booking_id,
        customer_id=customer_id,
    )


def _best_effort(db: Session, action: Callable[[], Any], what: str, booking_id: str | None) -> None:
    """Secondary bookkeeping after a delivery; its failure is not a delivery failure."""
    try:
        action()
    except (SQLAlchemyError, reservation_service.ReservationError) as exc:
        db.rollback()
        logger.warning(
            "Could not %s: %s",
            what,
            type(exc).__name__,
            extra=build_log_context(booking_id=booking_id),
        )


def _provider_name(db: Session, provider_id: str) -> str:
    provider = db.get(Provider, provider_id)
    return provider.name if provider else provider_id


# =============================================================================
# Booking notifications
# =============================================================================

def send_booking_confirmation(
    db: Session,
    gateway: WhatsAppGateway,
    catalog: ServiceCatalog,
    booking_id: str,
    cancel_code: str,
    base_url: str | None = None,
) -> DispatchResult:
    """Confirmation with the cancel link; marks whatsapp_status=sent on delivery."""
    config = notification_settings_service.get_settings(db)
    if not config.confirmation_enabled:
        return SKIPPED

    booking = reservation_service.get_booking(db, booking_id)
    text = notification_templates.render_confirmation(
        first_name=booking.customer_first_name,
        custom_message=config.confirmation_message,
        service_label=catalog.label_for(db, booking.service_id),
        provider_name=_provider_name(db, booking.provider_id),
        slot_start=booking.slot_start,
        link=notification_templates.cancel_link(
            base_url or settings.WEB_ORIGIN, booking.id, cancel_code
        ),
    )
    result = dispatch_text(
        db,
        gateway,
        kind=MessageType.CONFIRMATION,
        target_phone=booking.customer_phone_e164,
        text=text,
        booking_id=booking.id,
        customer_id=booking.customer_id,
    )
    if result.sent:
        _best_effort(
            db,
            lambda: reservation_service.mark_whatsapp_sent(db, booking_id),
            "mark booking confirmation sent",
            booking_id,
        )
    return result


def send_reschedule_notice(
    db: Session,
    gateway: WhatsAppGateway,
    catalog: ServiceCatalog,
    booking_id: str,
) -> DispatchResult:
    booking = reservation_service.get_booking(db, booking_id)
    text = notification_templates.render_reschedule(
        first_name=booking.customer_first_name,
        service_label=catalog.label_for(db, booking.service_id),
        provider_name=_provider_name(db, booking.provider_id),
        slot_start=booking.slot_start,
    )
    moved_at = booking.rescheduled_at.isoformat() if booking.rescheduled_at else ""
    return dispatch_text(
        db,
        gateway,
        kind=MessageType.RESCHEDULE,
        target_phone=booking.customer_phone_e164,
        text=text,
        booking_id=booking.id,
        customer_id=booking.customer_id,
        # One notice per move; moving back to an earlier time is a new message
        content_signature=f"{booking.id}:{moved_at}:{text}",
    )


def send_cancellation_confirmation(
    db: Session,
    gateway: WhatsAppGateway,
    booking_id: str,
    base_url: str | None = None,
) -> DispatchResult:
    config = notification_settings_service.get_settings(db)
    booking = reservation_service.get_booking(db, booking_id)
    text = notification_templates.render_cancellation(
        first_name=booking.customer_first_name,
        custom_message=config.cancellation_message,
        booking_url=base_url or settings.WEB_ORIGIN,
    )
    return dispatch_text(
        db,
        gateway,
        kind=MessageType.CANCELLATION,
        target_phone=booking.customer_phone_e164,
        text=text,
        booking_id=booking.id,
        customer_id=booking.customer_id,
        # Same wording for every cancel of this booking; keyed per booking
        content_signature=f"{booking.id}:{text}",
    )


def send_booking_reminder(
    db: Session,
    gateway: WhatsAppGateway,
    catalog: ServiceCatalog,
    booking: Booking,
    custom_message: str,
) -> DispatchResult:
    text = notification_templates.render_reminder(
        first_name=booking.customer_first_name,
        custom_message=custom_message,
        service_label=catalog.label_for(db, booking.service_id),
        slot_start=booking.slot_start,
    )
    result = dispatch_text(
        db,
        gateway,
        kind=MessageType.REMINDER,
        target_phone=booking.customer_phone_e164,
        text=text,
        booking_id=booking.id,
        customer_id=booking.customer_id,
        content_signature=f"{booking.id}:{booking.slot_start.isoformat()}:{text}",
    )
    if result.sent:
        booking_id = booking.id
        _best_effort(
            db,
            lambda: reservation_service.mark_reminder_sent(db, booking_id),
            "mark reminder sent",
            booking_id,
        )
    return result


def bookings_due_for_reminder(
    db: Session, now: datetime, minutes_before: int
) -> list[Booking]:
    """Active bookings starting within [now, now + minutes_before + 5min] with no reminder yet."""
    window_end = now + timedelta(minutes=minutes_before + 5)
    return (
        db.query(Booking)
        .filter(
            Booking.status.in_([s.value for s in ACTIVE_BOOKING_STATUSES]),
            Booking.slot_start >= now,
            Booking.slot_start <= window_end,
            Booking.reminder_sent_at.is_(None),
        )
        .order_by(Booking.slot_start, Booking.id)
        .all()
    )


def process_reminders(
    db: Session,
    gateway: WhatsAppGateway,
    catalog: ServiceCatalog,
    now: datetime | None = None,
) -> ReminderRunResult:
    config = notification_settings_service.get_settings(db)
    if not config.reminder_enabled:
        return ReminderRunResult(processed=0, sent=0, queued=0)

    now = now or datetime.now(timezone.utc)
    bookings = bookings_due_for_reminder(db, now, config.reminder_minutes_before)
    custom_message = config.reminder_message
    sent = queued = 0
    for booking in bookings:
        result = send_booking_reminder(db, gateway, catalog, booking, custom_message)
        if result.sent:
            sent += 1
        elif result.queued:
            queued += 1
    if bookings:
        logger.info("Reminders processed=%s sent=%s queued=%s", len(bookings), sent, queued)
    return ReminderRunResult(processed=len(bookings), sent=sent, queued=queued)


# =============================================================================
# Queue sweep
# =============================================================================

def _after_queued_delivery(db: Session, item: OutboundMessage) -> None:
    if not item.booking_id:
        return
    booking_id = item.booking_id
    if item.message_type == MessageType.CONFIRMATION.value:
        _best_effort(
            db,
            lambda: reservation_service.mark_whatsapp_sent(db, booking_id),
            "mark booking confirmation sent",
            booking_id,
        )
    elif item.message_type == MessageType.REMINDER.value:
        _best_effort(
            db,
            lambda: reservation_service.mark_reminder_sent(db, booking_id),
            "mark reminder sent",
            booking_id,
        )


def _retry_item(db: Session, gateway: WhatsAppGateway, item: OutboundMessage) -> OutboundStatus | None:
    """Deliver one queued item. Returns None when another sweeper holds it."""
    key = item.idempotency_key
    if key and idempotency_service.is_sent(db, key):
        outbound_queue_service.mark_sent(db, item)
        return OutboundStatus.SENT
    if item.attempts >= item.max_attempts:
        # Last attempt was claimed but never recorded (process died mid-send)
        outbound_queue_service.mark_attempt_failed(db, item, item.last_error or "attempt interrupted")
        return OutboundStatus.FAILED
    if not outbound_queue_service.claim_attempt(db, item):
        logger.info(
            "Outbound message already claimed, skipping",
            extra=build_log_context(queue_item_id=item.id),
        )
        return None

    try:
        gateway.send_text(item.target_phone, item.message_text)
    except GatewayError as exc:
        item = outbound_queue_service.mark_attempt_failed(db, item, exc.message)
        context = build_log_context(
            queue_item_id=item.id, booking_id=item.booking_id, message_type=item.message_type
        )
        if item.status == OutboundStatus.FAILED.value:
            logger.error(
                "Outbound message gave up after %s attempts: %s",
                item.attempts,
                exc.message,
                extra=context,
            )
            return OutboundStatus.FAILED
        logger.warning(
            "Outbound retry %s/%s failed: %s",
            item.attempts,
            item.max_attempts,
            exc.message,
            extra=context,
        )
        return OutboundStatus.PENDING

    if key:
        idempotency_service.mark_sent(db, key, commit=False)
    outbound_queue_service.mark_sent(db, item)
    _after_queued_delivery(db, item)
    return OutboundStatus.SENT


def sweep_queue(
    db: Session,
    gateway: WhatsAppGateway,
    *,
    limit: int | None = None,
    delay_seconds: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> SweepResult:
    """
    Retry up to ``limit`` pending items, oldest first, strictly one at a time.

    Each attempt is claimed in the database before the send, so a second
    sweeper (worker plus cron endpoint) skips items this one is delivering.

    A fixed delay separates sends to stay under the gateway's per-instance
    rate limit. An error on one item never stops the rest of the batch.
    """
    batch = settings.SWEEP_BATCH_SIZE if limit is None else limit
    delay = settings.SWEEP_SEND_DELAY_SECONDS if delay_seconds is None else delay_seconds
    items = outbound_queue_service.get_pending(db, limit=batch)

    sent = failed = retrying = 0
    for index, item in enumerate(items):
        if index and delay > 0:
            sleep(delay)
        item_id = item.id
        try:
            outcome = _retry_item(db, gateway, item)
        except Exception:
            db.rollback()
            logger.exception(
                "Unexpected error retrying outbound message",
                extra=build_log_context(queue_item_id=item_id),
            )
            retrying += 1
            continue
        if outcome is None:
            continue
        if outcome == OutboundStatus.SENT:
            sent += 1
        elif outcome == OutboundStatus.FAILED:
            failed += 1
        else:
            retrying += 1

    processed = sent + failed + retrying
    if processed:
        logger.info(
            "Queue sweep processed=%s sent=%s failed=%s retrying=%s",
            processed, sent, failed, retrying,
        )
    return SweepResult(processed=processed, sent=sent, failed=failed, retrying=retrying)


# =============================================================================
# Broadcasts
# =============================================================================

def _broadcast(
    db: Session,
    recipients: list[Customer],
    *,
    kind: MessageType,
    signature_prefix: str,
    send_one: Callable[[Customer], tuple[str, Callable[[], Any]]],
    delay_seconds: float | None,
    sleep: Callable[[float], None],
) -> BroadcastResult:
    delay = settings.BROADCAST_SEND_DELAY_SECONDS if delay_seconds is None else delay_seconds
    errors: list[dict[str, str]] = []
    sent = failed = skipped = 0
    attempted = 0

    for customer in recipients:
        content, send = send_one(customer)
        if attempted and delay > 0:
            sleep(delay)
        result = _dispatch(
            db,
            kind=kind,
            target_phone=customer.phone_e164,
            content_signature=f"{signature_prefix}:{content}",
            send=send,
        )
        if result.deduped:
            skipped += 1
            continue
        attempted += 1
        if result.sent:
            sent += 1
        else:
            failed += 1
            if len(errors) < settings.BROADCAST_MAX_ERRORS:
                errors.append({
                    "customer_id": customer.id,
                    "phone": mask_phone(customer.phone_e164),
                    "error": result.error or "unknown error",
                })

    logger.info(
        "Broadcast kind=%s total=%s sent=%s failed=%s skipped=%s",
        kind.value, len(recipients), sent, failed, skipped,
    )
    return BroadcastResult(
        total=len(recipients), sent=sent, failed=failed, skipped=skipped, errors=errors
    )


def broadcast_text(
    db: Session,
    gateway: WhatsAppGateway,
    message: str,
    *,
    delay_seconds: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
    today: str | None = None,
) -> BroadcastResult:
    """
    Send a personalised text to every reachable customer.

    Single attempt per recipient, no queueing; the same text is not sent
    twice to one customer on the same day.
    """
    day = today or to_local(datetime.now(timezone.utc)).strftime("%Y-%m-%d")

    def send_one(customer: Customer):
        text = notification_templates.personalize(message, customer.first_name)
        return text, lambda: gateway.send_text(customer.phone_e164, text)

    return _broadcast(
        db,
        customer_service.broadcast_recipients(db),
        kind=MessageType.BROADCAST,
        signature_prefix=day,
        send_one=send_one,
        delay_seconds=delay_seconds,
        sleep=sleep,
    )


def broadcast_media(
    db: Session,
    gateway: WhatsAppGateway,
    media: str,
    *,
    caption: str | None = None,
    mediatype: MediaType = MediaType.IMAGE,
    delay_seconds: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
    today: str | None = None,
) -> BroadcastResult:
    """Send media with an optional personalised caption to every reachable customer."""
    day = today or to_local(datetime.now(timezone.utc)).strftime("%Y-%m-%d")

    def send_one(customer: Customer):
        text = notification_templates.personalize(caption or "", customer.first_name)
        return (
            f"{media}|{text}",
            lambda: gateway.send_media(
                customer.phone_e164, media, caption=text or None, mediatype=mediatype
            ),
        )

    return _broadcast(
        db,
        customer_service.broadcast_recipients(db),
        kind=MessageType.BROADCAST,
        signature_prefix=day,
        send_one=send_one,
        delay_seconds=delay_seconds,
        sleep=sleep,
    )


def process_birthday_messages(
    db: Session,
    gateway: WhatsAppGateway,
    *,
    today: datetime | None = None,
    delay_seconds: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> BroadcastResult:
    """Birthday greeting for customers born on today's shop-local date, once per year."""
    config = notification_settings_service.get_settings(db)
    if not config.birthday_enabled:
        return BroadcastResult(total=0, sent=0, failed=0, skipped=0, errors=[])

    local_today = to_local(today or datetime.now(timezone.utc))
    recipients = [
        c for c in customer_service.birthdays_on(db, local_today.strftime("%m%d"))
        if c.marketing_opt_out_at is None
    ]
    template = config.birthday_message

    def send_one(customer: Customer):
        text = notification_templates.personalize(template, customer.first_name)
        return text, lambda: gateway.send_text(customer.phone_e164, text)

    return _broadcast(
        db,
        recipients,
        kind=MessageType.BIRTHDAY,
        signature_prefix=str(local_today.year),
        send_one=send_one,
        delay_seconds=delay_seconds,
        sleep=sleep,
    )
