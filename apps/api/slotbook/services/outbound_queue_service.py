"""Outbound queue service - persistence for messages awaiting redelivery."""

from datetime import datetime, timezone

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from slotbook.core.config import settings
from slotbook.db.enums import MessageType, OutboundStatus
from slotbook.db.models import OutboundMessage


def enqueue(
    db: Session,
    *,
    target_phone: str,
    message_type: MessageType,
    message_text: str,
    booking_id: str | None = None,
    customer_id: str | None = None,
    idempotency_key: str | None = None,
    last_error: str | None = None,
) -> OutboundMessage:
    """Queue a message that could not be delivered directly (attempts = 0)."""
    item = OutboundMessage(
        booking_id=booking_id,
        customer_id=customer_id,
        target_phone=target_phone,
        message_type=message_type.value,
        message_text=message_text,
        idempotency_key=idempotency_key,
        status=OutboundStatus.PENDING.value,
        attempts=0,
        max_attempts=settings.OUTBOUND_MAX_ATTEMPTS,
        last_error=last_error,
        created_at=datetime.now(timezone.utc),
    )
    db.add(item)
    db.commit()
    db.refresh(item)
    return item


def has_open_item(db: Session, idempotency_key: str) -> bool:
    """True if this message already sits in the queue (pending or given up)."""
    return (
        db.query(OutboundMessage.id)
        .filter(
            OutboundMessage.idempotency_key == idempotency_key,
            OutboundMessage.status.in_(
                [OutboundStatus.PENDING.value, OutboundStatus.FAILED.value]
            ),
        )
        .first()
        is not None
    )


def get_pending(db: Session, limit: int = 10) -> list[OutboundMessage]:
    """
    Get pending items, oldest first.

    The id tiebreak keeps ordering stable for rows created in the same instant.
    """
    return (
        db.query(OutboundMessage)
        .filter(OutboundMessage.status == OutboundStatus.PENDING.value)
        .order_by(OutboundMessage.created_at, OutboundMessage.id)
        .limit(limit)
        .all()
    )


def get_item(db: Session, item_id: int) -> OutboundMessage | None:
    return db.get(OutboundMessage, item_id)


def list_items(
    db: Session,
    status: OutboundStatus | None = None,
    limit: int = 50,
) -> list[OutboundMessage]:
    """List queue items for operators, newest first."""
    query = db.query(OutboundMessage)
    if status:
        query = query.filter(OutboundMessage.status == status.value)
    return query.order_by(OutboundMessage.created_at.desc(), OutboundMessage.id.desc()).limit(limit).all()


def count_by_status(db: Session) -> dict[str, int]:
    counts = {status.value: 0 for status in OutboundStatus}
    rows = (
        db.query(OutboundMessage.status, func.count(OutboundMessage.id))
        .group_by(OutboundMessage.status)
        .all()
    )
    for status, count in rows:
        counts[status] = count
    return counts


def claim_attempt(db: Session, item: OutboundMessage) -> bool:
    """
    Reserve the next delivery attempt before calling the gateway.

    Compare-and-set on (status, attempts). Returns False when another
    sweeper already took this attempt or finished the item; the caller
    must then leave it alone.
    """
    result = db.execute(
        update(OutboundMessage)
        .where(
            OutboundMessage.id == item.id,
            OutboundMessage.status == OutboundStatus.PENDING.value,
            OutboundMessage.attempts == item.attempts,
        )
        .values(
            attempts=OutboundMessage.attempts + 1,
            last_attempt_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.refresh(item)
    return result.rowcount == 1


def mark_sent(db: Session, item: OutboundMessage) -> OutboundMessage:
    """Mark an item as delivered (terminal)."""
    now = datetime.now(timezone.utc)
    item.status = OutboundStatus.SENT.value
    item.sent_at = now
    item.last_error = None
    db.commit()
    db.refresh(item)
    return item


def mark_attempt_failed(db: Session, item: OutboundMessage, error: str) -> OutboundMessage:
    """
    Record why the claimed attempt failed.

    Stays pending while attempts < max_attempts, then becomes failed
    (terminal, no further automatic retries).
    """
    item.last_error = error
    if item.attempts >= item.max_attempts:
        item.status = OutboundStatus.FAILED.value
    db.commit()
    db.refresh(item)
    return item
