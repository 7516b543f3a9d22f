"""Delivery idempotency ledger.

A key is sha256(kind, target, content signature). It is claimed as
pending right before a gateway call and flipped to sent afterwards; a
key already marked sent is never delivered again.
"""

import hashlib
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from slotbook.db.enums import IdempotencyStatus
from slotbook.db.models import IdempotencyRecord


def make_key(kind: str, target: str, content_signature: str) -> str:
    """Ledger key for one logical message to one recipient."""
    raw = "\x1f".join((kind, target, content_signature))
    return hashlib.sha256(raw.encode()).hexdigest()


def get_record(db: Session, key: str) -> IdempotencyRecord | None:
    return db.get(IdempotencyRecord, key)


def is_sent(db: Session, key: str) -> bool:
    record = get_record(db, key)
    return record is not None and record.status == IdempotencyStatus.SENT.value


def claim(
    db: Session,
    key: str,
    *,
    kind: str,
    target: str,
    booking_id: str | None = None,
    text_length: int = 0,
) -> IdempotencyRecord:
    """
    Record the key as pending (idempotent).

    A concurrent claim of the same key loses the insert race and simply
    reads the winner's row.
    """
    record = get_record(db, key)
    if record is not None:
        return record
    record = IdempotencyRecord(
        key=key,
        kind=kind,
        target=target,
        booking_id=booking_id,
        text_length=text_length,
        status=IdempotencyStatus.PENDING.value,
    )
    db.add(record)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return get_record(db, key)
    return record


def mark_sent(db: Session, key: str, *, commit: bool = True) -> None:
    record = get_record(db, key)
    if record is None:
        return
    now = datetime.now(timezone.utc)
    record.status = IdempotencyStatus.SENT.value
    record.sent_at = now
    record.updated_at = now
    if commit:
        db.commit()
