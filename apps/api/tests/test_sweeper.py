"""
Tests for the outbound queue sweeper.

Coverage:
- Bounded retries: pending -> failed after max attempts, then left alone
- Successful retry updates the item, the ledger and the booking
- Items already delivered (ledger says sent) are closed without a send
- FIFO order, batch limit and pacing
- One broken item does not stop the batch
- Overlapping sweepers never send the same attempt twice
"""

from datetime import datetime, timedelta, timezone

import pytest

from slotbook.db.enums import IdempotencyStatus, MessageType, OutboundStatus
from slotbook.db.models import Booking, IdempotencyRecord, OutboundMessage
from slotbook.services import (
    idempotency_service,
    notification_service,
    outbound_queue_service,
    reservation_service,
)
from slotbook.services.notification_service import SweepResult
from slotbook.utils.slots import get_timezone

SP = get_timezone()


@pytest.fixture
def booked(db, provider, catalog, ana):
    return reservation_service.create_booking(
        db,
        catalog,
        provider_id="p1",
        service_id="haircut",
        slot_start=datetime(2024, 6, 10, 10, 0, tzinfo=SP),
        customer=ana,
    )


@pytest.fixture
def queued_confirmation(db, gateway, catalog, evolution, booked):
    """A confirmation whose direct send failed and now sits in the queue."""
    evolution.fail_status = 503
    result = notification_service.send_booking_confirmation(
        db, gateway, catalog, booked.booking.id, booked.cancel_code
    )
    assert result.queued
    evolution.requests.clear()
    return db.get(OutboundMessage, result.queue_item_id)


def make_item(db, text, *, created_at, phone="+5511988887777", key=None):
    item = OutboundMessage(
        target_phone=phone,
        message_type=MessageType.BROADCAST.value,
        message_text=text,
        idempotency_key=key,
        status=OutboundStatus.PENDING.value,
        attempts=0,
        max_attempts=3,
        created_at=created_at,
    )
    db.add(item)
    db.commit()
    return item


def sweep(db, gateway, **kwargs):
    kwargs.setdefault("delay_seconds", 0)
    return notification_service.sweep_queue(db, gateway, **kwargs)


# =============================================================================
# Retry bookkeeping
# =============================================================================

class TestBoundedRetries:
    def test_three_failures_then_terminal(self, db, gateway, evolution, queued_confirmation):
        item_id = queued_confirmation.id

        assert sweep(db, gateway) == SweepResult(processed=1, sent=0, failed=0, retrying=1)
        assert sweep(db, gateway) == SweepResult(processed=1, sent=0, failed=0, retrying=1)
        assert sweep(db, gateway) == SweepResult(processed=1, sent=0, failed=1, retrying=0)

        db.expire_all()
        item = db.get(OutboundMessage, item_id)
        assert item.status == OutboundStatus.FAILED.value
        assert item.attempts == 3
        assert item.last_error == "instance disconnected"
        assert item.last_attempt_at is not None

        # Terminal: a later sweep does not touch it, even with the gateway back
        evolution.fail_status = None
        assert sweep(db, gateway) == SweepResult(processed=0, sent=0, failed=0, retrying=0)
        db.expire_all()
        assert db.get(OutboundMessage, item_id).attempts == 3
        assert len(evolution.requests) == 3

    def test_gives_up_with_error_log(self, db, gateway, evolution, queued_confirmation, caplog):
        for _ in range(3):
            sweep(db, gateway)
        assert any(
            r.levelname == "ERROR" and "gave up after 3 attempts" in r.getMessage()
            for r in caplog.records
        )

    def test_recovery_marks_everything_sent(
        self, db, gateway, catalog, evolution, booked, queued_confirmation
    ):
        sweep(db, gateway)
        evolution.fail_status = None

        result = sweep(db, gateway)

        assert result == SweepResult(processed=1, sent=1, failed=0, retrying=0)
        db.expire_all()
        item = db.get(OutboundMessage, queued_confirmation.id)
        assert item.status == OutboundStatus.SENT.value
        assert item.attempts == 2
        assert item.sent_at is not None
        assert item.last_error is None
        record = db.get(IdempotencyRecord, item.idempotency_key)
        assert record.status == IdempotencyStatus.SENT.value
        assert db.get(Booking, booked.booking.id).whatsapp_status == "sent"

        # The original trigger firing again does not send a duplicate
        again = notification_service.send_booking_confirmation(
            db, gateway, catalog, booked.booking.id, booked.cancel_code
        )
        assert again.deduped is True
        assert len(evolution.requests) == 2

    def test_queued_reminder_marks_booking(self, db, gateway, catalog, evolution, booked):
        evolution.fail_status = 503
        notification_service.process_reminders(
            db, gateway, catalog, now=datetime(2024, 6, 10, 9, 30, tzinfo=SP)
        )
        evolution.fail_status = None

        assert sweep(db, gateway).sent == 1
        db.expire_all()
        assert db.get(Booking, booked.booking.id).reminder_sent_at is not None

    def test_already_delivered_item_is_closed_without_send(self, db, gateway, evolution):
        key = idempotency_service.make_key("broadcast", "+5511988887777", "Promo")
        idempotency_service.claim(db, key, kind="broadcast", target="+5511988887777")
        idempotency_service.mark_sent(db, key)
        item = make_item(db, "Promo", created_at=datetime.now(timezone.utc), key=key)

        result = sweep(db, gateway)

        assert result.sent == 1
        assert evolution.requests == []
        db.expire_all()
        assert db.get(OutboundMessage, item.id).status == OutboundStatus.SENT.value


# =============================================================================
# Ordering and pacing
# =============================================================================

class TestSweepOrder:
    def test_oldest_first(self, db, gateway, evolution):
        base = datetime(2024, 6, 10, 12, 0, tzinfo=timezone.utc)
        make_item(db, "second", created_at=base + timedelta(minutes=1))
        make_item(db, "third", created_at=base + timedelta(minutes=2))
        make_item(db, "first", created_at=base)

        sweep(db, gateway)

        assert [p["text"] for p in evolution.payloads] == ["first", "second", "third"]

    def test_same_instant_falls_back_to_insert_order(self, db, gateway, evolution):
        at = datetime(2024, 6, 10, 12, 0, tzinfo=timezone.utc)
        for text in ("a", "b", "c"):
            make_item(db, text, created_at=at)

        sweep(db, gateway)

        assert [p["text"] for p in evolution.payloads] == ["a", "b", "c"]

    def test_batch_limit(self, db, gateway, evolution):
        base = datetime(2024, 6, 10, 12, 0, tzinfo=timezone.utc)
        for i in range(4):
            make_item(db, f"m{i}", created_at=base + timedelta(seconds=i))

        assert sweep(db, gateway, limit=2).processed == 2
        assert outbound_queue_service.count_by_status(db) == {"pending": 2, "sent": 2, "failed": 0}

    def test_pause_between_sends_only(self, db, gateway, evolution):
        base = datetime(2024, 6, 10, 12, 0, tzinfo=timezone.utc)
        for i in range(3):
            make_item(db, f"m{i}", created_at=base + timedelta(seconds=i))
        pauses = []

        sweep(db, gateway, delay_seconds=0.5, sleep=pauses.append)

        assert pauses == [0.5, 0.5]


class TestIsolation:
    def test_unexpected_error_skips_only_that_item(self, db, gateway, evolution, monkeypatch):
        base = datetime(2024, 6, 10, 12, 0, tzinfo=timezone.utc)
        make_item(db, "first", created_at=base)
        broken = make_item(db, "boom", created_at=base + timedelta(seconds=1))
        make_item(db, "third", created_at=base + timedelta(seconds=2))

        real_send_text = gateway.send_text

        def flaky_send_text(phone, text):
            if text == "boom":
                raise RuntimeError("unexpected payload")
            return real_send_text(phone, text)

        monkeypatch.setattr(gateway, "send_text", flaky_send_text)

        result = sweep(db, gateway)

        assert result == SweepResult(processed=3, sent=2, failed=0, retrying=1)
        assert [p["text"] for p in evolution.payloads] == ["first", "third"]
        db.expire_all()
        still_pending = db.get(OutboundMessage, broken.id)
        assert still_pending.status == OutboundStatus.PENDING.value
        # The attempt was claimed before the send blew up
        assert still_pending.attempts == 1

    def test_interrupted_last_attempt_is_closed_as_failed(self, db, gateway, evolution):
        item = make_item(db, "Promo", created_at=datetime.now(timezone.utc))
        item.attempts = item.max_attempts
        item.last_error = "instance disconnected"
        db.commit()

        result = sweep(db, gateway)

        assert result == SweepResult(processed=1, sent=0, failed=1, retrying=0)
        assert evolution.requests == []
        db.expire_all()
        closed = db.get(OutboundMessage, item.id)
        assert closed.status == OutboundStatus.FAILED.value
        assert closed.attempts == 3

    def test_empty_queue(self, db, gateway, evolution):
        assert sweep(db, gateway) == SweepResult(processed=0, sent=0, failed=0, retrying=0)
        assert evolution.requests == []


class TestConcurrentSweepers:
    def test_items_taken_by_another_sweeper_are_skipped(
        self, db, session_factory, gateway, evolution, monkeypatch
    ):
        base = datetime(2024, 6, 10, 12, 0, tzinfo=timezone.utc)
        first = make_item(db, "first", created_at=base)
        second = make_item(db, "second", created_at=base + timedelta(seconds=1))
        real_get_pending = outbound_queue_service.get_pending

        def other_sweeper_runs_meanwhile(session, limit=10):
            items = real_get_pending(session, limit=limit)
            if session is db:
                with session_factory() as other:
                    assert sweep(other, gateway).sent == 2
            return items

        monkeypatch.setattr(outbound_queue_service, "get_pending", other_sweeper_runs_meanwhile)

        result = sweep(db, gateway)

        assert result == SweepResult(processed=0, sent=0, failed=0, retrying=0)
        assert [p["text"] for p in evolution.payloads] == ["first", "second"]
        db.expire_all()
        for item_id in (first.id, second.id):
            item = db.get(OutboundMessage, item_id)
            assert item.status == OutboundStatus.SENT.value
            assert item.attempts == 1

    def test_claim_fails_for_stale_attempt_count(self, db, session_factory):
        item = make_item(db, "Promo", created_at=datetime.now(timezone.utc))
        assert item.attempts == 0

        with session_factory() as other:
            assert outbound_queue_service.claim_attempt(other, other.get(OutboundMessage, item.id))

        assert outbound_queue_service.claim_attempt(db, item) is False
        assert item.attempts == 1
