"""
HTTP tests for the public, admin and internal routers.

Coverage:
- Public booking flow with background confirmation
- Error mapping (409 conflict, 422 validation, 404 unknown)
- Admin key auth, provider scoping and owner-only endpoints
- Internal scheduled endpoints behind X-Internal-Secret
"""

from datetime import datetime

import pytest

from slotbook.core.config import settings
from slotbook.db.models import Booking, OutboundMessage
from slotbook.services import reservation_service
from slotbook.utils.slots import get_timezone

SP = get_timezone()

ADMIN_HEADERS = {"X-Admin-Key": "test-admin-key"}
PROVIDER_P2_HEADERS = {"X-Admin-Key": "test-admin-key", "X-Provider-Id": "p2"}
INTERNAL_HEADERS = {"X-Internal-Secret": "test-internal-secret"}


def booking_payload(**overrides):
    payload = {
        "provider_id": "p1",
        "service_id": "haircut",
        "slot_start": "2024-06-10T09:00:00-03:00",
        "customer": {
            "first_name": "Ana",
            "last_name": "Silva",
            "phone": "(11) 99999-0000",
        },
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def booking(db, provider, catalog, ana):
    """Scenario booking created directly through the service (no messages sent)."""
    return reservation_service.create_booking(
        db,
        catalog,
        provider_id="p1",
        service_id="haircut",
        slot_start=datetime(2024, 6, 10, 9, 0, tzinfo=SP),
        customer=ana,
    )


# =============================================================================
# Public
# =============================================================================

class TestPublicBooking:
    @pytest.mark.asyncio
    async def test_catalog_and_providers(self, client, provider):
        services = await client.get("/public/services")
        providers = await client.get("/public/providers")

        assert services.status_code == 200
        assert [s["id"] for s in services.json()] == ["haircut", "beard", "haircut_beard"]
        assert providers.json() == [{"id": "p1", "name": "Bruno", "active": True}]

    @pytest.mark.asyncio
    async def test_create_booking_sends_confirmation(self, client, db, provider, evolution):
        response = await client.post("/public/bookings", json=booking_payload())

        assert response.status_code == 201
        data = response.json()
        assert data["slot_id"] == "20240610_0900"
        assert data["status"] == "booked"
        assert len(data["cancel_code"]) >= 16

        assert len(evolution.requests) == 1
        assert data["cancel_code"] in evolution.payloads[0]["text"]
        db.expire_all()
        assert db.get(Booking, data["booking_id"]).whatsapp_status == "sent"

    @pytest.mark.asyncio
    async def test_double_booking_is_409(self, client, provider):
        first = await client.post("/public/bookings", json=booking_payload())
        second = await client.post(
            "/public/bookings",
            json=booking_payload(customer={
                "first_name": "Bia", "last_name": "Costa", "phone": "11988887777",
            }),
        )
        assert first.status_code == 201
        assert second.status_code == 409

    @pytest.mark.asyncio
    async def test_utc_and_local_spellings_collide(self, client, provider):
        await client.post("/public/bookings", json=booking_payload())
        response = await client.post(
            "/public/bookings", json=booking_payload(slot_start="2024-06-10T12:00:00Z")
        )
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_sunday_is_422(self, client, db, provider, evolution):
        response = await client.post(
            "/public/bookings", json=booking_payload(slot_start="2024-06-09T10:00:00")
        )
        assert response.status_code == 422
        assert db.query(Booking).count() == 0
        assert evolution.requests == []

    @pytest.mark.asyncio
    async def test_bad_phone_is_422(self, client, provider):
        response = await client.post(
            "/public/bookings",
            json=booking_payload(customer={
                "first_name": "Ana", "last_name": "Silva", "phone": "12345678",
            }),
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_provider_is_404(self, client, provider):
        response = await client.post("/public/bookings", json=booking_payload(provider_id="zz"))
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_gateway_down_still_books(self, client, db, provider, evolution):
        evolution.fail_status = 503

        response = await client.post("/public/bookings", json=booking_payload())

        assert response.status_code == 201
        db.expire_all()
        items = db.query(OutboundMessage).all()
        assert [(i.message_type, i.status, i.attempts) for i in items] == [
            ("confirmation", "pending", 0)
        ]
        assert db.get(Booking, response.json()["booking_id"]).whatsapp_status == "pending"

    @pytest.mark.asyncio
    async def test_availability(self, client, provider, booking):
        response = await client.get(
            "/public/availability", params={"provider_id": "p1", "date_key": "2024-06-10"}
        )
        assert response.status_code == 200
        data = response.json()
        assert data["booked_slot_ids"] == ["20240610_0900"]
        assert data["blocked_slot_ids"] == []
        assert data["schedule"]["active"] is True


class TestPublicCancel:
    @pytest.mark.asyncio
    async def test_cancel_by_code_once(self, client, db, booking, evolution):
        first = await client.post(
            "/public/bookings/cancel", json={"cancel_code": booking.cancel_code}
        )
        second = await client.post(
            "/public/bookings/cancel", json={"cancel_code": booking.cancel_code}
        )

        assert first.status_code == 200
        assert first.json() == {
            "booking_id": booking.booking.id, "status": "cancelled", "cancelled": True,
        }
        assert second.json()["cancelled"] is False
        # One cancellation message, none for the no-op repeat
        assert len(evolution.requests) == 1

    @pytest.mark.asyncio
    async def test_wrong_code_is_404(self, client, booking):
        response = await client.post(
            "/public/bookings/cancel", json={"cancel_code": "definitely-not-valid"}
        )
        assert response.status_code == 404


class TestCustomerLookup:
    @pytest.mark.asyncio
    async def test_known_customer_hint(self, client, booking):
        response = await client.post("/public/customers/lookup", json={"phone": "11999990000"})
        assert response.json() == {
            "found": True,
            "first_name": "Ana",
            "last_name_initial": "S",
            "has_birth_date": False,
        }

    @pytest.mark.asyncio
    async def test_unknown_customer(self, client, provider):
        response = await client.post("/public/customers/lookup", json={"phone": "11988887777"})
        assert response.json()["found"] is False

    @pytest.mark.asyncio
    async def test_bad_phone(self, client, provider):
        response = await client.post("/public/customers/lookup", json={"phone": "12345678"})
        assert response.status_code == 422


# =============================================================================
# Admin
# =============================================================================

class TestAdminAuth:
    @pytest.mark.asyncio
    async def test_missing_or_wrong_key(self, client, booking):
        assert (await client.get("/admin/bookings")).status_code == 401
        wrong = await client.get("/admin/bookings", headers={"X-Admin-Key": "nope"})
        assert wrong.status_code == 401

    @pytest.mark.asyncio
    async def test_unconfigured_key(self, client, booking, monkeypatch):
        monkeypatch.setattr(settings, "ADMIN_API_KEY", "")
        response = await client.get("/admin/bookings", headers=ADMIN_HEADERS)
        assert response.status_code == 501

    @pytest.mark.asyncio
    async def test_provider_is_scoped(self, client, booking):
        listing = await client.get("/admin/bookings", headers=PROVIDER_P2_HEADERS)
        detail = await client.get(f"/admin/bookings/{booking.booking.id}", headers=PROVIDER_P2_HEADERS)
        cancel = await client.post(
            f"/admin/bookings/{booking.booking.id}/cancel", headers=PROVIDER_P2_HEADERS
        )
        create = await client.post(
            "/admin/bookings", json=booking_payload(), headers=PROVIDER_P2_HEADERS
        )

        assert listing.json() == []
        assert detail.status_code == 404
        assert cancel.status_code == 403
        assert create.status_code == 403

    @pytest.mark.asyncio
    async def test_owner_only_endpoints(self, client, provider):
        for method, path in (
            ("get", "/admin/notifications/settings"),
            ("get", "/admin/notifications/queue"),
            ("post", "/admin/catalog/refresh"),
        ):
            response = await getattr(client, method)(path, headers=PROVIDER_P2_HEADERS)
            assert response.status_code == 403, path


class TestAdminBookings:
    @pytest.mark.asyncio
    async def test_list_and_summary(self, client, booking):
        listing = await client.get(
            "/admin/bookings", params={"date_key": "2024-06-10"}, headers=ADMIN_HEADERS
        )
        summary = await client.get(
            "/admin/bookings/summary", params={"start": "2024-06-10"}, headers=ADMIN_HEADERS
        )

        assert [b["id"] for b in listing.json()] == [booking.booking.id]
        assert "cancel_code_hash" not in listing.json()[0]
        assert summary.json()[0] == {
            "date_key": "2024-06-10", "total": 1, "by_status": {"booked": 1},
        }

    @pytest.mark.asyncio
    async def test_walk_in_without_message(self, client, db, provider, evolution):
        response = await client.post(
            "/admin/bookings",
            json=booking_payload(force_whatsapp_sent=True),
            headers=ADMIN_HEADERS,
        )
        assert response.status_code == 201
        assert evolution.requests == []
        db.expire_all()
        booking = db.get(Booking, response.json()["booking_id"])
        assert booking.whatsapp_status == "sent"
        assert booking.created_by == "owner"

    @pytest.mark.asyncio
    async def test_status_flow(self, client, booking):
        url = f"/admin/bookings/{booking.booking.id}/status"
        done = await client.post(url, json={"status": "completed"}, headers=ADMIN_HEADERS)
        back = await client.post(url, json={"status": "confirmed"}, headers=ADMIN_HEADERS)
        not_manual = await client.post(url, json={"status": "cancelled"}, headers=ADMIN_HEADERS)

        assert done.status_code == 200
        assert done.json()["status"] == "completed"
        assert back.status_code == 400
        assert not_manual.status_code == 422

    @pytest.mark.asyncio
    async def test_cancel_then_cancel_again(self, client, booking, evolution):
        url = f"/admin/bookings/{booking.booking.id}/cancel"
        first = await client.post(url, headers=ADMIN_HEADERS)
        second = await client.post(url, headers=ADMIN_HEADERS)

        assert first.status_code == 200
        assert first.json()["cancelled_by"] == "admin"
        assert second.status_code == 400
        assert len(evolution.requests) == 1

    @pytest.mark.asyncio
    async def test_reschedule_notifies(self, client, booking, evolution):
        response = await client.post(
            f"/admin/bookings/{booking.booking.id}/reschedule",
            json={"slot_start": "2024-06-10T11:00:00"},
            headers=ADMIN_HEADERS,
        )
        assert response.status_code == 200
        assert response.json()["rescheduled_from_slot_id"] == "20240610_0900"
        assert len(evolution.requests) == 1
        assert "11:00" in evolution.payloads[0]["text"]

    @pytest.mark.asyncio
    async def test_reschedule_bad_time(self, client, booking):
        response = await client.post(
            f"/admin/bookings/{booking.booking.id}/reschedule",
            json={"slot_start": "2024-06-10T11:15:00"},
            headers=ADMIN_HEADERS,
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_mark_whatsapp_sent(self, client, booking):
        response = await client.post(
            f"/admin/bookings/{booking.booking.id}/whatsapp-sent", headers=ADMIN_HEADERS
        )
        assert response.json()["whatsapp_status"] == "sent"


class TestAdminSlots:
    @pytest.mark.asyncio
    async def test_block_and_unblock(self, client, booking):
        block = await client.post(
            "/admin/slots/block",
            json={
                "provider_id": "p1",
                "date_key": "2024-06-10",
                "start_time": "09:00",
                "end_time": "10:00",
                "reason": "dentist",
            },
            headers=ADMIN_HEADERS,
        )
        assert block.json() == {
            "created_slot_ids": ["20240610_0930"],
            "skipped_slot_ids": ["20240610_0900"],
        }

        unblock = {"provider_id": "p1", "slot_id": "20240610_0930"}
        first = await client.post("/admin/slots/unblock", json=unblock, headers=ADMIN_HEADERS)
        again = await client.post("/admin/slots/unblock", json=unblock, headers=ADMIN_HEADERS)
        booked_slot = await client.post(
            "/admin/slots/unblock",
            json={"provider_id": "p1", "slot_id": "20240610_0900"},
            headers=ADMIN_HEADERS,
        )

        assert first.status_code == 204
        assert again.status_code == 400
        assert booked_slot.status_code == 400


class TestAdminCustomers:
    @pytest.mark.asyncio
    async def test_list_search_and_consent(self, client, booking):
        listing = await client.get("/admin/customers", params={"search": "Ana"}, headers=ADMIN_HEADERS)
        assert listing.json()["total"] == 1
        customer_id = listing.json()["items"][0]["id"]

        response = await client.put(
            f"/admin/customers/{customer_id}/consent",
            json={"marketing_opt_in": False},
            headers=ADMIN_HEADERS,
        )
        assert response.status_code == 200
        assert response.json()["marketing_opt_out_at"] is not None

    @pytest.mark.asyncio
    async def test_unknown_customer(self, client, provider):
        response = await client.get("/admin/customers/cust_missing", headers=ADMIN_HEADERS)
        assert response.status_code == 404


class TestAdminNotifications:
    @pytest.mark.asyncio
    async def test_settings_defaults_and_update(self, client, provider):
        current = await client.get("/admin/notifications/settings", headers=ADMIN_HEADERS)
        assert current.json()["reminder_minutes_before"] == 60

        updated = await client.put(
            "/admin/notifications/settings",
            json={"reminder_minutes_before": 120, "birthday_enabled": True},
            headers=ADMIN_HEADERS,
        )
        assert updated.json()["reminder_minutes_before"] == 120
        assert updated.json()["birthday_enabled"] is True
        assert updated.json()["confirmation_enabled"] is True

        too_short = await client.put(
            "/admin/notifications/settings",
            json={"reminder_minutes_before": 5},
            headers=ADMIN_HEADERS,
        )
        assert too_short.status_code == 422

    @pytest.mark.asyncio
    async def test_broadcast_runs_in_background(self, client, booking, evolution):
        response = await client.post(
            "/admin/notifications/broadcast",
            json={"message": "Hi {name}, new hours on Saturdays!"},
            headers=ADMIN_HEADERS,
        )
        assert response.status_code == 202
        assert response.json() == {"scheduled": True, "recipients": 1}
        assert evolution.payloads[0]["text"] == "Hi Ana, new hours on Saturdays!"

    @pytest.mark.asyncio
    async def test_queue_overview(self, client, provider, evolution):
        evolution.fail_status = 503
        await client.post("/public/bookings", json=booking_payload())

        response = await client.get("/admin/notifications/queue", headers=ADMIN_HEADERS)

        data = response.json()
        assert data["counts"] == {"pending": 1, "sent": 0, "failed": 0}
        assert data["items"][0]["message_type"] == "confirmation"
        assert "message_text" not in data["items"][0]


# =============================================================================
# Internal
# =============================================================================

class TestInternalEndpoints:
    @pytest.mark.asyncio
    async def test_wrong_secret(self, client, provider):
        response = await client.post(
            "/internal/scheduled/process-queue", headers={"X-Internal-Secret": "nope"}
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_unconfigured_secret(self, client, provider, monkeypatch):
        monkeypatch.setattr(settings, "INTERNAL_SECRET", "")
        response = await client.post(
            "/internal/scheduled/process-queue", headers=INTERNAL_HEADERS
        )
        assert response.status_code == 501

    @pytest.mark.asyncio
    async def test_process_queue_delivers_backlog(self, client, db, provider, evolution):
        evolution.fail_status = 503
        created = await client.post("/public/bookings", json=booking_payload())
        evolution.fail_status = None

        response = await client.post("/internal/scheduled/process-queue", headers=INTERNAL_HEADERS)

        assert response.json() == {"processed": 1, "sent": 1, "failed": 0, "retrying": 0}
        db.expire_all()
        assert db.get(Booking, created.json()["booking_id"]).whatsapp_status == "sent"

    @pytest.mark.asyncio
    async def test_reminders_and_birthdays(self, client, provider):
        reminders = await client.post("/internal/scheduled/send-reminders", headers=INTERNAL_HEADERS)
        birthdays = await client.post("/internal/scheduled/send-birthdays", headers=INTERNAL_HEADERS)

        assert reminders.json() == {"processed": 0, "sent": 0, "queued": 0}
        assert birthdays.json() == {"total": 0, "sent": 0, "failed": 0, "skipped": 0, "errors": []}


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
