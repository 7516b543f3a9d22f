"""Admin router - agenda management for the shop owner and providers.

Every endpoint requires X-Admin-Key. A provider actor (X-Provider-Id) is
limited to their own calendar; shop-wide settings, broadcasts and the
queue view are owner-only.
"""

import logging
from typing import Callable

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from slotbook.core.deps import (
    get_catalog,
    get_db,
    get_gateway,
    get_session_factory,
    require_admin,
    require_owner,
)
from slotbook.db.enums import BookingStatus, MediaType, OutboundStatus
from slotbook.routers.errors import SERVICE_ERRORS, to_http
from slotbook.schemas.auth import ActorContext
from slotbook.schemas.booking import (
    AdminBookingCreate,
    BookingCreated,
    BookingRead,
    DaySummary,
    RescheduleRequest,
    StatusUpdate,
)
from slotbook.schemas.customer import ConsentUpdate, CustomerListResponse, CustomerRead
from slotbook.schemas.notification import (
    BroadcastAccepted,
    BroadcastMediaRequest,
    BroadcastTextRequest,
    NotificationSettingsRead,
    NotificationSettingsUpdate,
    OutboundMessageRead,
    QueueOverview,
)
from slotbook.schemas.provider import BlockSlotsRequest, BlockSlotsResult, UnblockSlotRequest
from slotbook.services import (
    customer_service,
    notification_settings_service,
    notification_tasks,
    outbound_queue_service,
    reservation_service,
)
from slotbook.services.catalog_service import ServiceCatalog
from slotbook.services.messaging_gateway import WhatsAppGateway
from slotbook.utils.slots import parse_slot_start, slot_id_for

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

DATE_KEY_PATTERN = r"^\d{4}-\d{2}-\d{2}$"


# =============================================================================
# Bookings
# =============================================================================

@router.post("/bookings", response_model=BookingCreated, status_code=201)
def create_booking(
    data: AdminBookingCreate,
    background_tasks: BackgroundTasks,
    actor: ActorContext = Depends(require_admin),
    db: Session = Depends(get_db),
    catalog: ServiceCatalog = Depends(get_catalog),
    gateway: WhatsAppGateway = Depends(get_gateway),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    """
    Book on behalf of a customer (walk-in, phone call).

    With force_whatsapp_sent the booking is recorded as already confirmed
    over WhatsApp and no message is sent.
    """
    if not actor.can_access_provider(data.provider_id):
        raise HTTPException(status_code=403, detail="Not allowed to manage this provider's calendar")
    try:
        slot_start = parse_slot_start(data.slot_start)
        customer = customer_service.make_customer_input(
            data.customer.first_name,
            data.customer.last_name,
            data.customer.phone,
            data.customer.birth_date,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    try:
        result = reservation_service.create_booking(
            db,
            catalog,
            provider_id=data.provider_id,
            service_id=data.service_id,
            slot_start=slot_start,
            customer=customer,
            created_by=actor.actor_id,
            whatsapp_already_sent=data.force_whatsapp_sent,
        )
    except SERVICE_ERRORS as exc:
        raise to_http(exc) from exc

    if not data.force_whatsapp_sent:
        background_tasks.add_task(
            notification_tasks.send_confirmation_task,
            session_factory,
            gateway,
            catalog,
            result.booking.id,
            result.cancel_code,
        )
    return BookingCreated(
        booking_id=result.booking.id,
        cancel_code=result.cancel_code,
        slot_id=slot_id_for(slot_start),
        status=result.booking.status,
    )


@router.get("/bookings", response_model=list[BookingRead])
def list_bookings(
    date_key: str | None = Query(None, pattern=DATE_KEY_PATTERN),
    date_from: str | None = Query(None, pattern=DATE_KEY_PATTERN),
    date_to: str | None = Query(None, pattern=DATE_KEY_PATTERN),
    provider_id: str | None = None,
    status: BookingStatus | None = None,
    limit: int = Query(200, ge=1, le=500),
    actor: ActorContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        return reservation_service.list_bookings(
            db,
            date_key=date_key,
            date_from=date_from,
            date_to=date_to,
            provider_id=provider_id,
            status=status,
            actor=actor,
            limit=limit,
        )
    except SERVICE_ERRORS as exc:
        raise to_http(exc) from exc


@router.get("/bookings/summary", response_model=list[DaySummary])
def week_summary(
    start: str = Query(..., pattern=DATE_KEY_PATTERN),
    provider_id: str | None = None,
    actor: ActorContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Per-day booking counts by status for the week starting at ``start``."""
    try:
        return reservation_service.week_summary(db, start, provider_id=provider_id, actor=actor)
    except SERVICE_ERRORS as exc:
        raise to_http(exc) from exc


@router.get("/bookings/{booking_id}", response_model=BookingRead)
def get_booking(
    booking_id: str,
    actor: ActorContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        return reservation_service.get_booking(db, booking_id, actor)
    except SERVICE_ERRORS as exc:
        raise to_http(exc) from exc


@router.post("/bookings/{booking_id}/cancel", response_model=BookingRead)
def cancel_booking(
    booking_id: str,
    background_tasks: BackgroundTasks,
    actor: ActorContext = Depends(require_admin),
    db: Session = Depends(get_db),
    gateway: WhatsAppGateway = Depends(get_gateway),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    try:
        booking = reservation_service.cancel_booking(db, booking_id, actor=actor)
    except SERVICE_ERRORS as exc:
        raise to_http(exc) from exc

    background_tasks.add_task(
        notification_tasks.send_cancellation_task, session_factory, gateway, booking.id
    )
    return booking


@router.post("/bookings/{booking_id}/reschedule", response_model=BookingRead)
def reschedule_booking(
    booking_id: str,
    data: RescheduleRequest,
    background_tasks: BackgroundTasks,
    actor: ActorContext = Depends(require_admin),
    db: Session = Depends(get_db),
    catalog: ServiceCatalog = Depends(get_catalog),
    gateway: WhatsAppGateway = Depends(get_gateway),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    """Move a booking to another slot; the customer is told about the new time."""
    try:
        new_start = parse_slot_start(data.slot_start)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    try:
        previous_slot_id = slot_id_for(
            reservation_service.get_booking(db, booking_id, actor).slot_start
        )
        booking = reservation_service.reschedule_booking(db, booking_id, new_start, actor=actor)
    except SERVICE_ERRORS as exc:
        raise to_http(exc) from exc

    if slot_id_for(booking.slot_start) != previous_slot_id:
        background_tasks.add_task(
            notification_tasks.send_reschedule_task, session_factory, gateway, catalog, booking.id
        )
    return booking


@router.post("/bookings/{booking_id}/status", response_model=BookingRead)
def update_status(
    booking_id: str,
    data: StatusUpdate,
    actor: ActorContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        return reservation_service.transition_status(db, booking_id, data.status, actor=actor)
    except SERVICE_ERRORS as exc:
        raise to_http(exc) from exc


@router.post("/bookings/{booking_id}/whatsapp-sent", response_model=BookingRead)
def mark_whatsapp_sent(
    booking_id: str,
    actor: ActorContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Operator confirmed the booking over WhatsApp by hand."""
    try:
        return reservation_service.mark_whatsapp_sent(db, booking_id, actor=actor)
    except SERVICE_ERRORS as exc:
        raise to_http(exc) from exc


# =============================================================================
# Slot blocks
# =============================================================================

@router.post("/slots/block", response_model=BlockSlotsResult)
def block_slots(
    data: BlockSlotsRequest,
    actor: ActorContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        result = reservation_service.block_slots(
            db,
            provider_id=data.provider_id,
            date_key=data.date_key,
            start_time=data.start_time,
            end_time=data.end_time,
            reason=data.reason,
            actor=actor,
        )
    except SERVICE_ERRORS as exc:
        raise to_http(exc) from exc
    return BlockSlotsResult(
        created_slot_ids=result.created_slot_ids,
        skipped_slot_ids=result.skipped_slot_ids,
    )


@router.post("/slots/unblock", status_code=204)
def unblock_slot(
    data: UnblockSlotRequest,
    actor: ActorContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        reservation_service.unblock_slot(
            db, provider_id=data.provider_id, slot_id=data.slot_id, actor=actor
        )
    except SERVICE_ERRORS as exc:
        raise to_http(exc) from exc
    return Response(status_code=204)


# =============================================================================
# Customers
# =============================================================================

@router.get("/customers", response_model=CustomerListResponse)
def list_customers(
    search: str | None = Query(None, max_length=100),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    actor: ActorContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    customers, total = customer_service.list_customers(db, search, limit, offset)
    return CustomerListResponse(
        items=[CustomerRead.model_validate(c) for c in customers],
        total=total,
    )


@router.get("/customers/{customer_id}", response_model=CustomerRead)
def get_customer(
    customer_id: str,
    actor: ActorContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    customer = customer_service.get_customer(db, customer_id)
    if not customer:
        raise HTTPException(status_code=404, detail="Customer not found")
    return customer


@router.put("/customers/{customer_id}/consent", response_model=CustomerRead)
def update_consent(
    customer_id: str,
    data: ConsentUpdate,
    actor: ActorContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    customer = customer_service.get_customer(db, customer_id)
    if not customer:
        raise HTTPException(status_code=404, detail="Customer not found")
    return customer_service.set_marketing_consent(db, customer, data.marketing_opt_in)


# =============================================================================
# Notifications (owner only)
# =============================================================================

@router.get("/notifications/settings", response_model=NotificationSettingsRead)
def get_notification_settings(
    actor: ActorContext = Depends(require_owner),
    db: Session = Depends(get_db),
):
    return notification_settings_service.get_settings(db)


@router.put("/notifications/settings", response_model=NotificationSettingsRead)
def update_notification_settings(
    data: NotificationSettingsUpdate,
    actor: ActorContext = Depends(require_owner),
    db: Session = Depends(get_db),
):
    return notification_settings_service.save_settings(
        db, data.model_dump(exclude_none=True), updated_by=actor.actor_id
    )


@router.post("/notifications/broadcast", response_model=BroadcastAccepted, status_code=202)
def broadcast_text(
    data: BroadcastTextRequest,
    background_tasks: BackgroundTasks,
    actor: ActorContext = Depends(require_owner),
    db: Session = Depends(get_db),
    gateway: WhatsAppGateway = Depends(get_gateway),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    """Send a text to every customer who has not opted out. Runs in the background."""
    recipients = len(customer_service.broadcast_recipients(db))
    background_tasks.add_task(
        notification_tasks.broadcast_text_task, session_factory, gateway, data.message
    )
    logger.info("Broadcast scheduled for %s recipients", recipients)
    return BroadcastAccepted(scheduled=True, recipients=recipients)


@router.post("/notifications/broadcast-media", response_model=BroadcastAccepted, status_code=202)
def broadcast_media(
    data: BroadcastMediaRequest,
    background_tasks: BackgroundTasks,
    actor: ActorContext = Depends(require_owner),
    db: Session = Depends(get_db),
    gateway: WhatsAppGateway = Depends(get_gateway),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    recipients = len(customer_service.broadcast_recipients(db))
    background_tasks.add_task(
        notification_tasks.broadcast_media_task,
        session_factory,
        gateway,
        data.media,
        data.caption,
        MediaType(data.mediatype),
    )
    logger.info("Media broadcast scheduled for %s recipients", recipients)
    return BroadcastAccepted(scheduled=True, recipients=recipients)


@router.get("/notifications/queue", response_model=QueueOverview)
def get_queue(
    status: OutboundStatus | None = None,
    limit: int = Query(50, ge=1, le=200),
    actor: ActorContext = Depends(require_owner),
    db: Session = Depends(get_db),
):
    """Operator view of the outbound queue; failed items need a human."""
    return QueueOverview(
        counts=outbound_queue_service.count_by_status(db),
        items=[
            OutboundMessageRead.model_validate(item)
            for item in outbound_queue_service.list_items(db, status, limit)
        ],
    )


# =============================================================================
# Catalog
# =============================================================================

@router.post("/catalog/refresh", status_code=204)
def refresh_catalog(
    actor: ActorContext = Depends(require_owner),
    catalog: ServiceCatalog = Depends(get_catalog),
):
    """Drop the cached catalog so the next read sees edited prices and labels."""
    catalog.invalidate()
    return Response(status_code=204)
