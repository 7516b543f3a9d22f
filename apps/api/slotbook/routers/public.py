"""Public booking router - unauthenticated endpoints for customers.

Customers can:
- Browse services, providers and availability
- Book a slot
- Cancel with the secret code from their confirmation message
- Look up whether their phone is already known
"""

from typing import Callable

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from slotbook.core.deps import get_catalog, get_db, get_gateway, get_session_factory
from slotbook.core.rate_limit import PUBLIC_WRITE_LIMIT, limiter
from slotbook.routers.errors import SERVICE_ERRORS, to_http
from slotbook.schemas.booking import (
    BookingCreate,
    BookingCreated,
    CancelByCodeRequest,
    CancelByCodeResult,
    ServiceRead,
)
from slotbook.schemas.customer import CustomerLookupRequest, CustomerLookupResult
from slotbook.schemas.provider import AvailabilityRead, ProviderRead
from slotbook.services import customer_service, notification_tasks, reservation_service
from slotbook.services.catalog_service import ServiceCatalog
from slotbook.services.messaging_gateway import WhatsAppGateway
from slotbook.utils.slots import parse_slot_start, slot_id_for

router = APIRouter(prefix="/public", tags=["public"])


# =============================================================================
# Catalog & availability
# =============================================================================

@router.get("/services", response_model=list[ServiceRead])
def list_services(
    db: Session = Depends(get_db),
    catalog: ServiceCatalog = Depends(get_catalog),
):
    return [
        ServiceRead(id=s.id, label=s.label, price_cents=s.price_cents, active=s.active)
        for s in catalog.list_services(db)
    ]


@router.get("/providers", response_model=list[ProviderRead])
def list_providers(db: Session = Depends(get_db)):
    return [
        ProviderRead(id=p.id, name=p.name, active=p.active)
        for p in reservation_service.list_providers(db)
    ]


@router.get("/availability", response_model=AvailabilityRead)
def get_availability(
    provider_id: str = Query(..., min_length=1),
    date_key: str = Query(..., pattern=r"^\d{4}-\d{2}-\d{2}$"),
    db: Session = Depends(get_db),
):
    """
    Held slots for one provider on one day.

    The client derives free slots from the day's schedule minus booked
    and blocked slot ids.
    """
    try:
        return reservation_service.get_availability(db, provider_id, date_key)
    except SERVICE_ERRORS as exc:
        raise to_http(exc) from exc


# =============================================================================
# Booking
# =============================================================================

@router.post("/bookings", response_model=BookingCreated, status_code=201)
@limiter.limit(PUBLIC_WRITE_LIMIT)
def create_booking(
    data: BookingCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    catalog: ServiceCatalog = Depends(get_catalog),
    gateway: WhatsAppGateway = Depends(get_gateway),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    """
    Reserve a slot.

    The WhatsApp confirmation is sent in the background after the
    response; the booking stands whether or not that send succeeds.
    """
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
        )
    except SERVICE_ERRORS as exc:
        raise to_http(exc) from exc

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


@router.post("/bookings/cancel", response_model=CancelByCodeResult)
@limiter.limit(PUBLIC_WRITE_LIMIT)
def cancel_booking(
    data: CancelByCodeRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    gateway: WhatsAppGateway = Depends(get_gateway),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    """Cancel with the code from the confirmation link. Repeating it is a no-op."""
    try:
        result = reservation_service.cancel_by_code(db, data.cancel_code)
    except SERVICE_ERRORS as exc:
        raise to_http(exc) from exc

    if result.cancelled:
        background_tasks.add_task(
            notification_tasks.send_cancellation_task,
            session_factory,
            gateway,
            result.booking.id,
        )
    return CancelByCodeResult(
        booking_id=result.booking.id,
        status=result.booking.status,
        cancelled=result.cancelled,
    )


# =============================================================================
# Returning customers
# =============================================================================

@router.post("/customers/lookup", response_model=CustomerLookupResult)
@limiter.limit(PUBLIC_WRITE_LIMIT)
def lookup_customer(
    data: CustomerLookupRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    try:
        return customer_service.lookup_summary(db, data.phone)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
