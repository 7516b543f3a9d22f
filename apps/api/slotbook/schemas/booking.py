"""Booking schemas - Pydantic models for the reservation API."""

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Create
# =============================================================================

class CustomerIn(BaseModel):
    """Customer details typed into the booking form."""
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    phone: str = Field(..., min_length=8, max_length=30)
    birth_date: date | None = None


class BookingCreate(BaseModel):
    """Public booking request. slot_start is ISO-8601; naive means shop-local."""
    provider_id: str = Field(..., min_length=1, max_length=50)
    service_id: str = Field(..., min_length=1, max_length=50)
    slot_start: str = Field(..., min_length=16, max_length=40)
    customer: CustomerIn


class AdminBookingCreate(BookingCreate):
    """Walk-in or phone booking entered from the admin console."""
    force_whatsapp_sent: bool = False


class BookingCreated(BaseModel):
    """Cancel code is returned exactly once, at creation."""
    booking_id: str
    cancel_code: str
    slot_id: str
    status: str


# =============================================================================
# Cancel / reschedule / status
# =============================================================================

class CancelByCodeRequest(BaseModel):
    cancel_code: str = Field(..., min_length=8, max_length=128)


class CancelByCodeResult(BaseModel):
    booking_id: str
    status: str
    cancelled: bool


class RescheduleRequest(BaseModel):
    slot_start: str = Field(..., min_length=16, max_length=40)


class StatusUpdate(BaseModel):
    status: Literal["confirmed", "completed", "no_show"]


# =============================================================================
# Reads
# =============================================================================

class BookingRead(BaseModel):
    """Admin view of a booking. Never includes the cancel code hash."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    customer_id: str
    provider_id: str
    service_id: str
    slot_start: datetime
    date_key: str
    status: str
    whatsapp_status: str
    customer_first_name: str
    customer_last_name: str
    customer_phone_e164: str
    created_by: str | None = None
    cancelled_by: str | None = None
    rescheduled_from_slot_id: str | None = None
    confirmed_at: datetime | None = None
    completed_at: datetime | None = None
    no_show_at: datetime | None = None
    cancelled_at: datetime | None = None
    rescheduled_at: datetime | None = None
    confirmation_sent_at: datetime | None = None
    reminder_sent_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class DaySummary(BaseModel):
    date_key: str
    total: int
    by_status: dict[str, int]


class ServiceRead(BaseModel):
    id: str
    label: str
    price_cents: int
    active: bool
