"""Customer schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class CustomerLookupRequest(BaseModel):
    phone: str = Field(..., min_length=8, max_length=30)


class CustomerLookupResult(BaseModel):
    """What the public form may learn about a returning customer. Nothing more."""
    found: bool
    first_name: str | None = None
    last_name_initial: str | None = None
    has_birth_date: bool = False


class CustomerRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    first_name: str
    last_name: str
    phone_e164: str
    birthday: str | None = None
    notes: str | None = None
    tags: list[str] = Field(default_factory=list)
    marketing_opt_in: bool
    marketing_opt_in_at: datetime | None = None
    marketing_opt_out_at: datetime | None = None
    total_bookings: int
    total_completed: int
    no_show_count: int
    first_booking_at: datetime | None = None
    last_booking_at: datetime | None = None
    last_completed_at: datetime | None = None
    created_at: datetime


class CustomerListResponse(BaseModel):
    items: list[CustomerRead]
    total: int


class ConsentUpdate(BaseModel):
    marketing_opt_in: bool
