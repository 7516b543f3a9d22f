"""Notification schemas - settings, broadcasts, queue and cron results."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Settings
# =============================================================================

class NotificationSettingsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    confirmation_enabled: bool
    confirmation_message: str
    reminder_enabled: bool
    reminder_minutes_before: int
    reminder_message: str
    cancellation_message: str
    birthday_enabled: bool
    birthday_message: str
    updated_at: datetime | None = None
    updated_by: str | None = None


class NotificationSettingsUpdate(BaseModel):
    """Partial update; omitted fields keep their current value."""
    confirmation_enabled: bool | None = None
    confirmation_message: str | None = Field(None, min_length=1, max_length=1000)
    reminder_enabled: bool | None = None
    reminder_minutes_before: int | None = Field(None, ge=15, le=1440)
    reminder_message: str | None = Field(None, min_length=1, max_length=1000)
    cancellation_message: str | None = Field(None, min_length=1, max_length=1000)
    birthday_enabled: bool | None = None
    birthday_message: str | None = Field(None, min_length=1, max_length=1000)


# =============================================================================
# Broadcasts
# =============================================================================

class BroadcastTextRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=4000)


class BroadcastMediaRequest(BaseModel):
    media: str = Field(..., min_length=1, description="http(s) URL or base64 data")
    caption: str | None = Field(None, max_length=1024)
    mediatype: Literal["image", "video", "document"] = "image"


class BroadcastAccepted(BaseModel):
    """Broadcast was scheduled; results are only visible in logs and the ledger."""
    scheduled: bool
    recipients: int


class BroadcastErrorItem(BaseModel):
    customer_id: str
    phone: str
    error: str


class BroadcastResultRead(BaseModel):
    total: int
    sent: int
    failed: int
    skipped: int
    errors: list[BroadcastErrorItem]


# =============================================================================
# Queue
# =============================================================================

class OutboundMessageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    booking_id: str | None = None
    message_type: str
    status: str
    attempts: int
    max_attempts: int
    last_error: str | None = None
    created_at: datetime
    last_attempt_at: datetime | None = None
    sent_at: datetime | None = None


class QueueOverview(BaseModel):
    counts: dict[str, int]
    items: list[OutboundMessageRead]


class SweepResultRead(BaseModel):
    processed: int
    sent: int
    failed: int
    retrying: int


class ReminderRunRead(BaseModel):
    processed: int
    sent: int
    queued: int
