"""WhatsApp message templates."""

import re
from datetime import datetime

from slotbook.utils.slots import to_local

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
MONTHS = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)

NAME_PLACEHOLDER = re.compile(r"\{(name|nome|first_name)\}", re.IGNORECASE)


def format_date(dt: datetime) -> str:
    """Shop-local date like 'Monday, June 10'."""
    local = to_local(dt)
    return f"{WEEKDAYS[local.weekday()]}, {MONTHS[local.month - 1]} {local.day}"


def format_time(dt: datetime) -> str:
    return to_local(dt).strftime("%H:%M")


def cancel_link(base_url: str, booking_id: str, cancel_code: str) -> str:
    return f"{base_url.rstrip('/')}/cancel/{booking_id}?code={cancel_code}"


def personalize(template: str, first_name: str | None) -> str:
    """Replace {name} (also {nome}, {first_name}) with the recipient's first name."""
    return NAME_PLACEHOLDER.sub(first_name or "", template)


def render_confirmation(
    *,
    first_name: str,
    custom_message: str,
    service_label: str,
    provider_name: str,
    slot_start: datetime,
    link: str,
) -> str:
    lines = [
        f"Hi, {first_name}! 👋",
        "",
        custom_message,
        "",
        "📋 *Booking details:*",
        f"• Service: {service_label}",
        f"• Professional: {provider_name}",
        f"• Date: {format_date(slot_start)}",
        f"• Time: {format_time(slot_start)}",
        "",
        "🔗 Need to cancel?",
        link,
        "",
        "See you soon! ✂️",
    ]
    return "\n".join(lines)


def render_reschedule(
    *,
    first_name: str,
    service_label: str,
    provider_name: str,
    slot_start: datetime,
) -> str:
    lines = [
        f"Hi, {first_name}!",
        "",
        "Your booking was moved. New details:",
        f"• Service: {service_label}",
        f"• Professional: {provider_name}",
        f"• Date: {format_date(slot_start)}",
        f"• Time: {format_time(slot_start)}",
    ]
    return "\n".join(lines)


def render_reminder(
    *,
    first_name: str,
    custom_message: str,
    service_label: str,
    slot_start: datetime,
) -> str:
    lines = [
        f"Hi, {first_name}! ⏰",
        "",
        custom_message,
        "",
        f"📋 Your time: *{format_time(slot_start)}*",
        f"✂️ Service: {service_label}",
        "",
        "See you there!",
    ]
    return "\n".join(lines)


def render_cancellation(*, first_name: str, custom_message: str, booking_url: str) -> str:
    lines = [
        f"Hi, {first_name}!",
        "",
        custom_message,
        "",
        "📅 Want to book again?",
        booking_url,
    ]
    return "\n".join(lines)
