"""Structured logging helpers (PII-safe)."""

from typing import Any

from slotbook.utils.normalization import mask_phone


def build_log_context(
    *,
    booking_id: str | None = None,
    provider_id: str | None = None,
    queue_item_id: int | None = None,
    message_type: str | None = None,
    phone: str | None = None,
    route: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict."""
    context: dict[str, Any] = {}
    if booking_id:
        context["booking_id"] = booking_id
    if provider_id:
        context["provider_id"] = provider_id
    if queue_item_id is not None:
        context["queue_item_id"] = queue_item_id
    if message_type:
        context["message_type"] = message_type
    if phone:
        context["phone"] = mask_phone(phone)
    if route:
        context["route"] = route
    return context
