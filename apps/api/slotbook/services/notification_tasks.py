"""Background notification tasks scheduled from request handlers.

Contract for every task here:
- runs after the response is sent (FastAPI BackgroundTasks)
- opens its own session from the given session factory
- gives the caller no completion signal and no ordering guarantee
- logs failures and never raises
"""

import logging
from typing import Callable

from sqlalchemy.orm import Session

from slotbook.core.structured_logging import build_log_context
from slotbook.db.enums import MediaType
from slotbook.services import notification_service
from slotbook.services.catalog_service import ServiceCatalog
from slotbook.services.messaging_gateway import WhatsAppGateway

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


def _run(session_factory: SessionFactory, label: str, booking_id: str | None, fn) -> None:
    try:
        with session_factory() as db:
            fn(db)
    except Exception:
        logger.exception(
            "Background %s task failed",
            label,
            extra=build_log_context(booking_id=booking_id),
        )


def send_confirmation_task(
    session_factory: SessionFactory,
    gateway: WhatsAppGateway,
    catalog: ServiceCatalog,
    booking_id: str,
    cancel_code: str,
    base_url: str | None = None,
) -> None:
    _run(
        session_factory,
        "confirmation",
        booking_id,
        lambda db: notification_service.send_booking_confirmation(
            db, gateway, catalog, booking_id, cancel_code, base_url
        ),
    )


def send_reschedule_task(
    session_factory: SessionFactory,
    gateway: WhatsAppGateway,
    catalog: ServiceCatalog,
    booking_id: str,
) -> None:
    _run(
        session_factory,
        "reschedule",
        booking_id,
        lambda db: notification_service.send_reschedule_notice(db, gateway, catalog, booking_id),
    )


def send_cancellation_task(
    session_factory: SessionFactory,
    gateway: WhatsAppGateway,
    booking_id: str,
    base_url: str | None = None,
) -> None:
    _run(
        session_factory,
        "cancellation",
        booking_id,
        lambda db: notification_service.send_cancellation_confirmation(
            db, gateway, booking_id, base_url
        ),
    )


def broadcast_text_task(
    session_factory: SessionFactory,
    gateway: WhatsAppGateway,
    message: str,
) -> None:
    _run(
        session_factory,
        "broadcast",
        None,
        lambda db: notification_service.broadcast_text(db, gateway, message),
    )


def broadcast_media_task(
    session_factory: SessionFactory,
    gateway: WhatsAppGateway,
    media: str,
    caption: str | None,
    mediatype: MediaType,
) -> None:
    _run(
        session_factory,
        "media broadcast",
        None,
        lambda db: notification_service.broadcast_media(
            db, gateway, media, caption=caption, mediatype=mediatype
        ),
    )
