"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
Call from an external cron when the worker process is not running.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from slotbook.core.deps import get_catalog, get_db, get_gateway, verify_internal_secret
from slotbook.schemas.notification import BroadcastResultRead, ReminderRunRead, SweepResultRead
from slotbook.services import notification_service
from slotbook.services.catalog_service import ServiceCatalog
from slotbook.services.messaging_gateway import WhatsAppGateway

router = APIRouter(
    prefix="/internal/scheduled",
    tags=["internal"],
    dependencies=[Depends(verify_internal_secret)],
)


@router.post("/process-queue", response_model=SweepResultRead)
def process_queue(
    db: Session = Depends(get_db),
    gateway: WhatsAppGateway = Depends(get_gateway),
):
    """Retry one batch of pending outbound messages, oldest first."""
    return notification_service.sweep_queue(db, gateway)._asdict()


@router.post("/send-reminders", response_model=ReminderRunRead)
def send_reminders(
    db: Session = Depends(get_db),
    gateway: WhatsAppGateway = Depends(get_gateway),
    catalog: ServiceCatalog = Depends(get_catalog),
):
    return notification_service.process_reminders(db, gateway, catalog)._asdict()


@router.post("/send-birthdays", response_model=BroadcastResultRead)
def send_birthdays(
    db: Session = Depends(get_db),
    gateway: WhatsAppGateway = Depends(get_gateway),
):
    """Birthday greetings for today (shop-local). Safe to call more than once a day."""
    return notification_service.process_birthday_messages(db, gateway)._asdict()
