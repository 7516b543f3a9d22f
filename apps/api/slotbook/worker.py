"""
Background worker for outbound message retries and reminders.

Usage:
    python -m slotbook.worker

Each tick sweeps one batch of the outbound queue, then sends due
reminders. Run it as a separate process (systemd service, container),
or call the /internal/scheduled endpoints from a cron instead.
"""

import logging
import time
from typing import Callable

from sqlalchemy.orm import Session

from slotbook.core.config import settings
from slotbook.core.structured_logging import build_log_context
from slotbook.db.session import SessionLocal
from slotbook.services import notification_service
from slotbook.services.catalog_service import ServiceCatalog
from slotbook.services.messaging_gateway import WhatsAppGateway

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def run_once(
    session_factory: Callable[[], Session],
    gateway: WhatsAppGateway,
    catalog: ServiceCatalog,
) -> tuple[notification_service.SweepResult, notification_service.ReminderRunResult]:
    """One worker tick: retry queued messages, then send due reminders."""
    with session_factory() as db:
        sweep = notification_service.sweep_queue(db, gateway)
    with session_factory() as db:
        reminders = notification_service.process_reminders(db, gateway, catalog)
    return sweep, reminders


def worker_loop(
    session_factory: Callable[[], Session] = SessionLocal,
    gateway: WhatsAppGateway | None = None,
    catalog: ServiceCatalog | None = None,
) -> None:
    """Main worker loop - polls forever, surviving errors in any single tick."""
    gateway = gateway or WhatsAppGateway.from_settings()
    catalog = catalog or ServiceCatalog()
    logger.info(
        "Worker starting (poll interval: %ss, batch size: %s)",
        settings.WORKER_POLL_INTERVAL,
        settings.SWEEP_BATCH_SIZE,
    )
    if not gateway.configured:
        logger.warning("Evolution API not configured - every send will fail and be queued")

    while True:
        try:
            run_once(session_factory, gateway, catalog)
        except Exception:
            logger.exception("Error in worker loop", extra=build_log_context(route="worker"))
        time.sleep(settings.WORKER_POLL_INTERVAL)


def main() -> None:
    """Entry point for the worker."""
    try:
        worker_loop()
    except KeyboardInterrupt:
        logger.info("Worker shutting down")


if __name__ == "__main__":
    main()
