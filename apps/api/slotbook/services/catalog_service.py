"""Service catalog access with an explicit, injectable TTL cache."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, NamedTuple

from sqlalchemy.orm import Session

from slotbook.core.config import settings
from slotbook.db.models import CatalogService

logger = logging.getLogger(__name__)


class CatalogEntry(NamedTuple):
    """Catalog view of one service."""
    id: str
    label: str
    price_cents: int
    active: bool
    sort_order: int


DEFAULT_SERVICES: tuple[CatalogEntry, ...] = (
    CatalogEntry("haircut", "Haircut", 4500, True, 1),
    CatalogEntry("beard", "Beard", 4000, True, 2),
    CatalogEntry("haircut_beard", "Haircut + Beard", 7000, True, 3),
)


@dataclass
class CatalogCache:
    """Cached catalog snapshot and the monotonic time it expires at."""
    entries: dict[str, CatalogEntry] = field(default_factory=dict)
    expires_at: float = 0.0

    def is_fresh(self, now: float) -> bool:
        return bool(self.entries) and now < self.expires_at


class ServiceCatalog:
    """
    Read-only catalog lookups for the booking core.

    Owns its cache; create one per app (and a fresh one per test). Rows are
    read from catalog_services, falling back to DEFAULT_SERVICES when the
    table is empty.
    """

    def __init__(
        self,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = settings.CATALOG_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self.cache = CatalogCache()

    def _load(self, db: Session) -> dict[str, CatalogEntry]:
        rows = db.query(CatalogService).order_by(CatalogService.sort_order).all()
        if not rows:
            return {entry.id: entry for entry in DEFAULT_SERVICES}
        return {
            row.id: CatalogEntry(row.id, row.label, row.price_cents, row.active, row.sort_order)
            for row in rows
        }

    def entries(self, db: Session) -> dict[str, CatalogEntry]:
        now = self._clock()
        if not self.cache.is_fresh(now):
            self.cache = CatalogCache(entries=self._load(db), expires_at=now + self.ttl_seconds)
            logger.debug("Catalog cache refreshed (%s services)", len(self.cache.entries))
        return self.cache.entries

    def get_service(self, db: Session, service_id: str) -> CatalogEntry | None:
        """Get a service by id (active or not), or None if unknown."""
        return self.entries(db).get(service_id)

    def list_services(self, db: Session, active_only: bool = True) -> list[CatalogEntry]:
        services = sorted(self.entries(db).values(), key=lambda e: e.sort_order)
        if active_only:
            return [s for s in services if s.active]
        return services

    def label_for(self, db: Session, service_id: str) -> str:
        """Display label, falling back to the raw id for unknown services."""
        entry = self.get_service(db, service_id)
        return entry.label if entry else service_id

    def invalidate(self) -> None:
        self.cache = CatalogCache()
