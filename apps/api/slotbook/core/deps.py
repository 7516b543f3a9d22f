"""FastAPI dependencies for database access, collaborators and admin authorization."""

import secrets
from typing import Callable, Generator

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from slotbook.core.config import settings
from slotbook.db.enums import ActorRole
from slotbook.db.session import SessionLocal
from slotbook.schemas.auth import ActorContext
from slotbook.services.catalog_service import ServiceCatalog
from slotbook.services.messaging_gateway import WhatsAppGateway


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> Callable[[], Session]:
    """Session factory for background tasks (they outlive the request session)."""
    return SessionLocal


def get_gateway(request: Request) -> WhatsAppGateway:
    return request.app.state.gateway


def get_catalog(request: Request) -> ServiceCatalog:
    return request.app.state.catalog


def require_admin(
    x_admin_key: str | None = Header(default=None),
    x_provider_id: str | None = Header(default=None),
) -> ActorContext:
    """
    Resolve the admin actor from request headers.

    X-Admin-Key must match ADMIN_API_KEY. With X-Provider-Id the actor is
    that provider and only sees their own calendar; without it the actor
    is the shop owner.

    Raises:
        HTTPException 501: ADMIN_API_KEY not configured
        HTTPException 401: missing or wrong key
    """
    if not settings.ADMIN_API_KEY:
        raise HTTPException(status_code=501, detail="ADMIN_API_KEY not configured")
    if not x_admin_key or not secrets.compare_digest(x_admin_key, settings.ADMIN_API_KEY):
        raise HTTPException(status_code=401, detail="Invalid admin key")
    if x_provider_id:
        return ActorContext(
            actor_id=f"provider:{x_provider_id}",
            role=ActorRole.PROVIDER,
            provider_id=x_provider_id,
        )
    return ActorContext(actor_id="owner", role=ActorRole.OWNER)


def require_owner(actor: ActorContext = Depends(require_admin)) -> ActorContext:
    if actor.role != ActorRole.OWNER:
        raise HTTPException(status_code=403, detail="Owner access required")
    return actor


def verify_internal_secret(x_internal_secret: str = Header(...)) -> None:
    """Verify the internal secret header."""
    if not settings.INTERNAL_SECRET:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if not secrets.compare_digest(x_internal_secret, settings.INTERNAL_SECRET):
        raise HTTPException(status_code=403, detail="Invalid internal secret")
