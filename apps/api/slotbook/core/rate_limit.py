"""Rate limiting configuration for the booking API."""

import os

from slowapi import Limiter
from slowapi.util import get_remote_address

from slotbook.core.config import settings

IS_TESTING = os.getenv("TESTING", "").lower() in ("1", "true", "yes")

# Limits are per IP and only applied to public write endpoints
PUBLIC_WRITE_LIMIT = f"{settings.RATE_LIMIT_PUBLIC}/minute"

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    default_limits=[],
    enabled=not IS_TESTING and settings.RATE_LIMIT_PUBLIC > 0,
)
