"""Slot grid helpers: shop-local time, slot ids and date keys.

All functions here are pure. A slot id is the shop-local start of the
30-minute bucket containing an instant, formatted ``YYYYMMDD_HHMM``; a
date key is the shop-local calendar day, ``YYYY-MM-DD``.

Naive datetimes are interpreted as shop-local wall time.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo

from slotbook.core.config import settings

SLOT_ID_FORMAT = "%Y%m%d_%H%M"
DATE_KEY_FORMAT = "%Y-%m-%d"


@lru_cache(maxsize=8)
def get_timezone(name: str | None = None) -> ZoneInfo:
    """Get the shop timezone (or an explicit one)."""
    return ZoneInfo(name or settings.SHOP_TIMEZONE)


def to_local(dt: datetime, tz_name: str | None = None) -> datetime:
    """Convert to shop-local time; naive input is taken as already local."""
    tz = get_timezone(tz_name)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=tz)
    return dt.astimezone(tz)


def floor_to_slot(dt: datetime, slot_minutes: int | None = None) -> datetime:
    """Round a datetime down to the start of its slot (shop-local)."""
    minutes = slot_minutes or settings.SLOT_MINUTES
    local = to_local(dt)
    return local.replace(
        minute=local.minute - (local.minute % minutes), second=0, microsecond=0
    )


def is_on_slot_grid(dt: datetime, slot_minutes: int | None = None) -> bool:
    """True when dt starts exactly on a slot boundary."""
    minutes = slot_minutes or settings.SLOT_MINUTES
    local = to_local(dt)
    return local.minute % minutes == 0 and local.second == 0 and local.microsecond == 0


def slot_id_for(dt: datetime) -> str:
    """Deterministic slot id for the bucket containing dt."""
    return floor_to_slot(dt).strftime(SLOT_ID_FORMAT)


def date_key_for(dt: datetime) -> str:
    """Shop-local calendar day of dt."""
    return to_local(dt).strftime(DATE_KEY_FORMAT)


def slot_start_from_id(slot_id: str) -> datetime:
    """Inverse of slot_id_for: shop-local aware start of the slot."""
    naive = datetime.strptime(slot_id, SLOT_ID_FORMAT)
    return naive.replace(tzinfo=get_timezone())


def parse_slot_start(raw: str) -> datetime:
    """
    Parse an ISO-8601 slot start into an aware shop-local datetime.

    Offsets (including ``Z``) are honored; values without one are shop-local.

    Raises:
        ValueError: if the value is not ISO-8601
    """
    value = raw.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return to_local(datetime.fromisoformat(value))


def parse_date_key(date_key: str) -> datetime:
    """Shop-local midnight of a ``YYYY-MM-DD`` date key."""
    naive = datetime.strptime(date_key, DATE_KEY_FORMAT)
    return naive.replace(tzinfo=get_timezone())


def schedule_weekday(dt: datetime) -> int:
    """Weekday in schedule-key convention: 0 = Sunday .. 6 = Saturday."""
    return (to_local(dt).weekday() + 1) % 7


def day_slots(date_key: str, start_hhmm: str, end_hhmm: str) -> list[datetime]:
    """All slot starts on a day whose whole slot fits in [start, end)."""
    minutes = settings.SLOT_MINUTES
    day = parse_date_key(date_key)
    start_h, start_m = (int(p) for p in start_hhmm.split(":"))
    end_h, end_m = (int(p) for p in end_hhmm.split(":"))
    cursor = day.replace(hour=start_h, minute=start_m)
    end = day.replace(hour=end_h, minute=end_m)
    slots = []
    while cursor + timedelta(minutes=minutes) <= end:
        slots.append(cursor)
        cursor += timedelta(minutes=minutes)
    return slots


def utc(dt: datetime) -> datetime:
    """Aware UTC copy of dt."""
    return to_local(dt).astimezone(timezone.utc)
