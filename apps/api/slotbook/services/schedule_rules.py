"""Opening-hours rules for provider slots.

closed_reason() answers "can this slot be booked at all?" using only the
slot time and the provider's weekly schedule; it never touches storage.
"""

from datetime import datetime, timedelta

from slotbook.core.config import settings
from slotbook.schemas.provider import DaySchedule, WeeklySchedule
from slotbook.utils.slots import is_on_slot_grid, schedule_weekday, to_local


def default_day(weekday: int) -> DaySchedule:
    """Fallback hours when a provider has no weekly schedule."""
    return DaySchedule(
        active=weekday != settings.DEFAULT_CLOSED_WEEKDAY,
        start=settings.DEFAULT_OPEN_TIME,
        end=settings.DEFAULT_CLOSE_TIME,
    )


def day_schedule_for(slot_start: datetime, schedule: WeeklySchedule | None) -> DaySchedule:
    weekday = schedule_weekday(slot_start)
    if schedule is None:
        return default_day(weekday)
    return schedule.for_weekday(weekday) or DaySchedule(active=False)


def _at(local: datetime, hhmm: str) -> datetime:
    hour, minute = (int(p) for p in hhmm.split(":"))
    return local.replace(hour=hour, minute=minute, second=0, microsecond=0)


def closed_reason(slot_start: datetime, schedule: WeeklySchedule | None) -> str | None:
    """
    Return why slot_start cannot be booked, or None if it is open.

    Checks, in order: slot grid alignment, the day being open, the slot
    fitting inside opening hours (last start = close - slot length) and
    the slot not starting inside a break window.
    """
    if not is_on_slot_grid(slot_start):
        return f"Slot must start on a {settings.SLOT_MINUTES}-minute boundary"

    local = to_local(slot_start)
    day = day_schedule_for(local, schedule)
    if not day.active:
        return "Provider is closed on this day"

    opens = _at(local, day.start)
    last_start = _at(local, day.end) - timedelta(minutes=settings.SLOT_MINUTES)
    if local < opens or local > last_start:
        return "Slot is outside opening hours"

    slot_time = local.strftime("%H:%M")
    for brk in day.breaks:
        if brk.start <= slot_time < brk.end:
            return "Slot falls inside a break"
    return None
