"""Notification settings - shop-wide message toggles and texts."""

from datetime import datetime, timezone

from sqlalchemy.orm import Session

from slotbook.db.models import NotificationSettings

SETTINGS_ID = "default"

DEFAULTS = {
    "confirmation_enabled": True,
    "confirmation_message": "Your booking is confirmed! See you at the shop.",
    "reminder_enabled": True,
    "reminder_minutes_before": 60,
    "reminder_message": "Reminder: your appointment is coming up soon. Please be on time!",
    "cancellation_message": "Your booking was cancelled as requested. Hope to see you soon!",
    "birthday_enabled": False,
    "birthday_message": "Happy birthday, {name}! Come celebrate with a fresh cut this week.",
}


def get_settings(db: Session) -> NotificationSettings:
    """Stored settings, or an unsaved defaults row when none exist yet."""
    row = db.get(NotificationSettings, SETTINGS_ID)
    if row is not None:
        return row
    return NotificationSettings(id=SETTINGS_ID, **DEFAULTS)


def save_settings(db: Session, values: dict, updated_by: str | None = None) -> NotificationSettings:
    """Upsert settings; keys not in values keep their current value."""
    row = db.get(NotificationSettings, SETTINGS_ID)
    if row is None:
        row = NotificationSettings(id=SETTINGS_ID, **DEFAULTS)
        db.add(row)
    for field, value in values.items():
        if field in DEFAULTS and value is not None:
            setattr(row, field, value)
    row.updated_at = datetime.now(timezone.utc)
    row.updated_by = updated_by
    db.commit()
    db.refresh(row)
    return row
