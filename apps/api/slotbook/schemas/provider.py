"""Provider schemas - weekly schedules and availability."""

from typing import Annotated

from pydantic import BaseModel, Field, field_validator, model_validator

# 24h wall time, "HH:MM"
HHMM = Annotated[str, Field(pattern=r"^([01]\d|2[0-3]):[0-5]\d$")]


class BreakWindow(BaseModel):
    """A closed interval inside an open day, [start, end)."""
    start: HHMM
    end: HHMM

    @model_validator(mode="after")
    def _ordered(self):
        if self.end <= self.start:
            raise ValueError("break end must be after start")
        return self


class DaySchedule(BaseModel):
    """Opening hours for one weekday."""
    active: bool = False
    start: HHMM = "09:00"
    end: HHMM = "18:30"
    breaks: list[BreakWindow] = Field(default_factory=list)

    @model_validator(mode="after")
    def _ordered(self):
        if self.end <= self.start:
            raise ValueError("day end must be after start")
        return self


class WeeklySchedule(BaseModel):
    """Weekday ("0" = Sunday .. "6") → DaySchedule. Missing days are closed."""
    days: dict[str, DaySchedule] = Field(default_factory=dict)

    @field_validator("days")
    @classmethod
    def _valid_keys(cls, value: dict[str, DaySchedule]) -> dict[str, DaySchedule]:
        for key in value:
            if key not in {"0", "1", "2", "3", "4", "5", "6"}:
                raise ValueError(f"invalid weekday key: {key}")
        return value

    @classmethod
    def from_stored(cls, raw: dict | None) -> "WeeklySchedule | None":
        if not raw:
            return None
        return cls(days=raw)

    def for_weekday(self, weekday: int) -> DaySchedule | None:
        return self.days.get(str(weekday))


class ProviderRead(BaseModel):
    """Public provider listing."""
    id: str
    name: str
    active: bool


class AvailabilityRead(BaseModel):
    """Held slots for one provider on one day."""
    provider_id: str
    date_key: str
    booked_slot_ids: list[str]
    blocked_slot_ids: list[str]
    schedule: DaySchedule | None = None


class BlockSlotsRequest(BaseModel):
    """Block every free slot in [start_time, end_time) on a day."""
    provider_id: str = Field(..., min_length=1)
    date_key: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$")
    start_time: HHMM
    end_time: HHMM
    reason: str | None = Field(None, max_length=200)


class BlockSlotsResult(BaseModel):
    created_slot_ids: list[str]
    skipped_slot_ids: list[str]


class UnblockSlotRequest(BaseModel):
    provider_id: str = Field(..., min_length=1)
    slot_id: str = Field(..., pattern=r"^\d{8}_\d{4}$")
