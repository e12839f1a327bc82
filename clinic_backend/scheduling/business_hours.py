"""
Business hours resolution.

A weekly schedule maps weekday names to ``{is_open, start, end}``. A
professional's own schedule overrides the company default; with neither
configured the day is treated as fully open, since missing configuration is
not a safety concern. A weekday missing from a configured schedule is closed.
"""

from datetime import date, time
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

WEEKDAY_NAMES = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')
MINUTES_PER_DAY = 24 * 60


def minutes_of_day(value: time) -> int:
    return value.hour * 60 + value.minute


class DaySchedule(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_open: bool = Field(default=True, alias='isOpen')
    start: time = time(0, 0)
    end: time = time(0, 0)

    @model_validator(mode='after')
    def validate_window(self) -> 'DaySchedule':
        # end == 00:00 means the day runs until midnight.
        if self.is_open and self.end != time(0, 0) and self.start >= self.end:
            raise ValueError('Opening time must be before closing time.')
        return self

    @property
    def open_minute(self) -> int:
        return minutes_of_day(self.start)

    @property
    def close_minute(self) -> int:
        if self.end == time(0, 0):
            return MINUTES_PER_DAY
        return minutes_of_day(self.end)


FULLY_OPEN_DAY = DaySchedule(is_open=True, start=time(0, 0), end=time(0, 0))
CLOSED_DAY = DaySchedule(is_open=False)


class WeeklySchedule(BaseModel):
    days: dict[str, DaySchedule] = Field(default_factory=dict)

    @model_validator(mode='before')
    @classmethod
    def accept_flat_mapping(cls, value: Any) -> Any:
        # Stored JSON is the flat {"monday": {...}, ...} shape.
        if isinstance(value, dict) and 'days' not in value:
            return {'days': value}
        return value

    @field_validator('days')
    @classmethod
    def validate_weekday_keys(cls, value: dict[str, DaySchedule]) -> dict[str, DaySchedule]:
        normalized = {key.strip().lower(): day for key, day in value.items()}
        unknown = set(normalized) - set(WEEKDAY_NAMES)
        if unknown:
            raise ValueError(f'Unknown weekday(s): {", ".join(sorted(unknown))}.')
        return normalized

    def for_weekday(self, weekday: int) -> DaySchedule:
        return self.days.get(WEEKDAY_NAMES[weekday], CLOSED_DAY)

    def to_storage(self) -> dict[str, Any]:
        return {
            name: {'isOpen': day.is_open, 'start': day.start.strftime('%H:%M'), 'end': day.end.strftime('%H:%M')}
            for name, day in self.days.items()
        }


def parse_weekly_schedule(raw: Any) -> WeeklySchedule | None:
    if raw is None:
        return None
    if isinstance(raw, WeeklySchedule):
        return raw
    return WeeklySchedule.model_validate(raw)


class BusinessHours:
    """Company default schedule plus per-professional overrides."""

    def __init__(
        self,
        company_schedule: WeeklySchedule | None = None,
        professional_schedules: dict[int, WeeklySchedule] | None = None,
    ) -> None:
        self.company_schedule = company_schedule
        self.professional_schedules = professional_schedules or {}

    def resolve(self, professional_id: int | None, weekday: int) -> DaySchedule:
        if professional_id is not None and professional_id in self.professional_schedules:
            return self.professional_schedules[professional_id].for_weekday(weekday)
        if self.company_schedule is not None:
            return self.company_schedule.for_weekday(weekday)
        return FULLY_OPEN_DAY

    def resolve_date(self, professional_id: int | None, target_date: date) -> DaySchedule:
        return self.resolve(professional_id, target_date.weekday())
