"""
Slot Generation Service

Builds the public list of bookable start times for one day. The generator is
a pure function of its arguments so identical inputs always produce the
identical, ascending list.

Algorithm:
    1. Resolve the day's window (professional override, company default,
       or fully open).
    2. Step minute-of-day from opening time by ``slot_interval``.
    3. Each candidate occupies ``[start, start + procedure duration)``;
       candidates that would run past closing are not offered.
    4. A candidate is unavailable when it is too soon, blocked by a rule,
       conflicts with the pinned professional, or no room is free.
"""

from datetime import date, datetime, time, timedelta
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from clinic_backend.core import config
from clinic_backend.core.errors import ValidationError
from clinic_backend.scheduling.business_hours import BusinessHours
from clinic_backend.scheduling.conflicts import find_conflict
from clinic_backend.scheduling.rooms import room_capacity_exceeded
from clinic_backend.scheduling.unavailability import find_blocking_rule

ALLOWED_SLOT_INTERVALS = (10, 15, 30, 60)


class SlotConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    slot_interval: int = Field(default=config.DEFAULT_SLOT_INTERVAL_MINUTES, alias='slotInterval')
    min_advance_time: int = Field(default=config.DEFAULT_MIN_ADVANCE_MINUTES, ge=0, alias='minAdvanceTime')
    max_booking_period: int = Field(default=config.DEFAULT_MAX_BOOKING_PERIOD_DAYS, ge=0, alias='maxBookingPeriod')
    room_pool_size: int = Field(default=config.ROOM_POOL_SIZE, ge=1)

    @field_validator('slot_interval')
    @classmethod
    def validate_slot_interval(cls, value: int) -> int:
        if value not in ALLOWED_SLOT_INTERVALS:
            raise ValueError('Slot interval must be 10, 15, 30 or 60 minutes.')
        return value


class Slot(BaseModel):
    time: time
    available: bool


def ensure_within_booking_period(target_date: date, now: datetime, slot_config: SlotConfig) -> None:
    last_bookable_date = now.date() + timedelta(days=slot_config.max_booking_period)
    if target_date > last_bookable_date:
        raise ValidationError(
            f'Appointments can only be booked up to {slot_config.max_booking_period} days ahead.',
            {'max_booking_period': slot_config.max_booking_period, 'date': target_date.isoformat()},
        )


def generate_slots(
    target_date: date,
    professional_id: Optional[int],
    procedure_duration_minutes: int,
    business_hours: BusinessHours,
    unavailability_rules: Iterable[Any],
    existing_appointments: Iterable[Any],
    slot_config: SlotConfig,
    now: datetime,
) -> list[Slot]:
    if procedure_duration_minutes <= 0:
        raise ValidationError('Procedure duration must be greater than zero.')

    ensure_within_booking_period(target_date, now, slot_config)

    day = business_hours.resolve_date(professional_id, target_date)
    if not day.is_open:
        return []

    rules = list(unavailability_rules)
    appointments = list(existing_appointments)
    earliest_start = now + timedelta(minutes=slot_config.min_advance_time)
    day_start = datetime.combine(target_date, time(0, 0))
    open_minute = day.open_minute
    close_minute = day.close_minute

    slots: list[Slot] = []
    for start_minute in range(open_minute, close_minute, slot_config.slot_interval):
        end_minute = start_minute + procedure_duration_minutes
        if end_minute > close_minute:
            break

        slot_start = day_start + timedelta(minutes=start_minute)
        slot_end = day_start + timedelta(minutes=end_minute)

        available = not (
            slot_start < earliest_start
            or find_blocking_rule(target_date, start_minute, end_minute, rules, professional_id) is not None
            or (
                professional_id is not None
                and find_conflict(professional_id, slot_start, procedure_duration_minutes, appointments).conflict
            )
            or room_capacity_exceeded(appointments, slot_start, slot_end, slot_config.room_pool_size)
        )

        slots.append(Slot(time=slot_start.time(), available=available))

    return slots
