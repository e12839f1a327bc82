from datetime import date, time

import pytest
from pydantic import ValidationError

from clinic_backend.scheduling.business_hours import (
    BusinessHours,
    DaySchedule,
    WeeklySchedule,
    parse_weekly_schedule,
)

MONDAY = 0
SUNDAY = 6


def _schedule(**days) -> WeeklySchedule:
    return WeeklySchedule.model_validate(days)


def test_professional_schedule_overrides_company_default() -> None:
    company = _schedule(monday={'isOpen': True, 'start': '08:00', 'end': '18:00'})
    professional = _schedule(monday={'isOpen': True, 'start': '13:00', 'end': '20:00'})
    hours = BusinessHours(company, {7: professional})

    resolved = hours.resolve(7, MONDAY)

    assert (resolved.start, resolved.end) == (time(13, 0), time(20, 0))


def test_other_professionals_fall_back_to_company_default() -> None:
    company = _schedule(monday={'isOpen': True, 'start': '08:00', 'end': '18:00'})
    hours = BusinessHours(company, {7: _schedule(monday={'isOpen': False})})

    assert hours.resolve(8, MONDAY).start == time(8, 0)
    assert hours.resolve(None, MONDAY).start == time(8, 0)
    assert hours.resolve(7, MONDAY).is_open is False


def test_missing_weekday_is_closed() -> None:
    hours = BusinessHours(_schedule(monday={'isOpen': True, 'start': '08:00', 'end': '18:00'}))

    assert hours.resolve(None, SUNDAY).is_open is False


def test_no_configuration_is_fully_open() -> None:
    day = BusinessHours().resolve_date(None, date(2024, 6, 9))

    assert day.is_open is True
    assert (day.open_minute, day.close_minute) == (0, 24 * 60)


def test_midnight_end_rolls_over_to_end_of_day() -> None:
    day = DaySchedule(is_open=True, start=time(18, 0), end=time(0, 0))

    assert day.close_minute == 24 * 60


def test_start_after_end_is_rejected() -> None:
    with pytest.raises(ValidationError):
        DaySchedule(is_open=True, start=time(18, 0), end=time(8, 0))


def test_closed_day_skips_window_validation() -> None:
    day = DaySchedule(is_open=False, start=time(18, 0), end=time(8, 0))

    assert day.is_open is False


def test_unknown_weekday_key_is_rejected() -> None:
    with pytest.raises(ValidationError):
        _schedule(funday={'isOpen': True, 'start': '08:00', 'end': '18:00'})


def test_parse_weekly_schedule_round_trips_storage_shape() -> None:
    stored = {'Monday': {'isOpen': True, 'start': '08:30', 'end': '17:00'}}

    schedule = parse_weekly_schedule(stored)

    assert schedule.to_storage() == {'monday': {'isOpen': True, 'start': '08:30', 'end': '17:00'}}
    assert parse_weekly_schedule(None) is None
