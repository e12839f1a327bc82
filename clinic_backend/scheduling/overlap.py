"""
Interval overlap detection.

Every time-range comparison in the scheduling engine goes through
``intervals_overlap`` so that boundary behaviour is identical for business
hours, blackout rules, professional conflicts and room occupancy.
"""

from datetime import datetime, timedelta
from typing import Any, TypeVar

T = TypeVar('T', int, datetime)


def intervals_overlap(a_start: T, a_end: T, b_start: T, b_end: T) -> bool:
    """
    Half-open overlap test for ``[a_start, a_end)`` and ``[b_start, b_end)``.

    Touching intervals (``a_end == b_start``) do not overlap. Works for
    datetimes and for minute-of-day integers alike.
    """
    return a_start < b_end and b_start < a_end


def appointment_interval(appointment: Any) -> tuple[datetime, datetime]:
    start = appointment.start_time
    return start, start + timedelta(minutes=appointment.duration_minutes)
