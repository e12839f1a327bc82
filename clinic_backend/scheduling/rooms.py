"""
Room capacity tracking.

Rooms are a small fixed pool shared by every professional of a company. A
pinned room is exhausted by any overlapping appointment in that room; with no
room pinned the slot is exhausted once the overlapping appointments across
the company reach the pool size.
"""

from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from clinic_backend.scheduling.conflicts import load_blocking_appointments
from clinic_backend.scheduling.overlap import appointment_interval, intervals_overlap
from clinic_backend.scheduling.state_machine import BLOCKING_STATUSES


def count_overlapping(
    appointments: Iterable[Any],
    candidate_start: datetime,
    candidate_end: datetime,
    room_id: Optional[int] = None,
    exclude_appointment_id: Optional[int] = None,
) -> int:
    count = 0
    for appointment in appointments:
        if appointment.status not in BLOCKING_STATUSES:
            continue
        if exclude_appointment_id is not None and appointment.id == exclude_appointment_id:
            continue
        if room_id is not None and appointment.room_id != room_id:
            continue
        existing_start, existing_end = appointment_interval(appointment)
        if intervals_overlap(candidate_start, candidate_end, existing_start, existing_end):
            count += 1
    return count


def room_capacity_exceeded(
    appointments: Iterable[Any],
    candidate_start: datetime,
    candidate_end: datetime,
    pool_size: int,
    room_id: Optional[int] = None,
    exclude_appointment_id: Optional[int] = None,
) -> bool:
    overlapping = count_overlapping(
        appointments,
        candidate_start,
        candidate_end,
        room_id=room_id,
        exclude_appointment_id=exclude_appointment_id,
    )
    if room_id is not None:
        return overlapping > 0
    return overlapping >= pool_size


def is_room_capacity_exceeded(
    db: Session,
    company_id: int,
    candidate_start: datetime,
    candidate_end: datetime,
    pool_size: int,
    room_id: Optional[int] = None,
    exclude_appointment_id: Optional[int] = None,
) -> bool:
    appointments = load_blocking_appointments(db, company_id, candidate_start, candidate_end)
    return room_capacity_exceeded(
        appointments,
        candidate_start,
        candidate_end,
        pool_size,
        room_id=room_id,
        exclude_appointment_id=exclude_appointment_id,
    )
