"""
Schedule conflict detection for a single professional.

Only ``scheduled`` and ``confirmed`` appointments take part; pending,
completed and canceled appointments never block. The database-backed check
is the authoritative one and runs inside the booking transaction; database
errors propagate so a failed lookup is never read as "no conflict".
"""

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from clinic_backend.core import config
from clinic_backend.models.appointment import Appointment
from clinic_backend.scheduling.overlap import appointment_interval, intervals_overlap
from clinic_backend.scheduling.state_machine import BLOCKING_STATUSES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConflictResult:
    conflict: bool
    conflicting_appointment: Any = None


NO_CONFLICT = ConflictResult(conflict=False)


def find_conflict(
    professional_id: int,
    candidate_start: datetime,
    duration_minutes: int,
    appointments: Iterable[Any],
    exclude_appointment_id: Optional[int] = None,
) -> ConflictResult:
    """Return the first blocking appointment of the professional overlapping the candidate."""
    candidate_end = candidate_start + timedelta(minutes=duration_minutes)

    for appointment in appointments:
        if appointment.professional_id != professional_id:
            continue
        if exclude_appointment_id is not None and appointment.id == exclude_appointment_id:
            continue
        if appointment.status not in BLOCKING_STATUSES:
            continue
        existing_start, existing_end = appointment_interval(appointment)
        if intervals_overlap(candidate_start, candidate_end, existing_start, existing_end):
            return ConflictResult(conflict=True, conflicting_appointment=appointment)

    return NO_CONFLICT


def load_blocking_appointments(
    db: Session,
    company_id: int,
    window_start: datetime,
    window_end: datetime,
    professional_id: Optional[int] = None,
) -> list[Appointment]:
    """
    Load blocking appointments that start early enough to reach ``window_start``.

    The query is a coarse window; callers decide overlap with
    ``intervals_overlap``.
    """
    earliest_start = window_start - timedelta(minutes=config.MAX_APPOINTMENT_DURATION_MINUTES)
    query = db.query(Appointment).filter(
        Appointment.company_id == company_id,
        Appointment.status.in_(sorted(BLOCKING_STATUSES)),
        Appointment.start_time >= earliest_start,
        Appointment.start_time < window_end,
    )
    if professional_id is not None:
        query = query.filter(Appointment.professional_id == professional_id)

    return query.order_by(Appointment.start_time.asc(), Appointment.id.asc()).all()


def check_conflict(
    db: Session,
    company_id: int,
    professional_id: int,
    candidate_start: datetime,
    duration_minutes: int,
    exclude_appointment_id: Optional[int] = None,
) -> ConflictResult:
    day_start = datetime.combine(candidate_start.date(), time(0, 0))
    candidate_end = candidate_start + timedelta(minutes=duration_minutes)
    window_end = max(day_start + timedelta(days=1), candidate_end)

    appointments = load_blocking_appointments(db, company_id, day_start, window_end, professional_id)
    result = find_conflict(
        professional_id,
        candidate_start,
        duration_minutes,
        appointments,
        exclude_appointment_id=exclude_appointment_id,
    )

    if result.conflict:
        logger.warning(
            'Schedule conflict for professional %s at %s (%s min) with appointment %s',
            professional_id,
            candidate_start.isoformat(),
            duration_minutes,
            result.conflicting_appointment.id,
        )

    return result
