"""
Booking Service

Database-backed entry points of the scheduling engine:

- ``list_available_slots``: read-only, advisory, may be served from cache.
- ``create_appointment``: re-runs every check authoritatively inside the
  transaction that performs the insert.
- ``transition_appointment``: applies the status lifecycle and its side
  effects (stock deduction, last visit, approval notification).
- ``reschedule_appointment``: moves a live appointment under the same checks
  as a new booking, ignoring its own current interval.

On PostgreSQL the write transactions run SERIALIZABLE and the appointments
table carries exclusion constraints, so two concurrent bookings for the same
professional or room cannot both commit. Losing such a race surfaces as the
matching scheduling error; any other database error propagates unchanged.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Callable, Optional

from pydantic import BaseModel
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from clinic_backend.core import config
from clinic_backend.core.clock import clinic_now, to_clinic_local
from clinic_backend.core.errors import (
    InvalidTransitionError,
    NotFoundError,
    OutOfHoursError,
    RoomCapacityError,
    ScheduleConflictError,
    SchedulingError,
    UnavailabilityBlockedError,
    ValidationError,
)
from clinic_backend.database import PROFESSIONAL_OVERLAP_CONSTRAINT, ROOM_OVERLAP_CONSTRAINT
from clinic_backend.models.appointment import Appointment
from clinic_backend.models.company import Company
from clinic_backend.models.patient import Patient
from clinic_backend.models.procedure import Procedure
from clinic_backend.models.unavailability import UnavailabilityRule
from clinic_backend.models.user import User
from clinic_backend.scheduling.business_hours import BusinessHours, minutes_of_day, parse_weekly_schedule
from clinic_backend.scheduling.conflicts import check_conflict, load_blocking_appointments
from clinic_backend.scheduling.rooms import is_room_capacity_exceeded
from clinic_backend.scheduling.slots import Slot, SlotConfig, ensure_within_booking_period, generate_slots
from clinic_backend.scheduling.state_machine import (
    AppointmentStatus,
    BookingOrigin,
    TERMINAL_STATUSES,
    ensure_transition,
    initial_status,
    starts_blocking,
)
from clinic_backend.scheduling.unavailability import find_blocking_rule_for_range
from clinic_backend.services.inventory import deduct_procedure_supplies
from clinic_backend.services.notifications import PatientMessage, build_approval_message, dispatch_patient_message
from clinic_backend.services.slot_cache import SlotCache

logger = logging.getLogger(__name__)

SERIALIZATION_FAILURE = '40001'
RACE_LOST_MESSAGE = 'This time was just booked by someone else. Please choose another slot.'


class AppointmentCandidate(BaseModel):
    company_id: int
    patient_id: int
    professional_id: int
    procedure_id: int
    start_time: datetime
    duration_minutes: Optional[int] = None
    room_id: Optional[int] = None
    notes: Optional[str] = None


def _begin_write_transaction(db: Session) -> None:
    if db.get_bind().dialect.name != 'postgresql':
        return
    # Isolation can only be set on a fresh connection; the auth lookup has
    # usually opened a read transaction on this session already.
    if db.in_transaction():
        db.commit()
    db.connection(execution_options={'isolation_level': 'SERIALIZABLE'})


def _translate_write_error(exc: DBAPIError) -> Optional[SchedulingError]:
    orig = exc.orig
    constraint = getattr(getattr(orig, 'diag', None), 'constraint_name', None)
    message = str(orig).lower()

    if constraint == PROFESSIONAL_OVERLAP_CONSTRAINT or PROFESSIONAL_OVERLAP_CONSTRAINT in message:
        return ScheduleConflictError(RACE_LOST_MESSAGE)
    if constraint == ROOM_OVERLAP_CONSTRAINT or ROOM_OVERLAP_CONSTRAINT in message:
        return RoomCapacityError('The selected room was just booked for this time.')
    if getattr(orig, 'pgcode', None) == SERIALIZATION_FAILURE or 'could not serialize' in message:
        return ScheduleConflictError(RACE_LOST_MESSAGE)
    return None


def _commit(db: Session) -> None:
    try:
        db.commit()
    except DBAPIError as exc:
        db.rollback()
        translated = _translate_write_error(exc)
        if translated is None:
            raise
        logger.warning('Booking write rejected by the database: %s', translated.message)
        raise translated from exc


def get_company(db: Session, company_id: int) -> Company:
    company = db.query(Company).filter(Company.id == company_id).first()
    if company is None:
        raise NotFoundError('Company not found.')
    return company


def get_professional(db: Session, company_id: int, professional_id: int) -> User:
    professional = db.query(User).filter(User.id == professional_id, User.company_id == company_id).first()
    if professional is None or not professional.can_take_appointments:
        raise NotFoundError('Professional not found.', {'professional_id': professional_id})
    return professional


def get_procedure(db: Session, company_id: int, procedure_id: int) -> Procedure:
    procedure = db.query(Procedure).filter(Procedure.id == procedure_id, Procedure.company_id == company_id).first()
    if procedure is None:
        raise NotFoundError('Procedure not found.', {'procedure_id': procedure_id})
    return procedure


def get_patient(db: Session, company_id: int, patient_id: int) -> Patient:
    patient = db.query(Patient).filter(Patient.id == patient_id, Patient.company_id == company_id).first()
    if patient is None:
        raise NotFoundError('Patient not found.', {'patient_id': patient_id})
    return patient


def slot_config_for(company: Company) -> SlotConfig:
    raw = dict(company.booking_config or {})
    raw['room_pool_size'] = config.ROOM_POOL_SIZE
    try:
        return SlotConfig.model_validate(raw)
    except ValueError as exc:
        raise ValidationError('Company booking configuration is invalid.', {'errors': str(exc)}) from exc


def business_hours_for(company: Company, professional: Optional[User] = None) -> BusinessHours:
    overrides = {}
    if professional is not None:
        schedule = parse_weekly_schedule(professional.business_hours)
        if schedule is not None:
            overrides[professional.id] = schedule
    return BusinessHours(parse_weekly_schedule(company.business_hours), overrides)


def load_unavailability_rules(db: Session, company_id: int) -> list[UnavailabilityRule]:
    return db.query(UnavailabilityRule).filter(
        UnavailabilityRule.company_id == company_id,
    ).order_by(UnavailabilityRule.id.asc()).all()


def list_available_slots(
    db: Session,
    company_id: int,
    target_date: date,
    procedure_id: int,
    professional_id: Optional[int] = None,
    now: Optional[datetime] = None,
    cache: Optional[SlotCache] = None,
) -> list[Slot]:
    now = to_clinic_local(now) if now is not None else clinic_now()

    company = get_company(db, company_id)
    procedure = get_procedure(db, company_id, procedure_id)
    professional = get_professional(db, company_id, professional_id) if professional_id is not None else None
    slot_config = slot_config_for(company)

    ensure_within_booking_period(target_date, now, slot_config)
    if target_date < now.date():
        return []

    cache_key = None
    if cache is not None:
        cache_key = cache.make_key(company_id, target_date, procedure_id, professional_id)
        cached = cache.get(cache_key)
        if cached is not None:
            return cached

    day_start = datetime.combine(target_date, time(0, 0))
    slots = generate_slots(
        target_date,
        professional_id,
        procedure.duration_minutes,
        business_hours_for(company, professional),
        load_unavailability_rules(db, company_id),
        load_blocking_appointments(db, company_id, day_start, day_start + timedelta(days=1)),
        slot_config,
        now,
    )

    if cache is not None:
        cache.set(cache_key, slots)

    return slots


def _validate_duration(duration_minutes: int) -> None:
    if duration_minutes <= 0:
        raise ValidationError('Duration must be greater than zero.', {'duration_minutes': duration_minutes})
    if duration_minutes > config.MAX_APPOINTMENT_DURATION_MINUTES:
        raise ValidationError(
            f'Duration must be at most {config.MAX_APPOINTMENT_DURATION_MINUTES} minutes.',
            {'duration_minutes': duration_minutes},
        )


def _validate_room(room_id: Optional[int], pool_size: int) -> None:
    if room_id is not None and not 1 <= room_id <= pool_size:
        raise ValidationError(f'Room must be between 1 and {pool_size}.', {'room_id': room_id})


def _ensure_within_business_hours(
    business_hours: BusinessHours,
    professional_id: int,
    start: datetime,
    end: datetime,
) -> None:
    day = business_hours.resolve_date(professional_id, start.date())
    if not day.is_open:
        raise OutOfHoursError(
            f'The clinic is closed on {start.strftime("%A")}.',
            {'date': start.date().isoformat()},
        )

    start_minute = minutes_of_day(start.time())
    end_minute = start_minute + int((end - start).total_seconds() // 60)
    if start_minute < day.open_minute:
        raise OutOfHoursError(f'The clinic opens at {day.start.strftime("%H:%M")}.')
    if end_minute > day.close_minute:
        raise OutOfHoursError(
            f'The appointment would end after closing time ({day.end.strftime("%H:%M")}).'
        )


def _ensure_lead_time(
    origin: BookingOrigin,
    start: datetime,
    now: datetime,
    slot_config: SlotConfig,
) -> None:
    if origin == BookingOrigin.STAFF:
        if start <= now:
            raise ValidationError('Appointments must be scheduled in the future.')
        return

    earliest = now + timedelta(minutes=slot_config.min_advance_time)
    if start < earliest:
        raise ValidationError(
            f'Online bookings need at least {slot_config.min_advance_time} minutes of notice.',
        )
    ensure_within_booking_period(start.date(), now, slot_config)


def _ensure_not_blocked(
    db: Session,
    company_id: int,
    professional_id: int,
    start: datetime,
    end: datetime,
) -> None:
    rule = find_blocking_rule_for_range(start, end, load_unavailability_rules(db, company_id), professional_id)
    if rule is not None:
        raise UnavailabilityBlockedError(
            rule.description or 'The professional is unavailable at this time.',
            {'rule_id': rule.id},
        )


def _ensure_bookable(
    db: Session,
    appointment_company_id: int,
    professional_id: int,
    start: datetime,
    duration_minutes: int,
    room_id: Optional[int],
    pool_size: int,
    exclude_appointment_id: Optional[int] = None,
) -> None:
    conflict = check_conflict(
        db,
        appointment_company_id,
        professional_id,
        start,
        duration_minutes,
        exclude_appointment_id=exclude_appointment_id,
    )
    if conflict.conflict:
        raise ScheduleConflictError(
            'The professional already has an appointment at this time.',
            conflict.conflicting_appointment,
        )

    end = start + timedelta(minutes=duration_minutes)
    if is_room_capacity_exceeded(
        db,
        appointment_company_id,
        start,
        end,
        pool_size,
        room_id=room_id,
        exclude_appointment_id=exclude_appointment_id,
    ):
        if room_id is not None:
            raise RoomCapacityError(f'Room {room_id} is already in use at this time.', {'room_id': room_id})
        raise RoomCapacityError('No room is free at this time.', {'room_pool_size': pool_size})


def _lock_appointment(db: Session, company_id: int, appointment_id: int) -> Appointment:
    appointment = db.query(Appointment).filter(
        Appointment.id == appointment_id,
        Appointment.company_id == company_id,
    ).with_for_update().first()
    if appointment is None:
        raise NotFoundError('Appointment not found.', {'appointment_id': appointment_id})
    return appointment


def create_appointment(
    db: Session,
    candidate: AppointmentCandidate,
    origin: BookingOrigin = BookingOrigin.STAFF,
    now: Optional[datetime] = None,
    cache: Optional[SlotCache] = None,
) -> Appointment:
    now = to_clinic_local(now) if now is not None else clinic_now()
    origin = BookingOrigin(origin)

    _begin_write_transaction(db)
    try:
        company = get_company(db, candidate.company_id)
        professional = get_professional(db, candidate.company_id, candidate.professional_id)
        get_patient(db, candidate.company_id, candidate.patient_id)
        procedure = get_procedure(db, candidate.company_id, candidate.procedure_id)
        slot_config = slot_config_for(company)

        duration_minutes = (
            candidate.duration_minutes if candidate.duration_minutes is not None else procedure.duration_minutes
        )
        _validate_duration(duration_minutes)
        _validate_room(candidate.room_id, slot_config.room_pool_size)

        start = to_clinic_local(candidate.start_time)
        end = start + timedelta(minutes=duration_minutes)

        _ensure_lead_time(origin, start, now, slot_config)
        _ensure_within_business_hours(business_hours_for(company, professional), professional.id, start, end)

        _ensure_not_blocked(db, candidate.company_id, professional.id, start, end)

        _ensure_bookable(
            db,
            candidate.company_id,
            professional.id,
            start,
            duration_minutes,
            candidate.room_id,
            slot_config.room_pool_size,
        )

        appointment = Appointment(
            company_id=candidate.company_id,
            patient_id=candidate.patient_id,
            professional_id=professional.id,
            procedure_id=procedure.id,
            start_time=start,
            end_time=end,
            duration_minutes=duration_minutes,
            status=initial_status(origin).value,
            room_id=candidate.room_id,
            notes=candidate.notes,
            stock_deducted=False,
        )
        db.add(appointment)
    except SchedulingError:
        db.rollback()
        raise

    _commit(db)
    db.refresh(appointment)

    if cache is not None:
        cache.invalidate_day(appointment.company_id, appointment.start_time.date())

    logger.info(
        'Appointment %s created (%s) for professional %s at %s',
        appointment.id,
        appointment.status,
        appointment.professional_id,
        appointment.start_time.isoformat(),
    )
    return appointment


def transition_appointment(
    db: Session,
    company_id: int,
    appointment_id: int,
    target_status: str,
    now: Optional[datetime] = None,
    cache: Optional[SlotCache] = None,
    notify: Optional[Callable[[PatientMessage], object]] = None,
) -> Appointment:
    now = to_clinic_local(now) if now is not None else clinic_now()
    notify = notify or dispatch_patient_message

    _begin_write_transaction(db)
    try:
        appointment = _lock_appointment(db, company_id, appointment_id)
        current_status = AppointmentStatus(appointment.status)
        target = ensure_transition(current_status, target_status)

        if starts_blocking(current_status, target):
            _ensure_bookable(
                db,
                company_id,
                appointment.professional_id,
                appointment.start_time,
                appointment.duration_minutes,
                appointment.room_id,
                config.ROOM_POOL_SIZE,
                exclude_appointment_id=appointment.id,
            )

        if target == AppointmentStatus.COMPLETED:
            deduct_procedure_supplies(db, appointment)
            patient = db.query(Patient).filter(Patient.id == appointment.patient_id).first()
            if patient is not None:
                patient.last_visit = now

        message = None
        if current_status == AppointmentStatus.PENDING_APPROVAL and target == AppointmentStatus.CONFIRMED:
            message = build_approval_message(
                appointment,
                get_patient(db, company_id, appointment.patient_id),
                db.query(User).filter(User.id == appointment.professional_id).first(),
                db.query(Procedure).filter(Procedure.id == appointment.procedure_id).first(),
            )

        appointment.status = target.value
    except SchedulingError:
        db.rollback()
        raise

    _commit(db)
    db.refresh(appointment)

    if cache is not None:
        cache.invalidate_day(company_id, appointment.start_time.date())

    logger.info(
        'Appointment %s moved from %s to %s',
        appointment.id,
        current_status.value,
        target.value,
    )

    if message is not None:
        notify(message)

    return appointment


def reschedule_appointment(
    db: Session,
    company_id: int,
    appointment_id: int,
    start_time: Optional[datetime] = None,
    duration_minutes: Optional[int] = None,
    professional_id: Optional[int] = None,
    now: Optional[datetime] = None,
    cache: Optional[SlotCache] = None,
) -> Appointment:
    """
    Move an appointment to a new time, length or professional.

    Omitted fields keep their current value. The appointment itself is
    excluded from the conflict and room checks, so shifting it within its own
    interval is allowed. Completed and canceled appointments cannot move.
    """
    now = to_clinic_local(now) if now is not None else clinic_now()

    _begin_write_transaction(db)
    try:
        appointment = _lock_appointment(db, company_id, appointment_id)

        current_status = AppointmentStatus(appointment.status)
        if current_status in TERMINAL_STATUSES:
            raise InvalidTransitionError(
                f'Appointment is {current_status.value} and can no longer be rescheduled.'
            )

        company = get_company(db, company_id)
        professional = get_professional(
            db,
            company_id,
            professional_id if professional_id is not None else appointment.professional_id,
        )
        slot_config = slot_config_for(company)

        new_duration = duration_minutes if duration_minutes is not None else appointment.duration_minutes
        _validate_duration(new_duration)

        start = to_clinic_local(start_time) if start_time is not None else appointment.start_time
        end = start + timedelta(minutes=new_duration)
        if start <= now:
            raise ValidationError('Appointments can only be moved to a future time.')

        _ensure_within_business_hours(business_hours_for(company, professional), professional.id, start, end)
        _ensure_not_blocked(db, company_id, professional.id, start, end)
        _ensure_bookable(
            db,
            company_id,
            professional.id,
            start,
            new_duration,
            appointment.room_id,
            slot_config.room_pool_size,
            exclude_appointment_id=appointment.id,
        )

        previous_date = appointment.start_time.date()
        appointment.professional_id = professional.id
        appointment.start_time = start
        appointment.end_time = end
        appointment.duration_minutes = new_duration
    except SchedulingError:
        db.rollback()
        raise

    _commit(db)
    db.refresh(appointment)

    if cache is not None:
        cache.invalidate_day(company_id, previous_date)
        if appointment.start_time.date() != previous_date:
            cache.invalidate_day(company_id, appointment.start_time.date())

    logger.info(
        'Appointment %s rescheduled to %s (%s min) with professional %s',
        appointment.id,
        appointment.start_time.isoformat(),
        appointment.duration_minutes,
        appointment.professional_id,
    )
    return appointment


def list_appointments(
    db: Session,
    company_id: int,
    target_date: date,
    professional_id: Optional[int] = None,
) -> list[Appointment]:
    day_start = datetime.combine(target_date, time(0, 0))
    query = db.query(Appointment).filter(
        Appointment.company_id == company_id,
        Appointment.start_time >= day_start,
        Appointment.start_time < day_start + timedelta(days=1),
    )
    if professional_id is not None:
        query = query.filter(Appointment.professional_id == professional_id)
    return query.order_by(Appointment.start_time.asc(), Appointment.id.asc()).all()


def get_appointment(db: Session, company_id: int, appointment_id: int) -> Appointment:
    appointment = db.query(Appointment).filter(
        Appointment.id == appointment_id,
        Appointment.company_id == company_id,
    ).first()
    if appointment is None:
        raise NotFoundError('Appointment not found.', {'appointment_id': appointment_id})
    return appointment
