from datetime import date, datetime, time
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_backend.auth.dependencies import get_current_user, require_staff
from clinic_backend.core.errors import SchedulingError
from clinic_backend.database import ensure_appointment_schema, ensure_unavailability_schema, get_db
from clinic_backend.models.user import PATIENT_ROLE, User
from clinic_backend.scheduling.state_machine import AppointmentStatus, BookingOrigin
from clinic_backend.services import booking
from clinic_backend.services.notifications import dispatch_patient_message
from clinic_backend.services.slot_cache import SlotCache

router = APIRouter(tags=['appointments'])
public_router = APIRouter(tags=['public booking'])

MAX_APPOINTMENT_NOTES_LENGTH = 500
DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'


def _normalize_notes(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > MAX_APPOINTMENT_NOTES_LENGTH:
        raise ValueError(f'Notes must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

    return normalized


class SlotResponse(BaseModel):
    time: time
    available: bool

    model_config = ConfigDict(from_attributes=True)


class CreateAppointmentRequest(BaseModel):
    patient_id: int
    professional_id: int
    procedure_id: int
    start_time: datetime
    duration_minutes: Optional[int] = None
    room_id: Optional[int] = None
    notes: str | None = None

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_notes(value)


class SelfServiceAppointmentRequest(BaseModel):
    professional_id: int
    procedure_id: int
    start_time: datetime
    notes: str | None = None

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_notes(value)


class UpdateStatusRequest(BaseModel):
    status: AppointmentStatus

    @field_validator('status', mode='before')
    @classmethod
    def normalize_status(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value


class RescheduleAppointmentRequest(BaseModel):
    start_time: datetime | None = None
    duration_minutes: Optional[int] = None
    professional_id: Optional[int] = None

    @model_validator(mode='after')
    def validate_has_changes(self):
        if self.start_time is None and self.duration_minutes is None and self.professional_id is None:
            raise ValueError('Provide a new start time, duration or professional.')
        return self


class AppointmentResponse(BaseModel):
    id: int
    company_id: int
    patient_id: int
    professional_id: int
    procedure_id: int
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    status: str
    room_id: int | None = None
    notes: str | None = None
    stock_deducted: bool

    model_config = ConfigDict(from_attributes=True)


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
        ensure_unavailability_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def get_slot_cache(request: Request) -> SlotCache | None:
    return getattr(request.app.state, 'slot_cache', None)


def _database_unavailable(db: Session) -> HTTPException:
    db.rollback()
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=DATABASE_UNAVAILABLE_DETAIL)


@public_router.get('/companies/{company_id}/slots', response_model=list[SlotResponse])
def list_public_slots(
    company_id: int,
    slot_date: date = Query(..., alias='date'),
    procedure_id: int = Query(...),
    professional_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
    cache: SlotCache | None = Depends(get_slot_cache),
):
    ensure_database_ready()

    try:
        return booking.list_available_slots(
            db,
            company_id,
            slot_date,
            procedure_id,
            professional_id=professional_id,
            cache=cache,
        )
    except SchedulingError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        raise _database_unavailable(db) from exc


@router.get('', response_model=list[AppointmentResponse])
def list_appointments(
    appointment_date: date = Query(..., alias='date'),
    professional_id: int | None = Query(default=None),
    user: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return booking.list_appointments(db, user.company_id, appointment_date, professional_id)
    except SQLAlchemyError as exc:
        raise _database_unavailable(db) from exc


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    user: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return booking.get_appointment(db, user.company_id, appointment_id)
    except SchedulingError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        raise _database_unavailable(db) from exc


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    user: User = Depends(require_staff),
    db: Session = Depends(get_db),
    cache: SlotCache | None = Depends(get_slot_cache),
):
    ensure_database_ready()

    candidate = booking.AppointmentCandidate(company_id=user.company_id, **data.model_dump())
    try:
        return booking.create_appointment(db, candidate, BookingOrigin.STAFF, cache=cache)
    except SchedulingError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        raise _database_unavailable(db) from exc


@router.post('/self-service', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def request_appointment(
    data: SelfServiceAppointmentRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: SlotCache | None = Depends(get_slot_cache),
):
    if (user.role or '').lower() != PATIENT_ROLE or user.patient_id is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Only patients can request appointments online.',
        )

    ensure_database_ready()

    candidate = booking.AppointmentCandidate(
        company_id=user.company_id,
        patient_id=user.patient_id,
        professional_id=data.professional_id,
        procedure_id=data.procedure_id,
        start_time=data.start_time,
        notes=data.notes,
    )
    try:
        return booking.create_appointment(db, candidate, BookingOrigin.SELF_SERVICE, cache=cache)
    except SchedulingError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        raise _database_unavailable(db) from exc


@router.patch('/{appointment_id}/status', response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    data: UpdateStatusRequest,
    background_tasks: BackgroundTasks,
    user: User = Depends(require_staff),
    db: Session = Depends(get_db),
    cache: SlotCache | None = Depends(get_slot_cache),
):
    ensure_database_ready()

    try:
        return booking.transition_appointment(
            db,
            user.company_id,
            appointment_id,
            data.status,
            cache=cache,
            notify=lambda message: background_tasks.add_task(dispatch_patient_message, message),
        )
    except SchedulingError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        raise _database_unavailable(db) from exc


@router.patch('/{appointment_id}', response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    data: RescheduleAppointmentRequest,
    user: User = Depends(require_staff),
    db: Session = Depends(get_db),
    cache: SlotCache | None = Depends(get_slot_cache),
):
    ensure_database_ready()

    try:
        return booking.reschedule_appointment(
            db,
            user.company_id,
            appointment_id,
            start_time=data.start_time,
            duration_minutes=data.duration_minutes,
            professional_id=data.professional_id,
            cache=cache,
        )
    except SchedulingError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        raise _database_unavailable(db) from exc
