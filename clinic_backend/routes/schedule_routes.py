import logging
from datetime import date, time

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_backend.auth.dependencies import require_schedule_admin, require_staff
from clinic_backend.core.errors import SchedulingError
from clinic_backend.database import get_db
from clinic_backend.models.company import Company
from clinic_backend.models.unavailability import UnavailabilityRule
from clinic_backend.models.user import User
from clinic_backend.routes.appointment_routes import DATABASE_UNAVAILABLE_DETAIL, ensure_database_ready
from clinic_backend.scheduling.business_hours import WeeklySchedule
from clinic_backend.scheduling.unavailability import ALL_PROFESSIONALS
from clinic_backend.services import booking

router = APIRouter(tags=['schedule'])

logger = logging.getLogger(__name__)

MAX_RULE_DESCRIPTION_LENGTH = 200


class CreateUnavailabilityRuleRequest(BaseModel):
    description: str | None = None
    start_time: time
    end_time: time
    dates: list[date] = Field(min_length=1)
    professional_ids: list[str] = Field(default_factory=lambda: [ALL_PROFESSIONALS])

    @field_validator('description')
    @classmethod
    def validate_description(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_RULE_DESCRIPTION_LENGTH:
            raise ValueError(f'Description must be {MAX_RULE_DESCRIPTION_LENGTH} characters or fewer.')

        return normalized

    @field_validator('professional_ids', mode='before')
    @classmethod
    def normalize_professional_ids(cls, value):
        if value is None:
            return [ALL_PROFESSIONALS]
        normalized = [str(item).strip().lower() for item in value if str(item).strip()]
        return normalized or [ALL_PROFESSIONALS]

    @model_validator(mode='after')
    def validate_window(self) -> 'CreateUnavailabilityRuleRequest':
        if self.start_time >= self.end_time:
            raise ValueError('Start time must be before end time.')
        return self


class UnavailabilityRuleResponse(BaseModel):
    id: int
    description: str | None = None
    start_time: time
    end_time: time
    dates: list[date]
    professional_ids: list[str]

    model_config = ConfigDict(from_attributes=True)

    @field_validator('professional_ids', mode='before')
    @classmethod
    def stringify_ids(cls, value):
        return [str(item) for item in (value or [])] or [ALL_PROFESSIONALS]


class BusinessHoursResponse(BaseModel):
    company: dict | None = None
    professional: dict | None = None


def _database_unavailable(db: Session) -> HTTPException:
    db.rollback()
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=DATABASE_UNAVAILABLE_DETAIL)


def _invalidate_slot_cache(request: Request, company_id: int) -> None:
    cache = getattr(request.app.state, 'slot_cache', None)
    if cache is not None:
        dropped = cache.invalidate_company(company_id)
        logger.info('Dropped %s cached slot listings after schedule change for company %s', dropped, company_id)


@router.get('/unavailability', response_model=list[UnavailabilityRuleResponse])
def list_unavailability_rules(
    professional_id: int | None = Query(default=None),
    user: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        rules = booking.load_unavailability_rules(db, user.company_id)
    except SQLAlchemyError as exc:
        raise _database_unavailable(db) from exc

    if professional_id is None:
        return rules

    targets = {str(professional_id), ALL_PROFESSIONALS}
    return [
        rule for rule in rules
        if not rule.professional_ids or targets & {str(item) for item in rule.professional_ids}
    ]


@router.post('/unavailability', response_model=UnavailabilityRuleResponse, status_code=status.HTTP_201_CREATED)
def create_unavailability_rule(
    data: CreateUnavailabilityRuleRequest,
    request: Request,
    user: User = Depends(require_schedule_admin),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        for professional_id in data.professional_ids:
            if professional_id != ALL_PROFESSIONALS:
                if not professional_id.isdigit():
                    raise HTTPException(
                        status_code=status.HTTP_400_BAD_REQUEST,
                        detail=f'Invalid professional id: {professional_id}.',
                    )
                booking.get_professional(db, user.company_id, int(professional_id))

        rule = UnavailabilityRule(
            company_id=user.company_id,
            description=data.description,
            start_time=data.start_time,
            end_time=data.end_time,
            dates=sorted({value.isoformat() for value in data.dates}),
            professional_ids=data.professional_ids,
        )
        db.add(rule)
        db.commit()
        db.refresh(rule)
    except SchedulingError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        raise _database_unavailable(db) from exc

    _invalidate_slot_cache(request, user.company_id)
    logger.info('Unavailability rule %s created for company %s', rule.id, user.company_id)
    return rule


@router.delete('/unavailability/{rule_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_unavailability_rule(
    rule_id: int,
    request: Request,
    user: User = Depends(require_schedule_admin),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        rule = db.query(UnavailabilityRule).filter(
            UnavailabilityRule.id == rule_id,
            UnavailabilityRule.company_id == user.company_id,
        ).first()

        if not rule:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Unavailability rule not found.',
            )

        db.delete(rule)
        db.commit()
    except SQLAlchemyError as exc:
        raise _database_unavailable(db) from exc

    _invalidate_slot_cache(request, user.company_id)


@router.get('/business-hours', response_model=BusinessHoursResponse)
def get_business_hours(
    professional_id: int | None = Query(default=None),
    user: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    try:
        company = booking.get_company(db, user.company_id)
        professional = (
            booking.get_professional(db, user.company_id, professional_id) if professional_id is not None else None
        )
    except SchedulingError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        raise _database_unavailable(db) from exc

    return BusinessHoursResponse(
        company=company.business_hours,
        professional=professional.business_hours if professional is not None else None,
    )


@router.put('/business-hours', response_model=BusinessHoursResponse)
def replace_company_business_hours(
    schedule: WeeklySchedule,
    request: Request,
    user: User = Depends(require_schedule_admin),
    db: Session = Depends(get_db),
):
    try:
        company: Company = booking.get_company(db, user.company_id)
        company.business_hours = schedule.to_storage()
        db.commit()
        db.refresh(company)
    except SchedulingError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        raise _database_unavailable(db) from exc

    _invalidate_slot_cache(request, user.company_id)
    return BusinessHoursResponse(company=company.business_hours)


@router.put('/business-hours/professionals/{professional_id}', response_model=BusinessHoursResponse)
def replace_professional_business_hours(
    professional_id: int,
    request: Request,
    schedule: WeeklySchedule | None = None,
    user: User = Depends(require_schedule_admin),
    db: Session = Depends(get_db),
):
    try:
        professional = booking.get_professional(db, user.company_id, professional_id)
        # An empty body removes the override so the company default applies again.
        professional.business_hours = schedule.to_storage() if schedule is not None else None
        db.commit()
        db.refresh(professional)
    except SchedulingError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        raise _database_unavailable(db) from exc

    _invalidate_slot_cache(request, user.company_id)
    return BusinessHoursResponse(professional=professional.business_hours)
