from datetime import date, datetime, time
from types import SimpleNamespace

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from clinic_backend.models.unavailability import UnavailabilityRule
from clinic_backend.routes import schedule_routes
from clinic_backend.routes.schedule_routes import (
    CreateUnavailabilityRuleRequest,
    create_unavailability_rule,
    delete_unavailability_rule,
    get_business_hours,
    list_unavailability_rules,
    replace_company_business_hours,
    replace_professional_business_hours,
)
from clinic_backend.scheduling.business_hours import WeeklySchedule
from clinic_backend.scheduling.slots import Slot
from clinic_backend.services import booking
from clinic_backend.services.slot_cache import SlotCache

MONDAY = date(2024, 6, 10)
NOW = datetime(2024, 6, 10, 7, 0)


@pytest.fixture(autouse=True)
def database_ready(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(schedule_routes, 'ensure_database_ready', lambda: None)


@pytest.fixture
def cache(fake_redis):
    return SlotCache(fake_redis, ttl_seconds=60)


@pytest.fixture
def request_with_cache(cache):
    return SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace(slot_cache=cache)))


def _warm(cache: SlotCache, company_id: int) -> None:
    cache.set(cache.make_key(company_id, MONDAY, 1, None), [Slot(time=time(8, 0), available=True)])


def _cached(cache: SlotCache, company_id: int):
    return cache.get(cache.make_key(company_id, MONDAY, 1, None))


def test_rule_request_defaults_to_all_professionals() -> None:
    request = CreateUnavailabilityRuleRequest(
        description='  Holiday  ',
        start_time=time(0, 0),
        end_time=time(23, 59),
        dates=[MONDAY],
    )

    assert request.description == 'Holiday'
    assert request.professional_ids == ['all']


def test_rule_request_rejects_inverted_window() -> None:
    with pytest.raises(ValidationError):
        CreateUnavailabilityRuleRequest(start_time=time(13, 0), end_time=time(12, 0), dates=[MONDAY])


def test_rule_request_requires_a_date() -> None:
    with pytest.raises(ValidationError):
        CreateUnavailabilityRuleRequest(start_time=time(12, 0), end_time=time(13, 0), dates=[])


def test_admin_creates_rule_and_drops_cached_slots(db, clinic, cache, request_with_cache) -> None:
    _warm(cache, clinic.company.id)
    professional = clinic.professionals[0]
    data = CreateUnavailabilityRuleRequest(
        description='Conference',
        start_time=time(12, 0),
        end_time=time(13, 0),
        dates=[MONDAY, MONDAY],
        professional_ids=[professional.id],
    )

    rule = create_unavailability_rule(data, request_with_cache, clinic.admin, db)

    assert rule.dates == ['2024-06-10']
    assert rule.professional_ids == [str(professional.id)]
    assert _cached(cache, clinic.company.id) is None


def test_created_rule_blocks_listing(db, clinic, request_with_cache) -> None:
    professional = clinic.professionals[0]
    data = CreateUnavailabilityRuleRequest(
        start_time=time(12, 0),
        end_time=time(13, 0),
        dates=[MONDAY],
        professional_ids=[professional.id],
    )
    create_unavailability_rule(data, request_with_cache, clinic.admin, db)

    slots = booking.list_available_slots(
        db, clinic.company.id, MONDAY, clinic.consult.id, professional_id=professional.id, now=NOW
    )
    other = booking.list_available_slots(
        db, clinic.company.id, MONDAY, clinic.consult.id, professional_id=clinic.professionals[1].id, now=NOW
    )

    assert {slot.time: slot.available for slot in slots}[time(12, 0)] is False
    assert {slot.time: slot.available for slot in other}[time(12, 0)] is True


def test_rule_for_unknown_professional_is_rejected(db, clinic, request_with_cache) -> None:
    data = CreateUnavailabilityRuleRequest(
        start_time=time(12, 0),
        end_time=time(13, 0),
        dates=[MONDAY],
        professional_ids=['9999'],
    )

    with pytest.raises(HTTPException) as exc_info:
        create_unavailability_rule(data, request_with_cache, clinic.admin, db)

    assert exc_info.value.status_code == 404


def test_rule_with_malformed_professional_id_is_rejected(db, clinic, request_with_cache) -> None:
    data = CreateUnavailabilityRuleRequest(
        start_time=time(12, 0),
        end_time=time(13, 0),
        dates=[MONDAY],
        professional_ids=['dr-ana'],
    )

    with pytest.raises(HTTPException) as exc_info:
        create_unavailability_rule(data, request_with_cache, clinic.admin, db)

    assert exc_info.value.status_code == 400


def test_list_rules_filters_by_professional(db, clinic) -> None:
    first, second = clinic.professionals[:2]
    for professional_ids in (['all'], [str(first.id)], [str(second.id)]):
        db.add(
            UnavailabilityRule(
                company_id=clinic.company.id,
                start_time=time(12, 0),
                end_time=time(13, 0),
                dates=[MONDAY.isoformat()],
                professional_ids=professional_ids,
            )
        )
    db.commit()

    assert len(list_unavailability_rules(None, clinic.receptionist, db)) == 3
    assert [rule.professional_ids for rule in list_unavailability_rules(first.id, clinic.receptionist, db)] == [
        ['all'],
        [str(first.id)],
    ]


def test_delete_rule(db, clinic, cache, request_with_cache) -> None:
    rule = UnavailabilityRule(
        company_id=clinic.company.id,
        start_time=time(12, 0),
        end_time=time(13, 0),
        dates=[MONDAY.isoformat()],
        professional_ids=['all'],
    )
    db.add(rule)
    db.commit()
    _warm(cache, clinic.company.id)

    delete_unavailability_rule(rule.id, request_with_cache, clinic.admin, db)

    assert db.query(UnavailabilityRule).count() == 0
    assert _cached(cache, clinic.company.id) is None

    with pytest.raises(HTTPException) as exc_info:
        delete_unavailability_rule(rule.id, request_with_cache, clinic.admin, db)

    assert exc_info.value.status_code == 404


def test_replace_company_business_hours(db, clinic, cache, request_with_cache) -> None:
    _warm(cache, clinic.company.id)
    schedule = WeeklySchedule.model_validate({'Monday': {'isOpen': True, 'start': '09:00', 'end': '12:00'}})

    response = replace_company_business_hours(schedule, request_with_cache, clinic.admin, db)

    assert response.company == {'monday': {'isOpen': True, 'start': '09:00', 'end': '12:00'}}
    assert _cached(cache, clinic.company.id) is None
    assert get_business_hours(None, clinic.receptionist, db).company == response.company


def test_professional_override_can_be_set_and_cleared(db, clinic, request_with_cache) -> None:
    professional = clinic.professionals[2]
    schedule = WeeklySchedule.model_validate({'monday': {'isOpen': False, 'start': '00:00', 'end': '00:00'}})

    set_response = replace_professional_business_hours(professional.id, request_with_cache, schedule, clinic.admin, db)
    closed_slots = booking.list_available_slots(
        db, clinic.company.id, MONDAY, clinic.consult.id, professional_id=professional.id, now=NOW
    )
    cleared = replace_professional_business_hours(professional.id, request_with_cache, None, clinic.admin, db)

    assert set_response.professional['monday']['isOpen'] is False
    assert closed_slots == []
    assert cleared.professional is None
    assert get_business_hours(professional.id, clinic.receptionist, db).professional is None


def test_business_hours_for_unknown_professional_is_not_found(db, clinic, request_with_cache) -> None:
    with pytest.raises(HTTPException) as exc_info:
        replace_professional_business_hours(9999, request_with_cache, None, clinic.admin, db)

    assert exc_info.value.status_code == 404
