import fnmatch
import os
from datetime import timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from clinic_backend.database import Base  # noqa: E402
from clinic_backend.models import inventory, unavailability  # noqa: E402,F401
from clinic_backend.models.appointment import Appointment  # noqa: E402
from clinic_backend.models.company import Company  # noqa: E402
from clinic_backend.models.patient import Patient  # noqa: E402
from clinic_backend.models.procedure import Procedure  # noqa: E402
from clinic_backend.models.user import User  # noqa: E402
from clinic_backend.services.slot_cache import SlotCache  # noqa: E402


WEEKDAY_HOURS = {'isOpen': True, 'start': '08:00', 'end': '18:00'}
COMPANY_HOURS = {
    'monday': WEEKDAY_HOURS,
    'tuesday': WEEKDAY_HOURS,
    'wednesday': WEEKDAY_HOURS,
    'thursday': WEEKDAY_HOURS,
    'friday': WEEKDAY_HOURS,
    'saturday': {'isOpen': False, 'start': '08:00', 'end': '12:00'},
}


@pytest.fixture
def db_engine():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def db(db_engine):
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clinic(db):
    company = Company(
        name='Clinica Aurora',
        business_hours=COMPANY_HOURS,
        booking_config={'slotInterval': 30, 'minAdvanceTime': 0, 'maxBookingPeriod': 30},
    )
    db.add(company)
    db.flush()

    professionals = [
        User(company_id=company.id, name=f'Dr. {name}', email=f'{name.lower()}@clinic.test', role='professional')
        for name in ('Ana', 'Bruno', 'Carla', 'Davi')
    ]
    admin = User(company_id=company.id, name='Owner', email='owner@clinic.test', role='owner')
    receptionist = User(company_id=company.id, name='Front Desk', email='desk@clinic.test', role='receptionist')
    patient = Patient(company_id=company.id, name='Maria Silva', email='maria@example.com', phone='+5511999990000')
    db.add_all([*professionals, admin, receptionist, patient])
    db.flush()

    patient_user = User(
        company_id=company.id,
        name=patient.name,
        email=patient.email,
        role='patient',
        patient_id=patient.id,
    )
    consult = Procedure(company_id=company.id, name='Consultation', duration_minutes=30, price=150)
    peel = Procedure(company_id=company.id, name='Chemical peel', duration_minutes=90, price=400)
    db.add_all([patient_user, consult, peel])
    db.commit()

    return SimpleNamespace(
        company=company,
        professionals=professionals,
        admin=admin,
        receptionist=receptionist,
        patient=patient,
        patient_user=patient_user,
        consult=consult,
        peel=peel,
    )


def add_appointment(db, clinic, professional, start, duration_minutes=30, status='confirmed', room_id=None):
    appointment = Appointment(
        company_id=clinic.company.id,
        patient_id=clinic.patient.id,
        professional_id=professional.id,
        procedure_id=clinic.consult.id,
        start_time=start,
        end_time=start + timedelta(minutes=duration_minutes),
        duration_minutes=duration_minutes,
        status=status,
        room_id=room_id,
        stock_deducted=False,
    )
    db.add(appointment)
    db.commit()
    db.refresh(appointment)
    return appointment


@pytest.fixture
def make_appointment(db, clinic):
    def _make(professional, start, duration_minutes=30, status='confirmed', room_id=None):
        return add_appointment(db, clinic, professional, start, duration_minutes, status, room_id)

    return _make


class FakeRedis:
    """In-memory stand-in for the few Redis commands the slot cache uses."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.expire_at: dict[str, float] = {}
        self.now = 1000.0

    def _purge(self, key: str) -> None:
        if key in self.expire_at and self.expire_at[key] <= self.now:
            self.store.pop(key, None)
            self.expire_at.pop(key, None)

    def get(self, key: str):
        self._purge(key)
        return self.store.get(key)

    def setex(self, key: str, seconds: int, value: str) -> None:
        self.store[key] = value
        self.expire_at[key] = self.now + seconds

    def delete(self, *keys: str) -> int:
        deleted = 0
        for key in keys:
            self._purge(key)
            if self.store.pop(key, None) is not None:
                deleted += 1
            self.expire_at.pop(key, None)
        return deleted

    def scan_iter(self, match: str = '*'):
        for key in list(self.store):
            self._purge(key)
            if key in self.store and fnmatch.fnmatchcase(key, match):
                yield key


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def slot_cache(fake_redis):
    return SlotCache(fake_redis, ttl_seconds=60)
