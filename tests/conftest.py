import os
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')
os.environ.setdefault('JWT_SECRET_KEY', 'test-signing-key-0123456789abcdef0123456789')

from backend.auth.dependencies import CurrentUser  # noqa: E402
from backend.database import Base  # noqa: E402
from backend.models.doctor_schedule import DoctorSchedule  # noqa: E402
from backend.models.patient import Patient  # noqa: E402
from backend.models.appointment import Appointment  # noqa: E402

FIXED_NOW = datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)

MONDAY_SLOTS = [
    {'startTime': '09:00', 'endTime': '09:30'},
    {'startTime': '09:30', 'endTime': '10:00'},
]


@pytest.fixture
def test_engine():
    engine = create_engine(
        'sqlite:///:memory:',
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
def db_session(test_engine):
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def skip_schema_migrations(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('backend.routes.schedule_routes.ensure_database_ready', lambda: None)
    monkeypatch.setattr('backend.routes.appointment_routes.ensure_database_ready', lambda: None)


@pytest.fixture
def frozen_now(monkeypatch: pytest.MonkeyPatch) -> datetime:
    monkeypatch.setattr('backend.routes.appointment_routes.current_time', lambda: FIXED_NOW)
    return FIXED_NOW


@pytest.fixture
def clerk() -> CurrentUser:
    return CurrentUser(user_id='clerk-1', role='clerk')


@pytest.fixture
def admin() -> CurrentUser:
    return CurrentUser(user_id='admin-1', role='admin')


@pytest.fixture
def doctor() -> CurrentUser:
    return CurrentUser(user_id='D1', role='doctor')


@pytest.fixture
def seeded_db(db_session):
    db_session.add(Patient(patient_id='P1', first_name='Amal', last_name='Haddad'))
    db_session.add(Patient(patient_id='P2', first_name='Omar', last_name='Saleh'))
    db_session.add(
        DoctorSchedule(
            doctor_id='D1',
            doctor_name='Dr. Rana',
            department='Cardiology',
            weekly_availability=[
                {'dayOfWeek': 1, 'slots': MONDAY_SLOTS},
                {'dayOfWeek': 2, 'slots': [{'startTime': '09:00', 'endTime': '12:00'}]},
            ],
            created_by='D1',
            updated_by='D1',
            source='manual',
            booking_version=0,
        )
    )
    db_session.commit()
    return db_session


def add_appointment(db, *, start: datetime, end: datetime, doctor_id='D1', patient_id='P1', status='booked'):
    appointment = Appointment(
        patient_id=patient_id,
        doctor_id=doctor_id,
        appointment_date=start,
        appointment_end_date=end,
        duration_minutes=int((end - start).total_seconds() // 60),
        status=status,
        booked_by='clerk-1',
        booked_by_role='clerk',
        source='manual',
    )
    db.add(appointment)
    db.commit()
    db.refresh(appointment)
    return appointment


@pytest.fixture
def make_appointment(db_session):
    def factory(**kwargs):
        return add_appointment(db_session, **kwargs)

    return factory
