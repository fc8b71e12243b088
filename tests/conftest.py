import os
from datetime import date, datetime, time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from backend.core.clock import FixedClock  # noqa: E402
from backend.database import Base  # noqa: E402
from backend.models.appointment import Appointment  # noqa: E402
from backend.models.availability import AvailabilityTemplateEntry  # noqa: E402
from backend.models.message import InboundMessage  # noqa: E402, F401
from backend.models.patient import Patient  # noqa: E402
from backend.models.user import User  # noqa: E402
from backend.scheduling.events import AppointmentEventBus  # noqa: E402

MONDAY = date(2026, 1, 5)
MONDAY_DAY_OF_WEEK = 1


class RecordingMessenger:
    def __init__(self, fail_with: Exception | None = None) -> None:
        self.sent: list[tuple] = []
        self.fail_with = fail_with

    def _record(self, *entry) -> bool:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(entry)
        return True

    def send_text(self, to: str, body: str) -> bool:
        return self._record('text', to, body)

    def send_appointment_confirmation(self, to: str, patient_name: str, slot_label: str, appointment_type: str) -> bool:
        return self._record('confirmation', to, slot_label, appointment_type)

    def send_alternative_slots(self, to: str, slot_labels: list[str]) -> bool:
        return self._record('alternatives', to, slot_labels)

    def mark_as_read(self, message_id: str) -> bool:
        return self._record('read', message_id)

    def kinds(self) -> list[str]:
        return [entry[0] for entry in self.sent]


class FakeIntentClient:
    def __init__(self, intent=None, error: Exception | None = None) -> None:
        self.intent = intent
        self.error = error
        self.calls: list[tuple] = []

    def analyze(self, message, candidate_labels, context=None):
        self.calls.append((message, list(candidate_labels), context))
        if self.error is not None:
            raise self.error
        return self.intent


@pytest.fixture
def db_session():
    engine = create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime.combine(MONDAY, time(8, 0)))


@pytest.fixture
def events() -> AppointmentEventBus:
    return AppointmentEventBus()


@pytest.fixture
def provider(db_session) -> User:
    user = User(email='dr.silva@clinic.example', full_name='Dr. Silva', role='provider')
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def patient(db_session) -> Patient:
    record = Patient(name='Ana Souza', phone='5511999990000', whatsapp_number='5511999990000')
    db_session.add(record)
    db_session.commit()
    db_session.refresh(record)
    return record


@pytest.fixture
def monday_template(db_session, provider) -> AvailabilityTemplateEntry:
    entry = add_template(db_session, provider.id, MONDAY_DAY_OF_WEEK, time(9, 0), time(10, 0), 30)
    return entry


def add_template(db, provider_id, day_of_week, start_time, end_time, slot_minutes, is_active=True):
    entry = AvailabilityTemplateEntry(
        provider_id=provider_id,
        day_of_week=day_of_week,
        start_time=start_time,
        end_time=end_time,
        slot_duration_minutes=slot_minutes,
        is_active=is_active,
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


def add_appointment(db, provider_id, patient_id, scheduled_at, status='scheduled'):
    appointment = Appointment(
        provider_id=provider_id,
        patient_id=patient_id,
        scheduled_at=scheduled_at,
        appointment_type='consultation',
        status=status,
        origin='manual',
    )
    db.add(appointment)
    db.commit()
    db.refresh(appointment)
    return appointment


def at(hour: int, minute: int = 0, day: date = MONDAY) -> datetime:
    return datetime.combine(day, time(hour, minute))
