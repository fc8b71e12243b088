import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from backend.core.errors import ConflictError, NotFoundError
from backend.database import Base
from backend.models.appointment import Appointment
from backend.models.patient import Patient
from backend.models.user import User
from backend.scheduling.availability import compute_available_slots
from backend.scheduling.events import APPOINTMENT_CREATED, AppointmentEventBus
from backend.scheduling.lifecycle import cancel
from backend.scheduling.reservation import reserve
from conftest import add_appointment, at


def _live_count(db, provider_id, scheduled_at) -> int:
    return db.query(Appointment).filter(
        Appointment.provider_id == provider_id,
        Appointment.scheduled_at == scheduled_at,
        Appointment.status != 'cancelled',
    ).count()


def test_reserve_creates_scheduled_appointment(db_session, provider, patient, events) -> None:
    appointment = reserve(
        db_session, provider.id, patient.id, at(9, 0), 'consultation', 'automated',
        duration_minutes=30, events=events,
    )

    assert appointment.id is not None
    assert appointment.status == 'scheduled'
    assert appointment.origin == 'automated'
    assert appointment.duration_minutes == 30
    assert appointment.created_at is not None


def test_reserve_publishes_created_event(db_session, provider, patient, events) -> None:
    received = []
    events.subscribe(received.append)

    appointment = reserve(db_session, provider.id, patient.id, at(9, 0), 'consultation', events=events)

    assert [event.event_type for event in received] == [APPOINTMENT_CREATED]
    assert received[0].appointment_id == appointment.id
    assert events.recent()[0].appointment_id == appointment.id


def test_second_reservation_for_same_slot_conflicts(db_session, provider, patient, events) -> None:
    reserve(db_session, provider.id, patient.id, at(9, 0), 'consultation', events=events)

    with pytest.raises(ConflictError):
        reserve(db_session, provider.id, patient.id, at(9, 0), 'follow_up', 'automated', events=events)

    assert _live_count(db_session, provider.id, at(9, 0)) == 1


def test_conflict_leaves_session_usable(db_session, provider, patient, events) -> None:
    reserve(db_session, provider.id, patient.id, at(9, 0), 'consultation', events=events)
    with pytest.raises(ConflictError):
        reserve(db_session, provider.id, patient.id, at(9, 0), 'consultation', events=events)

    second = reserve(db_session, provider.id, patient.id, at(9, 30), 'consultation', events=events)

    assert second.scheduled_at == at(9, 30)


def test_cancelled_appointment_does_not_block_rebooking(db_session, provider, patient, events) -> None:
    add_appointment(db_session, provider.id, patient.id, at(9, 0), status='cancelled')

    appointment = reserve(db_session, provider.id, patient.id, at(9, 0), 'consultation', events=events)

    assert appointment.status == 'scheduled'
    assert db_session.query(Appointment).count() == 2


def test_same_time_with_different_providers_is_allowed(db_session, provider, patient, events) -> None:
    other = User(email='dr.lima@clinic.example', role='provider')
    db_session.add(other)
    db_session.commit()

    reserve(db_session, provider.id, patient.id, at(9, 0), 'consultation', events=events)
    reserve(db_session, other.id, patient.id, at(9, 0), 'consultation', events=events)

    assert db_session.query(Appointment).count() == 2


def test_failing_listener_does_not_roll_back_reservation(db_session, provider, patient, events) -> None:
    def broken_listener(event) -> None:
        raise RuntimeError('dashboard offline')

    events.subscribe(broken_listener)

    appointment = reserve(db_session, provider.id, patient.id, at(9, 0), 'consultation', events=events)

    assert db_session.query(Appointment).filter(Appointment.id == appointment.id).one().status == 'scheduled'


def test_reserve_rejects_unknown_patient(db_session, provider, events) -> None:
    with pytest.raises(NotFoundError):
        reserve(db_session, provider.id, 404, at(9, 0), 'consultation', events=events)


def test_reserve_rejects_unknown_provider(db_session, patient, events) -> None:
    with pytest.raises(NotFoundError):
        reserve(db_session, 404, patient.id, at(9, 0), 'consultation', events=events)


def test_booking_and_cancelling_round_trip_through_availability(
    db_session, provider, patient, monday_template, clock, events
) -> None:
    appointment = reserve(db_session, provider.id, patient.id, at(9, 0), 'consultation', events=events)
    assert [slot.start for slot in compute_available_slots(db_session, provider.id, 1, clock)] == [at(9, 30)]

    with pytest.raises(ConflictError):
        reserve(db_session, provider.id, patient.id, at(9, 0), 'consultation', events=events)

    cancel(db_session, appointment.id, events=events)

    assert [slot.start for slot in compute_available_slots(db_session, provider.id, 1, clock)] == [
        at(9, 0),
        at(9, 30),
    ]


def test_concurrent_reservations_for_one_slot_allow_exactly_one(tmp_path) -> None:
    attempts = 8
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={'check_same_thread': False, 'timeout': 30},
    )
    Base.metadata.create_all(bind=engine)
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    with session_factory() as setup:
        provider = User(email='dr.silva@clinic.example', role='provider')
        patients = [Patient(name=f'Patient {index}', whatsapp_number=f'55110000{index}') for index in range(attempts)]
        setup.add(provider)
        setup.add_all(patients)
        setup.commit()
        provider_id = provider.id
        patient_ids = [record.id for record in patients]

    barrier = threading.Barrier(attempts)
    events = AppointmentEventBus()

    def attempt(patient_id: int) -> str:
        db = session_factory()
        try:
            barrier.wait()
            reserve(db, provider_id, patient_id, at(9, 0), 'consultation', events=events)
            return 'booked'
        except ConflictError:
            return 'conflict'
        finally:
            db.close()

    with ThreadPoolExecutor(max_workers=attempts) as pool:
        results = list(pool.map(attempt, patient_ids))

    assert results.count('booked') == 1
    assert results.count('conflict') == attempts - 1

    with session_factory() as check:
        assert _live_count(check, provider_id, at(9, 0)) == 1

    engine.dispose()
