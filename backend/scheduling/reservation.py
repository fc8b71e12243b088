"""The single write path for new appointments.

The collision check is the live-slot unique index on
``appointments(provider_id, scheduled_at) WHERE status <> 'cancelled'``: the
insert either lands or fails with an IntegrityError, which is reported as a
ConflictError. There is deliberately no "is it free?" query before the insert.
"""

import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.core.errors import ConflictError, NotFoundError
from backend.models.appointment import ORIGIN_MANUAL, STATUS_SCHEDULED, Appointment
from backend.models.patient import Patient
from backend.scheduling.availability import get_provider
from backend.scheduling.events import APPOINTMENT_CREATED, AppointmentEventBus, appointment_events

logger = logging.getLogger(__name__)


def reserve(
    db: Session,
    provider_id: int,
    patient_id: int,
    scheduled_at: datetime,
    appointment_type: str,
    origin: str = ORIGIN_MANUAL,
    *,
    duration_minutes: int | None = None,
    notes: str | None = None,
    rescheduled_from_id: int | None = None,
    events: AppointmentEventBus = appointment_events,
) -> Appointment:
    get_provider(db, provider_id)
    if db.query(Patient.id).filter(Patient.id == patient_id).first() is None:
        raise NotFoundError(f'Patient {patient_id} not found.')

    appointment = Appointment(
        provider_id=provider_id,
        patient_id=patient_id,
        scheduled_at=scheduled_at,
        duration_minutes=duration_minutes,
        appointment_type=appointment_type,
        status=STATUS_SCHEDULED,
        origin=origin,
        notes=notes,
        rescheduled_from_id=rescheduled_from_id,
    )

    try:
        db.add(appointment)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.info(
            'Reservation conflict for provider=%s at %s (%s)',
            provider_id,
            scheduled_at.isoformat(),
            origin,
        )
        raise ConflictError('This time slot is no longer available.') from exc

    db.refresh(appointment)
    logger.info(
        'Reserved appointment=%s provider=%s patient=%s at %s (%s)',
        appointment.id,
        provider_id,
        patient_id,
        scheduled_at.isoformat(),
        origin,
    )
    events.publish(APPOINTMENT_CREATED, appointment)
    return appointment
