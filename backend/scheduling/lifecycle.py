"""Status transitions for committed appointments.

Each transition is a conditional UPDATE guarded by the allowed source
statuses, so two racing transitions cannot both win. Re-applying a
transition whose target status is already reached is a no-op.
"""

import logging
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import Session

from backend.core.clock import Clock, get_clock
from backend.core.errors import InvalidTransitionError, NotFoundError, SchedulingValidationError
from backend.models.appointment import (
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    STATUS_SCHEDULED,
    Appointment,
)
from backend.scheduling.availability import find_template_slot
from backend.scheduling.events import (
    APPOINTMENT_CANCELLED,
    APPOINTMENT_RESCHEDULED,
    APPOINTMENT_UPDATED,
    AppointmentEventBus,
    appointment_events,
)
from backend.scheduling.reservation import reserve

logger = logging.getLogger(__name__)

ALLOWED_SOURCES = {
    STATUS_IN_PROGRESS: (STATUS_SCHEDULED,),
    STATUS_COMPLETED: (STATUS_IN_PROGRESS,),
    STATUS_CANCELLED: (STATUS_SCHEDULED, STATUS_IN_PROGRESS),
}


def get_appointment(db: Session, appointment_id: int) -> Appointment:
    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    if appointment is None:
        raise NotFoundError(f'Appointment {appointment_id} not found.')
    return appointment


def _transition(
    db: Session,
    appointment_id: int,
    target: str,
    events: AppointmentEventBus,
) -> Appointment:
    sources = ALLOWED_SOURCES[target]
    updated = db.query(Appointment).filter(
        Appointment.id == appointment_id,
        Appointment.status.in_(sources),
    ).update(
        {Appointment.status: target, Appointment.updated_at: func.now()},
        synchronize_session=False,
    )
    db.commit()

    appointment = get_appointment(db, appointment_id)
    db.refresh(appointment)

    if not updated:
        if appointment.status == target:
            return appointment
        raise InvalidTransitionError(
            f'Cannot move appointment {appointment_id} from {appointment.status} to {target}.'
        )

    logger.info('Appointment %s moved to %s', appointment_id, target)
    events.publish(APPOINTMENT_CANCELLED if target == STATUS_CANCELLED else APPOINTMENT_UPDATED, appointment)
    return appointment


def start(db: Session, appointment_id: int, events: AppointmentEventBus = appointment_events) -> Appointment:
    return _transition(db, appointment_id, STATUS_IN_PROGRESS, events)


def complete(db: Session, appointment_id: int, events: AppointmentEventBus = appointment_events) -> Appointment:
    return _transition(db, appointment_id, STATUS_COMPLETED, events)


def cancel(db: Session, appointment_id: int, events: AppointmentEventBus = appointment_events) -> Appointment:
    return _transition(db, appointment_id, STATUS_CANCELLED, events)


def reschedule(
    db: Session,
    appointment_id: int,
    new_scheduled_at: datetime,
    clock: Clock | None = None,
    events: AppointmentEventBus = appointment_events,
) -> Appointment:
    """Move a scheduled appointment, returning the live replacement.

    The new slot is reserved first; the original row is cancelled only
    after that succeeds, so the booking is never without a live reservation.
    A ConflictError from the reservation leaves the original untouched.
    """
    original = get_appointment(db, appointment_id)

    if original.status != STATUS_SCHEDULED:
        replacement = db.query(Appointment).filter(
            Appointment.rescheduled_from_id == original.id,
            Appointment.scheduled_at == new_scheduled_at,
            Appointment.status != STATUS_CANCELLED,
        ).first()
        if replacement is not None:
            return replacement
        raise InvalidTransitionError(
            f'Only scheduled appointments can be rescheduled; appointment {appointment_id} is {original.status}.'
        )

    if original.scheduled_at == new_scheduled_at:
        return original

    if new_scheduled_at <= (clock or get_clock()).now():
        raise SchedulingValidationError('Appointments must be rescheduled into the future.')

    slot = find_template_slot(db, original.provider_id, new_scheduled_at)
    if slot is None:
        raise SchedulingValidationError('The requested time is not a bookable slot for this provider.')

    replacement = reserve(
        db,
        original.provider_id,
        original.patient_id,
        new_scheduled_at,
        original.appointment_type,
        original.origin,
        duration_minutes=slot.duration_minutes,
        notes=original.notes,
        rescheduled_from_id=original.id,
        events=events,
    )

    released = db.query(Appointment).filter(
        Appointment.id == original.id,
        Appointment.status == STATUS_SCHEDULED,
    ).update(
        {Appointment.status: STATUS_CANCELLED, Appointment.updated_at: func.now()},
        synchronize_session=False,
    )
    db.commit()

    db.refresh(original)
    if not released:
        # The original changed state while the new slot was being reserved.
        cancel(db, replacement.id, events=events)
        raise InvalidTransitionError(
            f'Appointment {appointment_id} moved to {original.status} during reschedule.'
        )

    logger.info(
        'Appointment %s rescheduled to %s as appointment %s',
        appointment_id,
        new_scheduled_at.isoformat(),
        replacement.id,
    )
    events.publish(APPOINTMENT_RESCHEDULED, original)
    return replacement
