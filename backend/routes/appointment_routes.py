from datetime import date, datetime, time, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.core.clock import Clock, get_clock, to_provider_local
from backend.core.errors import SchedulingError, SchedulingValidationError
from backend.database import get_db
from backend.models.appointment import (
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    Appointment,
)
from backend.routes.common import database_unavailable, ensure_database_ready, http_error_for
from backend.scheduling import lifecycle
from backend.scheduling.availability import get_provider
from backend.scheduling.events import appointment_events
from backend.scheduling.orchestrator import (
    BOOKED,
    BookingOrchestrator,
    get_patient,
    normalize_appointment_type,
)
from backend.services.intent_service import IntentClient, get_intent_client
from backend.services.messaging_service import WhatsAppService, get_messenger

router = APIRouter(tags=['appointments'])

MAX_APPOINTMENT_NOTES_LENGTH = 600
PATCHABLE_STATUSES = (STATUS_IN_PROGRESS, STATUS_COMPLETED, STATUS_CANCELLED)


class CreateAppointmentRequest(BaseModel):
    provider_id: int
    patient_id: int
    scheduled_at: datetime
    appointment_type: str = 'consultation'
    notes: str | None = None

    @field_validator('scheduled_at')
    @classmethod
    def validate_scheduled_at(cls, value: datetime) -> datetime:
        return to_provider_local(value)

    @field_validator('appointment_type')
    @classmethod
    def validate_appointment_type(cls, value: str) -> str:
        try:
            return normalize_appointment_type(value)
        except SchedulingValidationError as exc:
            raise ValueError('Invalid appointment type.') from exc

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_APPOINTMENT_NOTES_LENGTH:
            raise ValueError(f'Notes must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

        return normalized


class UpdateAppointmentRequest(BaseModel):
    status: str | None = None
    scheduled_at: datetime | None = None

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().lower().replace('-', '_')
        if normalized not in PATCHABLE_STATUSES:
            raise ValueError(f'Status must be one of: {", ".join(PATCHABLE_STATUSES)}.')
        return normalized

    @field_validator('scheduled_at')
    @classmethod
    def validate_scheduled_at(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        return to_provider_local(value).replace(second=0, microsecond=0)

    @model_validator(mode='after')
    def validate_single_change(self) -> 'UpdateAppointmentRequest':
        if (self.status is None) == (self.scheduled_at is None):
            raise ValueError('Provide either a status or a new scheduled_at, not both.')
        return self


class AppointmentResponse(BaseModel):
    id: int
    provider_id: int
    patient_id: int
    scheduled_at: datetime
    duration_minutes: int | None = None
    appointment_type: str
    status: str
    origin: str
    notes: str | None = None
    rescheduled_from_id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class AppointmentEventResponse(BaseModel):
    event_type: str
    appointment_id: int
    provider_id: int
    patient_id: int
    scheduled_at: datetime
    status: str
    origin: str
    emitted_at: datetime

    class Config:
        from_attributes = True


def get_booking_orchestrator(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    messenger: WhatsAppService = Depends(get_messenger),
    intent_client: IntentClient = Depends(get_intent_client),
) -> BookingOrchestrator:
    return BookingOrchestrator(db, clock=clock, messenger=messenger, intent_client=intent_client)


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    orchestrator: BookingOrchestrator = Depends(get_booking_orchestrator),
):
    ensure_database_ready()

    try:
        outcome = orchestrator.book_manual(
            data.provider_id,
            data.patient_id,
            data.scheduled_at,
            data.appointment_type,
            notes=data.notes,
        )
    except SchedulingError as exc:
        raise http_error_for(exc) from exc
    except SQLAlchemyError as exc:
        orchestrator.db.rollback()
        raise database_unavailable() from exc

    if outcome.status != BOOKED:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                'message': outcome.message,
                'alternatives': [slot.label for slot in outcome.alternatives],
            },
        )

    return outcome.appointment


@router.get('/events', response_model=list[AppointmentEventResponse])
def list_recent_events(limit: int = Query(default=20, ge=1, le=100)):
    return appointment_events.recent(limit)


@router.get('/provider/{provider_id}', response_model=list[AppointmentResponse])
def list_provider_appointments(
    provider_id: int,
    day: date | None = Query(default=None, alias='date'),
    include_cancelled: bool = Query(default=False),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        get_provider(db, provider_id)
        query = db.query(Appointment).filter(Appointment.provider_id == provider_id)
        if day is not None:
            day_start = datetime.combine(day, time.min)
            query = query.filter(
                Appointment.scheduled_at >= day_start,
                Appointment.scheduled_at < day_start + timedelta(days=1),
            )
        if not include_cancelled:
            query = query.filter(Appointment.status != STATUS_CANCELLED)
        return query.order_by(Appointment.scheduled_at.asc()).all()
    except SchedulingError as exc:
        raise http_error_for(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/provider/{provider_id}/today', response_model=list[AppointmentResponse])
def list_today_appointments(
    provider_id: int,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    return list_provider_appointments(provider_id, day=clock.now().date(), include_cancelled=False, db=db)


@router.get('/patient/{patient_id}', response_model=list[AppointmentResponse])
def list_patient_appointments(patient_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        get_patient(db, patient_id)
        return db.query(Appointment).filter(
            Appointment.patient_id == patient_id,
        ).order_by(Appointment.scheduled_at.desc()).all()
    except SchedulingError as exc:
        raise http_error_for(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(appointment_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return lifecycle.get_appointment(db, appointment_id)
    except SchedulingError as exc:
        raise http_error_for(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.patch('/{appointment_id}', response_model=AppointmentResponse)
def update_appointment(
    appointment_id: int,
    data: UpdateAppointmentRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Apply one lifecycle change; a reschedule answers with the replacement appointment."""
    ensure_database_ready()

    try:
        if data.scheduled_at is not None:
            return lifecycle.reschedule(db, appointment_id, data.scheduled_at, clock=clock)
        if data.status == STATUS_IN_PROGRESS:
            return lifecycle.start(db, appointment_id)
        if data.status == STATUS_COMPLETED:
            return lifecycle.complete(db, appointment_id)
        return lifecycle.cancel(db, appointment_id)
    except SchedulingError as exc:
        raise http_error_for(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc
