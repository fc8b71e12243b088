from datetime import date, datetime, time

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.core import config
from backend.core.clock import Clock, get_clock, to_provider_local
from backend.core.errors import SchedulingError
from backend.database import get_db
from backend.models.availability import AvailabilityTemplateEntry
from backend.routes.common import database_unavailable, ensure_database_ready, http_error_for
from backend.scheduling.availability import compute_available_slots, get_provider, is_slot_available

router = APIRouter(tags=['availability'])


class SlotResponse(BaseModel):
    provider_id: int
    date: date
    time: time
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    appointment_type: str
    label: str


class CheckAvailabilityRequest(BaseModel):
    provider_id: int
    scheduled_at: datetime


class CheckAvailabilityResponse(BaseModel):
    provider_id: int
    scheduled_at: datetime
    available: bool


class TemplateEntryResponse(BaseModel):
    id: int
    provider_id: int
    day_of_week: int
    start_time: time
    end_time: time
    slot_duration_minutes: int
    is_active: bool

    class Config:
        from_attributes = True


@router.get('/slots/{provider_id}', response_model=list[SlotResponse])
def list_available_slots(
    provider_id: int,
    days: int = Query(default=config.DEFAULT_LOOKAHEAD_DAYS, ge=1, le=config.MAX_LOOKAHEAD_DAYS),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    ensure_database_ready()

    try:
        slots = compute_available_slots(db, provider_id, days, clock)
    except SchedulingError as exc:
        raise http_error_for(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return [
        SlotResponse(
            provider_id=slot.provider_id,
            date=slot.date,
            time=slot.time,
            start_time=slot.start,
            end_time=slot.end,
            duration_minutes=slot.duration_minutes,
            appointment_type=slot.appointment_type,
            label=slot.label,
        )
        for slot in slots
    ]


@router.post('/check', response_model=CheckAvailabilityResponse)
def check_availability(
    data: CheckAvailabilityRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    ensure_database_ready()

    scheduled_at = to_provider_local(data.scheduled_at).replace(second=0, microsecond=0)
    try:
        available = is_slot_available(db, data.provider_id, scheduled_at, clock)
    except SchedulingError as exc:
        raise http_error_for(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return CheckAvailabilityResponse(provider_id=data.provider_id, scheduled_at=scheduled_at, available=available)


@router.get('/templates/{provider_id}', response_model=list[TemplateEntryResponse])
def list_template_entries(provider_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        get_provider(db, provider_id)
        return db.query(AvailabilityTemplateEntry).filter(
            AvailabilityTemplateEntry.provider_id == provider_id,
        ).order_by(
            AvailabilityTemplateEntry.day_of_week.asc(),
            AvailabilityTemplateEntry.start_time.asc(),
        ).all()
    except SchedulingError as exc:
        raise http_error_for(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
