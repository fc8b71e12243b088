"""Appointment model definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, func, text
from backend.database import Base, LIVE_SLOT_INDEX_NAME


STATUS_SCHEDULED = 'scheduled'
STATUS_IN_PROGRESS = 'in_progress'
STATUS_COMPLETED = 'completed'
STATUS_CANCELLED = 'cancelled'
APPOINTMENT_STATUSES = (STATUS_SCHEDULED, STATUS_IN_PROGRESS, STATUS_COMPLETED, STATUS_CANCELLED)

ORIGIN_MANUAL = 'manual'
ORIGIN_AUTOMATED = 'automated'

_live_slot_predicate = text("status <> 'cancelled'")


class Appointment(Base):
    """Represents a committed reservation of one provider slot."""
    __tablename__ = "appointments"
    __table_args__ = (
        Index(
            LIVE_SLOT_INDEX_NAME,
            'provider_id',
            'scheduled_at',
            unique=True,
            postgresql_where=_live_slot_predicate,
            sqlite_where=_live_slot_predicate,
        ),
    )

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    scheduled_at = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer)
    appointment_type = Column(String, nullable=False)
    status = Column(String, nullable=False, default=STATUS_SCHEDULED)
    origin = Column(String, nullable=False, default=ORIGIN_MANUAL)
    notes = Column(String)
    rescheduled_from_id = Column(Integer, ForeignKey("appointments.id"))
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)
