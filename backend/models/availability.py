"""Availability template definitions."""

from sqlalchemy import Boolean, CheckConstraint, Column, ForeignKey, Integer, Time
from backend.database import Base


class AvailabilityTemplateEntry(Base):
    """One recurring weekly working window for a provider.

    ``day_of_week`` counts from Sunday (0) to Saturday (6).
    """
    __tablename__ = "availability_templates"
    __table_args__ = (
        CheckConstraint('day_of_week BETWEEN 0 AND 6', name='ck_availability_templates_day'),
        CheckConstraint('start_time < end_time', name='ck_availability_templates_window'),
        CheckConstraint('slot_duration_minutes > 0', name='ck_availability_templates_duration'),
    )

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    slot_duration_minutes = Column(Integer, nullable=False, default=30)
    is_active = Column(Boolean, nullable=False, default=True)
