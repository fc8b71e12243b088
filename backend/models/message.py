"""Inbound and automated WhatsApp message log."""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, func
from backend.database import Base


class InboundMessage(Base):
    __tablename__ = "whatsapp_messages"

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("patients.id"))
    external_id = Column(String, unique=True, index=True)
    from_number = Column(String, nullable=False)
    to_number = Column(String, nullable=False)
    body = Column(String, nullable=False)
    is_automated = Column(Boolean, default=False)
    booking_intent = Column(JSON)
    appointment_id = Column(Integer, ForeignKey("appointments.id"))
    processed = Column(Boolean, default=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
