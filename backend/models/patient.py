"""Patient model definitions."""

from sqlalchemy import Column, DateTime, Integer, String, func
from backend.database import Base


class Patient(Base):
    """Represents a patient reachable by phone or WhatsApp."""
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    phone = Column(String)
    whatsapp_number = Column(String, unique=True, index=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
