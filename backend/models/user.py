"""User model definitions."""

from sqlalchemy import Column, Integer, String
from backend.database import Base


PROVIDER_ROLE = 'provider'
ADMIN_ROLE = 'admin'


class User(Base):
    """Represents a staff user; providers own availability and appointments."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    full_name = Column(String)
    role = Column(String, default=PROVIDER_ROLE)  # provider/admin
