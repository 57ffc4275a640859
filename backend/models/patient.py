"""Patient model definitions."""

from sqlalchemy import Column, DateTime, Integer, String

from backend.database import Base, utc_now_naive


class Patient(Base):
    """Registered patient; rows are written by the registration service."""
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True)
    patient_id = Column(String, unique=True, index=True, nullable=False)
    first_name = Column(String)
    last_name = Column(String)
    created_at = Column(DateTime, default=utc_now_naive)
