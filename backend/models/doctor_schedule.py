"""Doctor schedule model definitions."""

from sqlalchemy import JSON, Column, DateTime, Integer, String

from backend.database import Base, utc_now_naive


class DoctorSchedule(Base):
    """A doctor's recurring weekly availability.

    ``booking_version`` is bumped inside every booking transaction so the row
    doubles as the per-doctor booking lock.
    """
    __tablename__ = "doctor_schedules"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(String, unique=True, index=True, nullable=False)
    doctor_name = Column(String)
    department = Column(String)
    weekly_availability = Column(JSON, nullable=False, default=list)
    created_by = Column(String, nullable=False)
    updated_by = Column(String, nullable=False)
    source = Column(String, nullable=False, default='manual')
    booking_version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utc_now_naive)
    updated_at = Column(DateTime, default=utc_now_naive, onupdate=utc_now_naive)
