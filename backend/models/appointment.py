"""Appointment model definitions."""

from sqlalchemy import Column, DateTime, Index, Integer, String

from backend.database import Base, utc_now_naive

APPOINTMENT_STATUSES = ('booked', 'cancelled', 'completed')


class Appointment(Base):
    """A patient's booking against a doctor's schedule, stored in naive UTC."""
    __tablename__ = "appointments"
    __table_args__ = (
        Index('idx_appointments_doctor_range', 'doctor_id', 'appointment_date', 'appointment_end_date'),
        Index('idx_appointments_patient_date', 'patient_id', 'appointment_date'),
    )

    id = Column(Integer, primary_key=True)
    patient_id = Column(String, nullable=False)
    doctor_id = Column(String, nullable=False)
    doctor_name = Column(String)
    appointment_date = Column(DateTime, nullable=False)
    appointment_end_date = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    reason = Column(String(1000))
    status = Column(String, nullable=False, default='booked', index=True)
    booked_by = Column(String, nullable=False)
    booked_by_role = Column(String, nullable=False)
    source = Column(String, nullable=False, default='manual')
    created_at = Column(DateTime, default=utc_now_naive)
    updated_at = Column(DateTime, default=utc_now_naive, onupdate=utc_now_naive)
