import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, field_validator
from pydantic.alias_generators import to_camel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import CurrentUser, require_roles
from backend.core.responses import ApiError, success_payload
from backend.database import database_unavailable, ensure_database_ready, get_db
from backend.models.appointment import Appointment
from backend.models.audit import resolve_audit_source
from backend.models.doctor_schedule import DoctorSchedule
from backend.models.patient import Patient
from backend.scheduling.slots import (
    as_utc,
    day_of_week,
    fits_within_slot,
    parse_iso_datetime,
    slots_for_day,
    to_naive_utc,
    to_utc_end_minutes,
    to_utc_minutes,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=['appointments'])

DEFAULT_DURATION_MINUTES = 30
MIN_DURATION_MINUTES = 5
MAX_DURATION_MINUTES = 480
MAX_REASON_LENGTH = 1000
BOOKING_ROLES = ('clerk',)
APPOINTMENT_READ_ROLES = ('clerk', 'doctor', 'nurse', 'paramedic', 'admin', 'clinician')
STATUS_UPDATE_ROLES = ('clerk', 'doctor', 'admin')
STATUS_TRANSITIONS = {
    'booked': {'cancelled', 'completed'},
}


class CreateAppointmentRequest(BaseModel):
    doctor_id: Any = None
    doctor_name: str | None = None
    appointment_date_time: Any = None
    duration_minutes: Any = DEFAULT_DURATION_MINUTES
    reason: Any = None
    source: Any = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True

    @field_validator('doctor_name')
    @classmethod
    def strip_doctor_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class UpdateAppointmentStatusRequest(BaseModel):
    status: str
    source: Any = None

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {'cancelled', 'completed'}:
            raise ValueError('status must be one of cancelled, completed')
        return normalized


class AppointmentResponse(BaseModel):
    id: int
    patient_id: str
    doctor_id: str
    doctor_name: str | None = None
    appointment_date: datetime
    appointment_end_date: datetime
    duration_minutes: int
    reason: str | None = None
    status: str
    booked_by: str
    booked_by_role: str
    source: str
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True
        alias_generator = to_camel
        populate_by_name = True

    @field_validator('appointment_date', 'appointment_end_date', 'created_at', 'updated_at')
    @classmethod
    def mark_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None


def current_time() -> datetime:
    return datetime.now(timezone.utc)


def serialize_appointment(appointment: Appointment) -> dict:
    return AppointmentResponse.model_validate(appointment).model_dump(by_alias=True, mode='json')


def validation_error(message: str) -> ApiError:
    return ApiError(status_code=status.HTTP_400_BAD_REQUEST, code='VALIDATION_ERROR', message=message)


def patient_not_found() -> ApiError:
    return ApiError(
        status_code=status.HTTP_404_NOT_FOUND,
        code='PATIENT_NOT_FOUND',
        message='Patient record not found',
    )


def is_valid_duration(value: Any) -> bool:
    return (
        isinstance(value, int)
        and not isinstance(value, bool)
        and MIN_DURATION_MINUTES <= value <= MAX_DURATION_MINUTES
    )


def validate_booking_window(data: CreateAppointmentRequest, now: datetime) -> tuple[datetime, datetime, str]:
    """Checks the request fields in order and returns ``(start, end, source)`` in UTC."""
    if not isinstance(data.doctor_id, str) or not data.doctor_id.strip():
        raise validation_error('doctorId is required')

    if not isinstance(data.appointment_date_time, str) or not data.appointment_date_time.strip():
        raise validation_error('appointmentDateTime is required as an ISO date-time string')

    start = parse_iso_datetime(data.appointment_date_time)
    if start is None:
        raise validation_error('appointmentDateTime must be a valid ISO date-time string')

    if not is_valid_duration(data.duration_minutes):
        raise validation_error(
            f'durationMinutes must be an integer between {MIN_DURATION_MINUTES} and {MAX_DURATION_MINUTES}'
        )

    if data.reason is not None and (
        not isinstance(data.reason, str) or len(data.reason.strip()) > MAX_REASON_LENGTH
    ):
        raise validation_error(f'reason must be a string of at most {MAX_REASON_LENGTH} characters')

    end = start + timedelta(minutes=data.duration_minutes)
    if start.date() != end.date():
        raise validation_error('Appointment cannot cross midnight; split into separate appointments')

    if start <= now:
        raise validation_error('appointmentDateTime must be in the future')

    source = resolve_audit_source(data.source, 'manual')
    if not source:
        raise validation_error('source must be one of manual, device, api')

    return start, end, source


def lock_doctor_bookings(db: Session, doctor_id: str) -> None:
    """Serialises bookings for one doctor until the current transaction ends.

    The UPDATE takes a row lock on Postgres and the database write lock on
    SQLite, so an overlap check made afterwards sees every committed booking.
    """
    db.query(DoctorSchedule).filter(DoctorSchedule.doctor_id == doctor_id).update(
        {DoctorSchedule.booking_version: DoctorSchedule.booking_version + 1},
        synchronize_session=False,
    )


def find_overlapping_appointment(
    db: Session,
    doctor_id: str,
    start: datetime,
    end: datetime,
) -> Appointment | None:
    return db.query(Appointment).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.status == 'booked',
        Appointment.appointment_date < to_naive_utc(end),
        Appointment.appointment_end_date > to_naive_utc(start),
    ).first()


@router.post('/{patient_id}/appointments', status_code=status.HTTP_201_CREATED)
def create_appointment(
    patient_id: str,
    data: CreateAppointmentRequest,
    current_user: CurrentUser = Depends(require_roles(*BOOKING_ROLES)),
    db: Session = Depends(get_db),
):
    start, end, source = validate_booking_window(data, current_time())
    doctor_id = data.doctor_id.strip()

    ensure_database_ready()

    try:
        patient = db.query(Patient).filter(Patient.patient_id == patient_id).first()
        if patient is None:
            raise patient_not_found()

        schedule = db.query(DoctorSchedule).filter(DoctorSchedule.doctor_id == doctor_id).first()
        if schedule is None:
            raise ApiError(
                status_code=status.HTTP_404_NOT_FOUND,
                code='DOCTOR_SCHEDULE_NOT_FOUND',
                message='Doctor schedule not found for this doctor',
            )

        schedule_slots = slots_for_day(schedule.weekly_availability, day_of_week(start))
        start_minutes = to_utc_minutes(start)
        end_minutes = to_utc_end_minutes(end)
        if not fits_within_slot(schedule_slots, start_minutes, end_minutes):
            raise ApiError(
                status_code=status.HTTP_409_CONFLICT,
                code='DOCTOR_UNAVAILABLE',
                message='Requested time is outside of the doctor schedule for that day',
            )

        lock_doctor_bookings(db, doctor_id)

        overlapping = find_overlapping_appointment(db, doctor_id, start, end)
        if overlapping is not None:
            db.rollback()
            logger.info(
                'Booking for doctor %s at %s rejected: overlaps appointment %s',
                doctor_id,
                start.isoformat(),
                overlapping.id,
            )
            raise ApiError(
                status_code=status.HTTP_409_CONFLICT,
                code='DOCTOR_UNAVAILABLE',
                message='Doctor is not free at the requested time, please choose another slot',
            )

        appointment = Appointment(
            patient_id=patient_id,
            doctor_id=doctor_id,
            doctor_name=data.doctor_name or schedule.doctor_name,
            appointment_date=to_naive_utc(start),
            appointment_end_date=to_naive_utc(end),
            duration_minutes=data.duration_minutes,
            reason=data.reason.strip() if isinstance(data.reason, str) and data.reason.strip() else None,
            status='booked',
            booked_by=current_user.user_id,
            booked_by_role=current_user.role,
            source=source,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    logger.info(
        'Appointment %s booked for patient %s with doctor %s at %s',
        appointment.id,
        patient_id,
        doctor_id,
        start.isoformat(),
    )

    return success_payload({'appointment': serialize_appointment(appointment)}, 'Appointment booked successfully')


@router.get('/{patient_id}/appointments')
def list_patient_appointments(
    patient_id: str,
    current_user: CurrentUser = Depends(require_roles(*APPOINTMENT_READ_ROLES)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        patient = db.query(Patient).filter(Patient.patient_id == patient_id).first()
        if patient is None:
            raise patient_not_found()

        appointments = db.query(Appointment).filter(
            Appointment.patient_id == patient_id,
        ).order_by(Appointment.appointment_date.desc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return success_payload(
        {'appointments': [serialize_appointment(appointment) for appointment in appointments]},
        'Patient appointments retrieved successfully',
    )


@router.patch('/{patient_id}/appointments/{appointment_id}/status')
def update_appointment_status(
    patient_id: str,
    appointment_id: int,
    data: UpdateAppointmentStatusRequest,
    current_user: CurrentUser = Depends(require_roles(*STATUS_UPDATE_ROLES)),
    db: Session = Depends(get_db),
):
    source = resolve_audit_source(data.source, 'manual')
    if not source:
        raise validation_error('source must be one of manual, device, api')

    ensure_database_ready()

    try:
        appointment = db.query(Appointment).filter(
            Appointment.id == appointment_id,
            Appointment.patient_id == patient_id,
        ).first()

        if appointment is None:
            raise ApiError(
                status_code=status.HTTP_404_NOT_FOUND,
                code='APPOINTMENT_NOT_FOUND',
                message='Appointment not found',
            )

        if data.status not in STATUS_TRANSITIONS.get(appointment.status, set()):
            raise ApiError(
                status_code=status.HTTP_409_CONFLICT,
                code='INVALID_STATUS_TRANSITION',
                message=f'Cannot change appointment status from {appointment.status} to {data.status}',
            )

        previous_status = appointment.status
        appointment.status = data.status
        appointment.source = source
        db.commit()
        db.refresh(appointment)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    logger.info(
        'Appointment %s moved from %s to %s by %s',
        appointment.id,
        previous_status,
        appointment.status,
        current_user.user_id,
    )

    return success_payload({'appointment': serialize_appointment(appointment)}, 'Appointment status updated successfully')
