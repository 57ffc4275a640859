import logging
import re
from datetime import date, datetime, time
from typing import Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from pydantic.alias_generators import to_camel
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import CurrentUser, require_roles
from backend.core.responses import ApiError, success_payload
from backend.database import database_unavailable, ensure_database_ready, get_db
from backend.models.appointment import Appointment
from backend.models.audit import resolve_audit_source
from backend.models.doctor_schedule import DoctorSchedule
from backend.scheduling.slots import (
    as_utc,
    day_of_week,
    filter_free_slots,
    is_valid_weekly_availability,
    normalize_weekly_availability,
    slots_for_day,
    to_utc_end_minutes,
    to_utc_minutes,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=['doctor schedules'])

DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')
SCHEDULE_WRITE_ROLES = ('doctor', 'admin')
SCHEDULE_READ_ROLES = ('clerk', 'doctor', 'nurse', 'paramedic', 'admin', 'clinician')


class ScheduleUpsertRequest(BaseModel):
    doctor_name: str | None = None
    department: str | None = None
    weekly_availability: Any = None
    source: Any = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True

    @field_validator('doctor_name', 'department')
    @classmethod
    def strip_optional_text(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class ScheduleSlot(BaseModel):
    start_time: str
    end_time: str

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class DayAvailability(BaseModel):
    day_of_week: int
    slots: list[ScheduleSlot]

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class DoctorScheduleResponse(BaseModel):
    id: int
    doctor_id: str
    doctor_name: str | None = None
    department: str | None = None
    weekly_availability: list[DayAvailability]
    created_by: str
    updated_by: str
    source: str
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True
        alias_generator = to_camel
        populate_by_name = True

    @field_validator('created_at', 'updated_at')
    @classmethod
    def mark_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None


class BookedSlotResponse(BaseModel):
    appointment_id: int
    start: datetime
    end: datetime
    patient_id: str

    class Config:
        alias_generator = to_camel
        populate_by_name = True

    @field_validator('start', 'end')
    @classmethod
    def mark_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


def serialize_schedule(schedule: DoctorSchedule) -> dict:
    return DoctorScheduleResponse.model_validate(schedule).model_dump(by_alias=True, mode='json')


def get_schedule(db: Session, doctor_id: str) -> DoctorSchedule | None:
    return db.query(DoctorSchedule).filter(DoctorSchedule.doctor_id == doctor_id).first()


def parse_requested_date(value: str | None) -> date:
    if value is None or not value.strip():
        raise ApiError(
            status_code=status.HTTP_400_BAD_REQUEST,
            code='VALIDATION_ERROR',
            message='date query parameter is required in YYYY-MM-DD format',
        )

    if not DATE_PATTERN.match(value):
        raise ApiError(
            status_code=status.HTTP_400_BAD_REQUEST,
            code='VALIDATION_ERROR',
            message='date must be in YYYY-MM-DD format',
        )

    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise ApiError(
            status_code=status.HTTP_400_BAD_REQUEST,
            code='VALIDATION_ERROR',
            message='date must be in YYYY-MM-DD format',
        ) from exc


def get_booked_appointments(db: Session, doctor_id: str, requested_date: date) -> list[Appointment]:
    day_start = datetime.combine(requested_date, time.min)
    day_end = datetime.combine(requested_date, time.max)

    return db.query(Appointment).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.status == 'booked',
        Appointment.appointment_date <= day_end,
        Appointment.appointment_end_date >= day_start,
    ).order_by(Appointment.appointment_date.asc()).all()


def apply_schedule_update(
    schedule: DoctorSchedule,
    data: ScheduleUpsertRequest,
    weekly_availability: list[dict],
    source: str,
    user_id: str,
) -> None:
    schedule.weekly_availability = weekly_availability
    schedule.updated_by = user_id
    schedule.source = source
    if data.doctor_name is not None:
        schedule.doctor_name = data.doctor_name
    if data.department is not None:
        schedule.department = data.department


@router.put('/{doctor_id}/schedule')
def upsert_doctor_schedule(
    doctor_id: str,
    data: ScheduleUpsertRequest,
    current_user: CurrentUser = Depends(require_roles(*SCHEDULE_WRITE_ROLES)),
    db: Session = Depends(get_db),
):
    if current_user.role == 'doctor' and current_user.user_id != doctor_id:
        raise ApiError(
            status_code=status.HTTP_403_FORBIDDEN,
            code='INSUFFICIENT_ROLE',
            message='Doctors can only manage their own schedule',
        )

    doctor_id = doctor_id.strip()
    if not doctor_id:
        raise ApiError(
            status_code=status.HTTP_400_BAD_REQUEST,
            code='VALIDATION_ERROR',
            message='doctorId is required',
        )

    if not is_valid_weekly_availability(data.weekly_availability):
        raise ApiError(
            status_code=status.HTTP_400_BAD_REQUEST,
            code='VALIDATION_ERROR',
            message='weeklyAvailability must contain unique dayOfWeek entries (0-6) with non-overlapping HH:mm slots',
        )

    source = resolve_audit_source(data.source, 'manual')
    if not source:
        raise ApiError(
            status_code=status.HTTP_400_BAD_REQUEST,
            code='VALIDATION_ERROR',
            message='source must be one of manual, device, api',
        )

    weekly_availability = normalize_weekly_availability(data.weekly_availability)

    ensure_database_ready()

    try:
        schedule = get_schedule(db, doctor_id)
        if schedule is None:
            schedule = DoctorSchedule(doctor_id=doctor_id, created_by=current_user.user_id, booking_version=0)
            apply_schedule_update(schedule, data, weekly_availability, source, current_user.user_id)
            db.add(schedule)
            try:
                db.commit()
            except IntegrityError:
                # Another writer created the row first; overwrite it.
                db.rollback()
                schedule = get_schedule(db, doctor_id)
                if schedule is None:
                    raise
                apply_schedule_update(schedule, data, weekly_availability, source, current_user.user_id)
                db.commit()
        else:
            apply_schedule_update(schedule, data, weekly_availability, source, current_user.user_id)
            db.commit()

        db.refresh(schedule)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    logger.info('Schedule for doctor %s updated by %s (%s)', doctor_id, current_user.user_id, source)

    return success_payload({'schedule': serialize_schedule(schedule)}, 'Doctor schedule updated successfully')


@router.get('/{doctor_id}/schedule')
def get_doctor_schedule(
    doctor_id: str,
    current_user: CurrentUser = Depends(require_roles(*SCHEDULE_READ_ROLES)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        schedule = get_schedule(db, doctor_id)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    if schedule is None:
        raise ApiError(
            status_code=status.HTTP_404_NOT_FOUND,
            code='DOCTOR_SCHEDULE_NOT_FOUND',
            message='Doctor schedule not found',
        )

    return success_payload({'schedule': serialize_schedule(schedule)}, 'Doctor schedule retrieved successfully')


@router.get('/{doctor_id}/availability')
def get_doctor_availability(
    doctor_id: str,
    requested_date: str | None = Query(default=None, alias='date'),
    current_user: CurrentUser = Depends(require_roles(*SCHEDULE_READ_ROLES)),
    db: Session = Depends(get_db),
):
    parsed_date = parse_requested_date(requested_date)

    ensure_database_ready()

    try:
        schedule = get_schedule(db, doctor_id)
        if schedule is None:
            raise ApiError(
                status_code=status.HTTP_404_NOT_FOUND,
                code='DOCTOR_SCHEDULE_NOT_FOUND',
                message='Doctor schedule not found',
            )

        booked_appointments = get_booked_appointments(db, doctor_id, parsed_date)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    weekday = day_of_week(parsed_date)
    template_slots = slots_for_day(schedule.weekly_availability, weekday)
    available_slots = filter_free_slots(
        template_slots,
        [
            (to_utc_minutes(appointment.appointment_date), to_utc_end_minutes(appointment.appointment_end_date))
            for appointment in booked_appointments
        ],
    )

    booked_slots = [
        BookedSlotResponse(
            appointment_id=appointment.id,
            start=appointment.appointment_date,
            end=appointment.appointment_end_date,
            patient_id=appointment.patient_id,
        ).model_dump(by_alias=True, mode='json')
        for appointment in booked_appointments
    ]

    return success_payload(
        {
            'doctorId': doctor_id,
            'date': parsed_date.isoformat(),
            'dayOfWeek': weekday,
            'availableSlots': available_slots,
            'bookedSlots': booked_slots,
        },
        'Doctor availability retrieved successfully',
    )
