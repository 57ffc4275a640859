import logging
from datetime import datetime, timezone
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from backend.core import config
from backend.core.responses import ApiError

logger = logging.getLogger(__name__)

engine = create_engine(config.DATABASE_URL, echo=config.DATABASE_ECHO, pool_pre_ping=True)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_scheduling_schema_checked = False


def utc_now_naive() -> datetime:
    """Current UTC time without tzinfo, the form timestamps are stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_scheduling_schema() -> None:
    global _scheduling_schema_checked

    if _scheduling_schema_checked:
        return

    with _schema_lock:
        if _scheduling_schema_checked:
            return

        inspector = inspect(engine)
        table_names = set(inspector.get_table_names())

        with engine.begin() as connection:
            if 'doctor_schedules' in table_names:
                existing_columns = {column['name'] for column in inspector.get_columns('doctor_schedules')}
                if 'booking_version' not in existing_columns:
                    logger.info('Adding doctor_schedules.booking_version column')
                    connection.execute(
                        text('ALTER TABLE doctor_schedules ADD COLUMN booking_version INTEGER NOT NULL DEFAULT 0')
                    )

            if 'appointments' in table_names:
                connection.execute(
                    text(
                        'CREATE INDEX IF NOT EXISTS idx_appointments_doctor_range '
                        'ON appointments(doctor_id, appointment_date, appointment_end_date)'
                    )
                )
                connection.execute(
                    text(
                        'CREATE INDEX IF NOT EXISTS idx_appointments_patient_date '
                        'ON appointments(patient_id, appointment_date)'
                    )
                )

        _scheduling_schema_checked = True


def database_unavailable(exc: SQLAlchemyError) -> ApiError:
    logger.error('Database error: %s', exc)
    return ApiError(
        status_code=503,
        code='SERVICE_UNAVAILABLE',
        message='Database unavailable. Verify DATABASE_URL and database credentials.',
    )


def ensure_database_ready() -> None:
    try:
        ensure_scheduling_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc
