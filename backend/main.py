import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend.core import config
from backend.core.responses import ApiError, error_code_for_status, send_error
from backend.database import Base, engine, ensure_scheduling_schema
from backend.models import appointment, doctor_schedule, patient  # noqa: F401
from backend.routes import appointment_routes, schedule_routes

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
)

logger = logging.getLogger(__name__)

app = FastAPI(title='Doctor Scheduling Service')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
        ensure_scheduling_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError):
    return send_error(exc.status_code, exc.code, exc.detail, exc.details)


@app.exception_handler(StarletteHTTPException)
async def handle_http_exception(request: Request, exc: StarletteHTTPException):
    if exc.status_code == status.HTTP_404_NOT_FOUND and exc.detail == 'Not Found':
        return send_error(exc.status_code, 'NOT_FOUND', 'Route not found')
    return send_error(exc.status_code, error_code_for_status(exc.status_code), str(exc.detail))


@app.exception_handler(RequestValidationError)
async def handle_request_validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = 'Invalid request'
    if errors:
        first_error = errors[0]
        message = str(first_error.get('msg', message)).removeprefix('Value error, ')
        field = '.'.join(str(part) for part in first_error.get('loc', ()) if part != 'body')
        if field and 'must' not in message:
            message = f'{field}: {message}'
    return send_error(status.HTTP_400_BAD_REQUEST, 'VALIDATION_ERROR', message)


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):
    logger.exception('Unhandled error on %s %s', request.method, request.url.path)
    message = 'Internal server error' if config.is_production() else str(exc)
    return send_error(status.HTTP_500_INTERNAL_SERVER_ERROR, 'INTERNAL_SERVER_ERROR', message)


@app.get('/')
def root():
    return {'status': 'Doctor Scheduling API Running'}


@app.get('/health')
def health():
    try:
        with engine.connect() as connection:
            connection.execute(text('SELECT 1'))
        database_state = 'connected'
    except SQLAlchemyError:
        logger.warning('Health check could not reach the database')
        database_state = 'disconnected'

    return {
        'success': True,
        'service': config.SERVICE_NAME,
        'message': 'Doctor scheduling service is running',
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'dependencies': {'database': database_state},
    }


app.include_router(schedule_routes.router, prefix='/doctors')
app.include_router(appointment_routes.router, prefix='/patients')
