import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from clinicbook.core import config
from clinicbook.core.errors import DatabaseError, ErrorCode
from clinicbook.database import Base, SessionLocal, engine, ensure_appointment_schema
from clinicbook.models import appointment, availability, logs, provider, service, settings, user, webhook  # noqa: F401
from clinicbook.notifications.dispatcher import NotificationDispatcher
from clinicbook.routes import (
    admin_routes,
    appointment_routes,
    audit_routes,
    auth_routes,
    init_routes,
    notification_routes,
    provider_routes,
    service_routes,
    settings_routes,
    slot_routes,
    webhook_routes,
)
from clinicbook.scheduler import ReminderScheduler, SchedulerConfig

logging.basicConfig(
    level=config.LOG_LEVEL.upper(),
    format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
)

logger = logging.getLogger(__name__)


def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_appointment_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL.')


@asynccontextmanager
async def lifespan(app: FastAPI):
    config.validate_runtime_config()
    initialize_database()

    dispatcher = NotificationDispatcher(SessionLocal)
    scheduler = ReminderScheduler(SessionLocal, dispatcher, SchedulerConfig())
    app.state.dispatcher = dispatcher
    app.state.scheduler = scheduler

    dispatcher.start()
    if config.SCHEDULER_ENABLED:
        scheduler.start()
    try:
        yield
    finally:
        scheduler.stop()
        dispatcher.stop()


app = FastAPI(title='Clinic Booking API', lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [
        {
            'field': '.'.join(str(part) for part in error['loc'] if part not in ('body', 'query', 'path')),
            'message': error['msg'],
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            'detail': {
                'code': ErrorCode.INVALID_INPUT.value,
                'message': 'Invalid request',
                'details': {'fields': fields},
            }
        },
    )


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception('Unhandled database error on %s %s', request.method, request.url.path)
    error = DatabaseError()
    return JSONResponse(status_code=error.status_code, content={'detail': error.detail})


@app.get('/')
def root():
    return {'status': 'Clinic Booking API Running'}


@app.get('/api/ping')
def ping():
    return {'message': 'pong'}


app.include_router(auth_routes.router, prefix='/api/auth')
app.include_router(init_routes.router, prefix='/api/init')
app.include_router(slot_routes.router, prefix='/api/slots')
app.include_router(appointment_routes.router, prefix='/api/appointments')
app.include_router(admin_routes.router, prefix='/api/admin')
app.include_router(service_routes.router, prefix='/api/services')
app.include_router(provider_routes.router, prefix='/api/providers')
app.include_router(settings_routes.router, prefix='/api/settings')
app.include_router(notification_routes.router, prefix='/api/notifications')
app.include_router(audit_routes.router, prefix='/api/audit')
app.include_router(webhook_routes.router, prefix='/api/webhooks')
