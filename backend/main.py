import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from backend.core import config
from backend.core.errors import NotFoundError
from backend.database import (
    Base,
    SessionLocal,
    engine,
    ensure_appointment_schema,
    ensure_message_schema,
    ensure_template_schema,
)
from backend.models import appointment, availability, message, patient, user  # noqa: F401
from backend.routes import appointment_routes, availability_routes, webhook_routes
from backend.services.schedule_service import create_default_schedule

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
)

app = FastAPI(title='Telehealth Scheduling API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()

    try:
        Base.metadata.create_all(bind=engine)
        ensure_template_schema()
        ensure_appointment_schema()
        ensure_message_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')
        return

    if config.DEFAULT_PROVIDER_ID is None:
        return

    db = SessionLocal()
    try:
        create_default_schedule(db, config.DEFAULT_PROVIDER_ID)
    except NotFoundError:
        logger.warning('DEFAULT_PROVIDER_ID %s does not match any provider.', config.DEFAULT_PROVIDER_ID)
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Could not create the default schedule.')
    finally:
        db.close()


@app.get('/')
def root():
    return {'status': 'Telehealth Scheduling API Running'}


app.include_router(availability_routes.router, prefix='/availability')
app.include_router(appointment_routes.router, prefix='/appointments')
app.include_router(webhook_routes.router, prefix='/whatsapp')
