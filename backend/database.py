from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from backend.core import config


connect_args = {'check_same_thread': False} if config.DATABASE_URL.startswith('sqlite') else {}

engine = create_engine(config.DATABASE_URL, echo=config.DATABASE_ECHO, connect_args=connect_args)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

LIVE_SLOT_INDEX_NAME = 'uq_appointments_live_slot'

_schema_lock = Lock()
_template_schema_checked = False
_appointment_schema_checked = False
_message_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_template_schema() -> None:
    global _template_schema_checked

    if _template_schema_checked:
        return

    with _schema_lock:
        if _template_schema_checked:
            return

        inspector = inspect(engine)

        if 'availability_templates' not in inspector.get_table_names():
            _template_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('availability_templates')}
        migration_steps = [
            ('slot_duration_minutes', 'ALTER TABLE availability_templates ADD COLUMN slot_duration_minutes INTEGER DEFAULT 30'),
            ('is_active', 'ALTER TABLE availability_templates ADD COLUMN is_active BOOLEAN DEFAULT TRUE'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_availability_templates_provider_day '
                    'ON availability_templates(provider_id, day_of_week)'
                )
            )

        _template_schema_checked = True


def ensure_appointment_schema() -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(engine)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('origin', "ALTER TABLE appointments ADD COLUMN origin VARCHAR DEFAULT 'manual'"),
            ('duration_minutes', 'ALTER TABLE appointments ADD COLUMN duration_minutes INTEGER'),
            ('rescheduled_from_id', 'ALTER TABLE appointments ADD COLUMN rescheduled_from_id INTEGER'),
            ('notes', 'ALTER TABLE appointments ADD COLUMN notes VARCHAR'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            # The reservation path relies on this index to reject double bookings.
            connection.execute(
                text(
                    f'CREATE UNIQUE INDEX IF NOT EXISTS {LIVE_SLOT_INDEX_NAME} '
                    "ON appointments(provider_id, scheduled_at) WHERE status <> 'cancelled'"
                )
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_patient_start ON appointments(patient_id, scheduled_at)')
            )

        _appointment_schema_checked = True


def ensure_message_schema() -> None:
    global _message_schema_checked

    if _message_schema_checked:
        return

    with _schema_lock:
        if _message_schema_checked:
            return

        inspector = inspect(engine)

        if 'whatsapp_messages' not in inspector.get_table_names():
            _message_schema_checked = True
            return

        # Redelivered webhooks carry the same external id.
        with engine.begin() as connection:
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_whatsapp_messages_external_id '
                    'ON whatsapp_messages(external_id)'
                )
            )

        _message_schema_checked = True
