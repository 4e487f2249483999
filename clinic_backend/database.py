from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from clinic_backend.core import config


DATABASE_URL = config.DATABASE_URL

connect_args = {}
if DATABASE_URL.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(DATABASE_URL, pool_pre_ping=True, connect_args=connect_args)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'

_schema_lock = Lock()
_appointment_schema_checked = False


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
            ('notes', 'ALTER TABLE appointments ADD COLUMN notes VARCHAR(1000)'),
            ('updated_by', 'ALTER TABLE appointments ADD COLUMN updated_by INTEGER'),
            ('updated_at', 'ALTER TABLE appointments ADD COLUMN updated_at TIMESTAMP'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_professional_range '
                    'ON appointments(professional_id, start_time, end_time)'
                )
            )
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_patient_range '
                    'ON appointments(patient_id, start_time, end_time)'
                )
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_status_start ON appointments(status_id, start_time)')
            )

        _appointment_schema_checked = True


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
