from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from medibook.core import config


connect_args = {'check_same_thread': False} if config.DATABASE_URL.startswith('sqlite') else {}

engine = create_engine(config.DATABASE_URL, connect_args=connect_args)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_scheduling_schema_checked = False

# Columns added after the first deploy; older databases are patched in place.
AVAILABILITY_MIGRATION_STEPS = [
    ('slot_duration_minutes', 'ALTER TABLE doctor_availability ADD COLUMN slot_duration_minutes INTEGER DEFAULT 30'),
    ('is_active', 'ALTER TABLE doctor_availability ADD COLUMN is_active BOOLEAN DEFAULT TRUE'),
    ('updated_at', 'ALTER TABLE doctor_availability ADD COLUMN updated_at TIMESTAMP'),
]
TIME_OFF_MIGRATION_STEPS = [
    ('reason', 'ALTER TABLE doctor_time_off ADD COLUMN reason VARCHAR'),
]
APPOINTMENT_MIGRATION_STEPS = [
    ('reason', 'ALTER TABLE appointments ADD COLUMN reason VARCHAR'),
    ('notes', 'ALTER TABLE appointments ADD COLUMN notes VARCHAR'),
    ('cancelled_by', 'ALTER TABLE appointments ADD COLUMN cancelled_by INTEGER'),
    ('cancelled_at', 'ALTER TABLE appointments ADD COLUMN cancelled_at TIMESTAMP'),
    ('updated_at', 'ALTER TABLE appointments ADD COLUMN updated_at TIMESTAMP'),
]


def _apply_missing_columns(connection, inspector, table_name: str, migration_steps) -> None:
    if table_name not in inspector.get_table_names():
        return

    existing_columns = {column['name'] for column in inspector.get_columns(table_name)}
    for column_name, statement in migration_steps:
        if column_name not in existing_columns:
            connection.execute(text(statement))


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
            _apply_missing_columns(connection, inspector, 'doctor_availability', AVAILABILITY_MIGRATION_STEPS)
            _apply_missing_columns(connection, inspector, 'doctor_time_off', TIME_OFF_MIGRATION_STEPS)
            _apply_missing_columns(connection, inspector, 'appointments', APPOINTMENT_MIGRATION_STEPS)

            if 'doctor_availability' in table_names:
                connection.execute(
                    text(
                        'CREATE INDEX IF NOT EXISTS idx_availability_doctor_day '
                        'ON doctor_availability(doctor_id, day_of_week)'
                    )
                )
            if 'doctor_time_off' in table_names:
                connection.execute(
                    text(
                        'CREATE INDEX IF NOT EXISTS idx_time_off_doctor_range '
                        'ON doctor_time_off(doctor_id, start_date, end_date)'
                    )
                )
            if 'appointments' in table_names:
                connection.execute(
                    text(
                        'CREATE INDEX IF NOT EXISTS idx_appointments_doctor_date '
                        'ON appointments(doctor_id, appointment_date)'
                    )
                )

        _scheduling_schema_checked = True
