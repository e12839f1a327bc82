from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from clinic_backend.core import config


engine = create_engine(config.DATABASE_URL, echo=config.DATABASE_ECHO)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

PROFESSIONAL_OVERLAP_CONSTRAINT = 'appointments_no_overlap_per_professional'
ROOM_OVERLAP_CONSTRAINT = 'appointments_no_overlap_per_room'

_schema_lock = Lock()
_appointment_schema_checked = False
_unavailability_schema_checked = False


def ensure_appointment_schema(bind=None) -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked and bind is None:
        return

    with _schema_lock:
        if _appointment_schema_checked and bind is None:
            return

        target = bind or engine
        inspector = inspect(target)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('room_id', 'ALTER TABLE appointments ADD COLUMN room_id INTEGER'),
            ('notes', 'ALTER TABLE appointments ADD COLUMN notes VARCHAR'),
            ('stock_deducted', 'ALTER TABLE appointments ADD COLUMN stock_deducted BOOLEAN DEFAULT FALSE'),
        ]

        with target.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_professional_start '
                    'ON appointments(professional_id, start_time)'
                )
            )
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_company_start '
                    'ON appointments(company_id, start_time)'
                )
            )
            if connection.dialect.name == 'postgresql':
                _ensure_overlap_constraints(connection)

        _appointment_schema_checked = True


def _ensure_overlap_constraints(connection) -> None:
    # Blocking appointments of one professional, or of one pinned room, never
    # overlap; a concurrent insert that would break this fails at commit.
    connection.execute(text('CREATE EXTENSION IF NOT EXISTS btree_gist'))
    existing = {
        row[0]
        for row in connection.execute(
            text("SELECT conname FROM pg_constraint WHERE conrelid = 'appointments'::regclass")
        )
    }
    if PROFESSIONAL_OVERLAP_CONSTRAINT not in existing:
        connection.execute(
            text(
                f"""
                ALTER TABLE appointments
                  ADD CONSTRAINT {PROFESSIONAL_OVERLAP_CONSTRAINT}
                  EXCLUDE USING gist (
                    professional_id WITH =,
                    tsrange(start_time, end_time, '[)') WITH &&
                  )
                  WHERE (status IN ('scheduled', 'confirmed'))
                """
            )
        )
    if ROOM_OVERLAP_CONSTRAINT not in existing:
        connection.execute(
            text(
                f"""
                ALTER TABLE appointments
                  ADD CONSTRAINT {ROOM_OVERLAP_CONSTRAINT}
                  EXCLUDE USING gist (
                    company_id WITH =,
                    room_id WITH =,
                    tsrange(start_time, end_time, '[)') WITH &&
                  )
                  WHERE (room_id IS NOT NULL AND status IN ('scheduled', 'confirmed'))
                """
            )
        )


def ensure_unavailability_schema(bind=None) -> None:
    global _unavailability_schema_checked

    if _unavailability_schema_checked and bind is None:
        return

    with _schema_lock:
        if _unavailability_schema_checked and bind is None:
            return

        target = bind or engine
        inspector = inspect(target)

        if 'unavailability_rules' not in inspector.get_table_names():
            _unavailability_schema_checked = True
            return

        with target.begin() as connection:
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_unavailability_rules_company '
                    'ON unavailability_rules(company_id)'
                )
            )

        _unavailability_schema_checked = True


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
