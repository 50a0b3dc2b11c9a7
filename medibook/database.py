import logging
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from medibook.core import config

logger = logging.getLogger(__name__)

engine = create_engine(config.DATABASE_URL, pool_pre_ping=True)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

RESERVATION_OVERLAP_CONSTRAINT = 'reservations_no_confirmed_overlap'

_schema_lock = Lock()
_reservation_schema_checked = False


def ensure_reservation_schema() -> None:
    global _reservation_schema_checked

    if _reservation_schema_checked:
        return

    with _schema_lock:
        if _reservation_schema_checked:
            return

        inspector = inspect(engine)

        if 'reservations' not in inspector.get_table_names():
            _reservation_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('reservations')}
        migration_steps = [
            ('external_sync_status', "ALTER TABLE reservations ADD COLUMN external_sync_status VARCHAR DEFAULT 'pending'"),
            ('external_event_id', 'ALTER TABLE reservations ADD COLUMN external_event_id VARCHAR'),
            ('external_event_link', 'ALTER TABLE reservations ADD COLUMN external_event_link VARCHAR'),
            ('notification_status', "ALTER TABLE reservations ADD COLUMN notification_status VARCHAR DEFAULT 'pending'"),
            ('payment_status', "ALTER TABLE reservations ADD COLUMN payment_status VARCHAR DEFAULT 'unpaid'"),
            ('payment_order_id', 'ALTER TABLE reservations ADD COLUMN payment_order_id VARCHAR'),
            ('payment_method', 'ALTER TABLE reservations ADD COLUMN payment_method VARCHAR'),
            ('cancelled_at', 'ALTER TABLE reservations ADD COLUMN cancelled_at TIMESTAMP WITH TIME ZONE'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_reservations_doctor_range ON reservations(doctor_id, start_time, end_time)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_reservations_sync_status ON reservations(external_sync_status, created_at)')
            )

            if engine.dialect.name == 'postgresql':
                _ensure_overlap_constraint(connection)

        _reservation_schema_checked = True


def _ensure_overlap_constraint(connection) -> bool:
    """Add the confirmed-overlap exclusion constraint, returning False when the database refuses it."""
    try:
        with connection.begin_nested():
            exists = connection.execute(
                text('SELECT 1 FROM pg_constraint WHERE conname = :name'),
                {'name': RESERVATION_OVERLAP_CONSTRAINT},
            ).first()
            if exists:
                return True

            connection.execute(text('CREATE EXTENSION IF NOT EXISTS btree_gist'))
            connection.execute(
                text(
                    f'ALTER TABLE reservations ADD CONSTRAINT {RESERVATION_OVERLAP_CONSTRAINT} '
                    "EXCLUDE USING gist (doctor_id WITH =, tstzrange(start_time, end_time, '[)') WITH &&) "
                    "WHERE (status = 'confirmed')"
                )
            )
    except SQLAlchemyError:
        logger.warning(
            'Could not create reservation overlap constraint %s; relying on row locks only',
            RESERVATION_OVERLAP_CONSTRAINT,
            exc_info=True,
        )
        return False

    logger.info('Created reservation overlap constraint %s', RESERVATION_OVERLAP_CONSTRAINT)
    return True
