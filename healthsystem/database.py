import logging
from datetime import datetime, timezone

from fastapi import Request
from sqlalchemy import Engine, create_engine, inspect, text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from healthsystem.core import config


Base = declarative_base()

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


_IN_MEMORY_URLS = {'sqlite://', 'sqlite:///:memory:'}


def _build_engine(url: str) -> Engine:
    if url in _IN_MEMORY_URLS:
        # One shared connection, otherwise every session sees an empty database.
        return create_engine(
            url,
            connect_args={'check_same_thread': False},
            poolclass=StaticPool,
        )
    if url.startswith('sqlite'):
        return create_engine(url, connect_args={'check_same_thread': False})
    return create_engine(url, pool_pre_ping=True)


class Database:
    """Storage handle selected once at startup and injected into request handlers."""

    def __init__(self, url: str, *, demo: bool = False) -> None:
        self.url = url
        self.demo = demo
        self.engine = _build_engine(url)
        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=self.engine,
        )

    @property
    def mode(self) -> str:
        return 'demo' if self.demo else 'connected'

    def session(self) -> Session:
        return self.SessionLocal()

    def create_schema(self) -> None:
        # Registers every table on Base.metadata.
        from healthsystem.models import appointment, notification, user  # noqa: F401

        Base.metadata.create_all(bind=self.engine)
        ensure_appointment_schema(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()


APPOINTMENT_MIGRATION_STEPS = [
    ('prescription', 'ALTER TABLE appointments ADD COLUMN prescription JSON'),
    ('follow_up_required', 'ALTER TABLE appointments ADD COLUMN follow_up_required BOOLEAN NOT NULL DEFAULT FALSE'),
    ('follow_up_date', 'ALTER TABLE appointments ADD COLUMN follow_up_date DATE'),
    ('cost', 'ALTER TABLE appointments ADD COLUMN cost FLOAT'),
    ('payment_status', "ALTER TABLE appointments ADD COLUMN payment_status VARCHAR NOT NULL DEFAULT 'pending'"),
]

USER_MIGRATION_STEPS = [
    ('address', 'ALTER TABLE users ADD COLUMN address VARCHAR'),
    ('date_of_birth', 'ALTER TABLE users ADD COLUMN date_of_birth DATE'),
    ('gender', 'ALTER TABLE users ADD COLUMN gender VARCHAR'),
    ('qualification', 'ALTER TABLE users ADD COLUMN qualification VARCHAR'),
    ('bio', 'ALTER TABLE users ADD COLUMN bio TEXT'),
]


def ensure_appointment_schema(engine: Engine) -> None:
    inspector = inspect(engine)
    table_names = inspector.get_table_names()

    if 'appointments' not in table_names:
        return

    pending_steps = []
    for table_name, migration_steps in (('appointments', APPOINTMENT_MIGRATION_STEPS), ('users', USER_MIGRATION_STEPS)):
        if table_name not in table_names:
            continue
        existing_columns = {column['name'] for column in inspector.get_columns(table_name)}
        pending_steps.extend(
            statement for column_name, statement in migration_steps if column_name not in existing_columns
        )

    with engine.begin() as connection:
        for statement in pending_steps:
            connection.execute(text(statement))
        connection.execute(
            text('CREATE INDEX IF NOT EXISTS idx_appointments_doctor_date ON appointments(doctor_id, "date")')
        )
        connection.execute(
            text('CREATE INDEX IF NOT EXISTS idx_appointments_patient_date ON appointments(patient_id, "date")')
        )
        connection.execute(
            text(
                'CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_active_slot '
                'ON appointments(doctor_id, "date", "time") '
                "WHERE status IN ('pending', 'confirmed')"
            )
        )


def select_database(url: str | None = None, demo_fallback: bool | None = None) -> Database:
    url = url or config.DATABASE_URL
    if demo_fallback is None:
        demo_fallback = config.DEMO_MODE_FALLBACK

    database = Database(url)
    try:
        with database.engine.connect():
            pass
    except OperationalError:
        database.dispose()
        if not demo_fallback:
            logger.exception('Database connection failed. Check DATABASE_URL and credentials.')
            raise
        logger.warning(
            'Database at %s is unreachable, running in demo mode with an in-memory store.',
            database.engine.url,
        )
        return build_demo_database()

    # Schema errors on a reachable database propagate.
    try:
        database.create_schema()
    except SQLAlchemyError:
        database.dispose()
        logger.exception('Database schema initialization failed for %s.', database.engine.url)
        raise
    return database


def build_demo_database() -> Database:
    from healthsystem.demo import seed_demo_accounts

    demo_database = Database(config.DEMO_DATABASE_URL, demo=True)
    demo_database.create_schema()
    seed_demo_accounts(demo_database)
    return demo_database


def get_db(request: Request):
    db = request.app.state.database.session()
    try:
        yield db
    finally:
        db.close()
