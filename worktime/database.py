from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from worktime.core.config import settings

DATABASE_URL = settings.database_url


def enable_sqlite_savepoints(engine: Engine) -> Engine:
    """
    pysqlite starts transactions lazily and breaks SAVEPOINT semantics.
    Hand transaction control to SQLAlchemy so nested units of work roll back cleanly.
    """
    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


# Support both PostgreSQL and SQLite via centralized settings
if DATABASE_URL.startswith("postgresql"):
    engine = create_engine(DATABASE_URL)
else:
    engine = enable_sqlite_savepoints(create_engine(
        DATABASE_URL, connect_args={"check_same_thread": False}
    ))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """
    Session Provider: Provides a database session per request.
    Transaction management is handled by the per-employee units of work in the service layer.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """
    Registers all domain models and initializes the database schema.
    Called during the application startup lifespan and by the CLI scripts.
    """
    from worktime.models import (  # noqa: F401
        employee, time_entry, absence_request, holiday,
        overtime_transaction, period_balance, correction,
        vacation_balance, audit_log
    )
    Base.metadata.create_all(bind=engine)
