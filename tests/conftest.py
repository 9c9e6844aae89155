import pytest
import os
from datetime import date, datetime, timezone
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set env before importing app components
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"

from worktime.core.clock import FixedClock
from worktime.database import Base, enable_sqlite_savepoints, get_db
from worktime.dependencies import get_clock
from worktime.main import app
from worktime.models.employee import Employee
from worktime.models.time_entry import TimeEntry
from worktime.models.absence_request import AbsenceRequest, AbsenceStatus
from worktime.models.holiday import Holiday, HolidayScope
from worktime.services.overtime_service import OvertimeService
from fastapi.testclient import TestClient

# SQLite in-memory database configuration
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = enable_sqlite_savepoints(create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
))
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False)


@pytest.fixture(scope="session", autouse=True)
def setup_database():
    """Create tables once for the whole test session."""
    import worktime.models  # noqa: F401
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session():
    """
    Session bound to an outer transaction that is rolled back after the test.
    Service commits only release savepoints inside it.
    """
    connection = engine.connect()
    transaction = connection.begin()
    session = TestingSessionLocal(bind=connection, join_transaction_mode="create_savepoint")

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture(scope="function")
def clock():
    """Today is Friday 2024-03-15."""
    return FixedClock(datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture(scope="function")
def service(db_session, clock):
    return OvertimeService(db_session, clock)


@pytest.fixture(scope="function")
def make_employee(db_session):
    def _make_employee(**kwargs):
        values = {
            "first_name": "Anna",
            "last_name": "Schmidt",
            "weekly_hours": 40.0,
            "hire_date": date(2024, 1, 1),
            "status": "active",
        }
        values.update(kwargs)
        employee = Employee(**values)
        db_session.add(employee)
        db_session.commit()
        return employee
    return _make_employee


@pytest.fixture(scope="function")
def employee(make_employee):
    return make_employee()


@pytest.fixture(scope="function")
def add_entry(db_session):
    """Insert a raw time entry without going through validation."""
    def _add_entry(employee, day, hours, start="08:00", end=None):
        from datetime import time, timedelta
        begin = datetime.strptime(start, "%H:%M")
        finish = begin + timedelta(hours=hours)
        entry = TimeEntry(
            employee_id=employee.id,
            date=day,
            start_time=begin.time(),
            end_time=finish.time() if end is None else time.fromisoformat(end),
            break_minutes=0,
            hours=hours,
            location="office",
        )
        db_session.add(entry)
        db_session.commit()
        return entry
    return _add_entry


@pytest.fixture(scope="function")
def add_absence(db_session):
    def _add_absence(employee, absence_type, start, end, status=AbsenceStatus.APPROVED.value):
        absence = AbsenceRequest(
            employee_id=employee.id,
            type=absence_type,
            start_date=start,
            end_date=end,
            days_required=0,
            status=status,
        )
        db_session.add(absence)
        db_session.commit()
        return absence
    return _add_absence


@pytest.fixture(scope="function")
def add_holiday(db_session):
    def _add_holiday(day, name="Feiertag", scope=HolidayScope.FEDERAL.value, region=None):
        holiday = Holiday(date=day, name=name, scope=scope, region=region)
        db_session.add(holiday)
        db_session.commit()
        return holiday
    return _add_holiday


@pytest.fixture(scope="function")
def client(db_session, clock):
    """Get a TestClient that uses the test database session and clock via dependency override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def assert_chain():
    """Checks the ledger chain rules on rows given in chain order."""
    def _assert_chain(transactions):
        previous_after = 0.0
        for tx in transactions:
            if tx.type == "carryover":
                assert tx.balance_before == 0.0
                assert tx.hours == pytest.approx(previous_after)
            else:
                assert tx.balance_before == pytest.approx(previous_after)
            assert tx.balance_after == pytest.approx(tx.balance_before + tx.hours)
            previous_after = tx.balance_after
    return _assert_chain
