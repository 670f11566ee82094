"""
Test fixtures for Wayfarer backend tests.
"""
import pytest
from datetime import datetime, timedelta
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from httpx import AsyncClient, ASGITransport

from wayfarer.config import Settings
from wayfarer.context import build_context
from wayfarer.database import Base, get_db
from wayfarer.main import app
from wayfarer.services.trip_status import TripStatusService


# In-memory SQLite shared across threads (the sweep runs in a worker thread)
TEST_DATABASE_URL = "sqlite:///:memory:"

test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# Enable foreign key constraints for SQLite
@event.listens_for(test_engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

ADMIN_KEY = "admin-secret"
SYSTEM_KEY = "system-secret"


@pytest.fixture(scope="function")
def db_session():
    """
    Create a fresh database session for each test.
    Creates all tables before the test and drops them after.
    """
    Base.metadata.create_all(bind=test_engine)

    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def service(db_session):
    return TripStatusService(db_session)


@pytest.fixture
def make_trip(service):
    """Create a draft trip; dates are relative to a fixed reference day."""
    def _make_trip(title="Lisbon long weekend", start=None, end=None, **kwargs):
        start = start or datetime(2026, 6, 1, 9, 0)
        end = end or start + timedelta(days=5)
        return service.create_trip(title=title, start_date=start, end_date=end, **kwargs)

    return _make_trip


@pytest.fixture
def test_settings():
    return Settings(
        env="test",
        database_url=TEST_DATABASE_URL,
        scheduler_enabled=False,
        status_sweep_interval_minutes=30,
        status_sweep_timeout_seconds=5.0,
        system_api_key=SYSTEM_KEY,
        admin_api_key=ADMIN_KEY,
    )


@pytest.fixture
def app_context(test_settings, db_session):
    return build_context(test_settings, session_factory=TestSessionLocal)


@pytest.fixture(scope="function")
def override_get_db(db_session):
    """
    Override the get_db dependency to use the test database session.
    """
    def _override_get_db():
        try:
            yield db_session
        finally:
            pass

    return _override_get_db


@pytest.fixture(scope="function")
async def client(override_get_db, app_context):
    """
    Create an async test client with the database dependency overridden.
    """
    app.dependency_overrides[get_db] = override_get_db
    app.state.context = app_context

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    app_context.shutdown()
