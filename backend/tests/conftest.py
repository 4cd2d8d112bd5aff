"""
Test fixtures for Trip Desk backend tests.
"""
import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from httpx import AsyncClient, ASGITransport

from app.database import Base, get_db
from app.main import app
from app.models import UserRole
from app.services.state_machine import TripRequestStateMachine
from tests.factories import make_user, trip_details


# Create test database engine (SQLite in-memory)
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
async def client(override_get_db):
    """
    Create an async test client with the database dependency overridden.
    """
    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def customer(db_session):
    return make_user(db_session, "Nimal Perera")


@pytest.fixture
def other_customer(db_session):
    return make_user(db_session, "Ayesha Fernando")


@pytest.fixture
def staff(db_session):
    return make_user(db_session, "Kumari Silva", role=UserRole.STAFF)


@pytest.fixture
def admin(db_session):
    return make_user(db_session, "Ruwan Jayasuriya", role=UserRole.ADMIN)


@pytest.fixture
def trip_request(db_session, customer):
    """A freshly submitted (pending) trip request owned by ``customer``."""
    return TripRequestStateMachine(db_session).submit(customer, trip_details())
