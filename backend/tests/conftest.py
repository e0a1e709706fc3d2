"""
Pytest configuration and fixtures for backend tests.

This module is automatically loaded by pytest and provides:
- TESTING environment flag to disable .env loading
- Shared fixtures for database sessions, test clients, a controllable
  clock and provisioned OAuth clients
"""

import os

# Set TESTING flag BEFORE any broker imports
# This prevents loading .env file during tests, ensuring test isolation
os.environ["TESTING"] = "1"

# In-memory SQLite for the module-level engine; tests use their own session
os.environ["DATABASE_URL"] = "sqlite://"

os.environ["ISSUER_URL"] = "http://localhost:8000"
os.environ["TOKEN_SIGNING_SECRET"] = "test-signing-secret-0123456789abcdef0123456789"

# Generate a proper Fernet key for tests
from cryptography.fernet import Fernet
os.environ["TOKEN_ENCRYPTION_KEY"] = Fernet.generate_key().decode()

# Provider test credentials - explicit values for test isolation
os.environ["GITHUB_CLIENT_ID"] = "test-github-client-id"
os.environ["GITHUB_CLIENT_SECRET"] = "test-github-client-secret"
os.environ["GOOGLE_CLIENT_ID"] = "test-google-client-id"
os.environ["GOOGLE_CLIENT_SECRET"] = "test-google-client-secret"

os.environ["SESSION_REDIRECT_URL"] = "http://localhost:3000/"

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine
from sqlmodel.pool import StaticPool

from broker.api.deps import get_clock, get_db
from broker.core.clock import utcnow
from broker.crud.client import provision_client
from broker.main import app
from broker.services.token_issuer import TokenIssuer

CONFIDENTIAL_CLIENT_ID = "billing-app"
CONFIDENTIAL_CLIENT_SECRET = "billing-app-secret"
CONFIDENTIAL_REDIRECT_URI = "https://billing.example.org/oauth/callback"

PUBLIC_CLIENT_ID = "cli"
PUBLIC_REDIRECT_URI = "http://127.0.0.1:8765/callback"


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or utcnow()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture(name="session")
def session_fixture():
    """Create a new in-memory database session for each test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


@pytest.fixture(name="clock")
def clock_fixture() -> FakeClock:
    return FakeClock()


@pytest.fixture(name="issuer")
def issuer_fixture(session: Session, clock: FakeClock) -> TokenIssuer:
    return TokenIssuer(session, clock=clock)


@pytest.fixture(name="client")
def client_fixture(session: Session, clock: FakeClock):
    """Create a test client with database session and clock overrides."""

    def get_session_override():
        return session

    app.dependency_overrides[get_db] = get_session_override
    app.dependency_overrides[get_clock] = lambda: clock
    # Redirects are what these endpoints return; assert on them, don't follow
    client = TestClient(app, follow_redirects=False)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture(name="confidential_client")
def confidential_client_fixture(session: Session):
    return provision_client(
        session=session,
        client_id=CONFIDENTIAL_CLIENT_ID,
        name="Billing",
        redirect_uris=[CONFIDENTIAL_REDIRECT_URI],
        allowed_scopes=["read", "write"],
        secret=CONFIDENTIAL_CLIENT_SECRET,
    )


@pytest.fixture(name="public_client")
def public_client_fixture(session: Session):
    return provision_client(
        session=session,
        client_id=PUBLIC_CLIENT_ID,
        name="Command line",
        redirect_uris=[PUBLIC_REDIRECT_URI],
        allowed_scopes=["read"],
    )
