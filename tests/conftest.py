"""Pytest fixtures for backend tests."""

import os
import tempfile
from datetime import datetime, timedelta, UTC

import pytest
from cryptography.fernet import Fernet
from fastapi.testclient import TestClient

# Set required env vars before any app module is imported
os.environ["ENV"] = "test"
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id.apps.googleusercontent.com")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("GOOGLE_REDIRECT_URI", "http://testserver/auth/google/callback")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("TOKEN_ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ.setdefault("FRONTEND_URL", "http://frontend.test")
os.environ["TIMEZONE"] = "UTC"
os.environ["DATABASE_URL"] = f"sqlite:///{tempfile.mkdtemp()}/test.db"

from main import app  # noqa: E402
from crypto import encrypt, token_digest  # noqa: E402
from database import Base, SessionLocal, engine  # noqa: E402
from models import Event, User  # noqa: E402
from security import create_jwt  # noqa: E402


@pytest.fixture(autouse=True)
def reset_tables():
    """Fresh schema for every test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def test_client():
    """Create a FastAPI test client."""
    return TestClient(app)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def user(db):
    """User with a Google access token that is still valid."""
    u = User(
        google_id="google-sub-123",
        email="test@example.com",
        name="Test User",
        encrypted_access_token=encrypt("ya29.test-access-token"),
        encrypted_refresh_token=encrypt("test-refresh-token"),
        refresh_token_hash=token_digest("test-refresh-token"),
        token_expiry=datetime.now(UTC) + timedelta(hours=1),
    )
    db.add(u)
    db.commit()
    return u


@pytest.fixture
def other_user(db):
    u = User(
        google_id="google-sub-456",
        email="other@example.com",
        name="Other User",
        encrypted_access_token=encrypt("ya29.other-access-token"),
    )
    db.add(u)
    db.commit()
    return u


@pytest.fixture
def auth_headers(user):
    """Valid bearer header for the user fixture."""
    return {"Authorization": f"Bearer {create_jwt(user.id)}"}


@pytest.fixture
def make_event(db):
    """Insert an event row; start/end are aware datetimes."""

    def _make(user, title, start, end=None, google_event_id=None):
        ev = Event(
            user_id=user.id,
            google_event_id=google_event_id,
            title=title,
            start_time=start,
            end_time=end or start + timedelta(hours=1),
        )
        db.add(ev)
        db.commit()
        return ev

    return _make


def _google_item(event_id, summary, start, end, all_day=False):
    """Calendar v3 event resource as returned by events.list."""
    key = "date" if all_day else "dateTime"
    return {
        "id": event_id,
        "summary": summary,
        "start": {key: start},
        "end": {key: end},
    }


@pytest.fixture
def google_item():
    return _google_item
