"""
Pytest configuration and shared fixtures for MindScan tests.

This module provides:
- Test database setup (SQLite in-memory)
- FastAPI TestClient configuration
- Authentication fixtures (test users, tokens)
- A fake classifier service behind httpx.MockTransport
- Patient and visit factories
- Sample image fixtures
"""

import pytest
import os
import sys
import tempfile
from datetime import datetime, timedelta, date
from typing import Generator
import base64
from io import BytesIO

# =============================================================================
# TEST ENVIRONMENT BEFORE ANY IMPORTS
# =============================================================================
# config.py reads these at import time
_test_root = tempfile.mkdtemp(prefix="mindscan-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_test_root, 'app.db')}"
os.environ["UPLOAD_DIR"] = os.path.join(_test_root, "uploads")
os.environ["LOG_OUTPUT"] = "stdout"
os.environ["LOG_FILE"] = os.path.join(_test_root, "logs", "app.json.log")
os.environ["LOG_LEVEL"] = "WARNING"

# Add backend directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
# and this directory, for the fixtures package
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import httpx
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from database import Base, User, Profile, Patient, Visit
from auth import get_password_hash, create_access_token
from classifier_client import ClassifierClient
from stage_normalizer import DementiaStage

from fixtures.mock_data import non_mri_payload


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture(scope="function")
def test_engine():
    """Create a test database engine using SQLite in-memory."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def test_db(test_engine) -> Generator[Session, None, None]:
    """Create a test database session with automatic rollback."""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture(scope="function")
def override_get_db(test_db):
    """Override the get_db dependency to use test database."""
    def _override_get_db():
        try:
            yield test_db
        finally:
            pass
    return _override_get_db


# =============================================================================
# CLASSIFIER FIXTURES
# =============================================================================

class FakeClassifierService:
    """
    Stands in for the hosted /detect endpoint.

    Set `payload` (dict, or str/bytes for a raw body), `status_code`, or
    `error` (an exception raised by the transport) before the request.
    """

    url = "http://classifier.test/detect"

    def __init__(self):
        self.payload = non_mri_payload()
        self.status_code = 200
        self.error = None
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if isinstance(self.payload, (str, bytes)):
            return httpx.Response(self.status_code, content=self.payload)
        return httpx.Response(self.status_code, json=self.payload)

    def client(self) -> ClassifierClient:
        return ClassifierClient(url=self.url, timeout=None, transport=httpx.MockTransport(self.handler))


@pytest.fixture(scope="function")
def fake_classifier() -> FakeClassifierService:
    """Fake classifier service; tests configure its answer."""
    return FakeClassifierService()


# =============================================================================
# APPLICATION FIXTURES
# =============================================================================

@pytest.fixture(scope="session")
def app_instance():
    """Create the FastAPI app ONCE per test session."""
    from main import app as fastapi_app
    return fastapi_app


@pytest.fixture(scope="function")
def app(app_instance, override_get_db, fake_classifier):
    """Configure the app with the test database and fake classifier for each test."""
    from database import get_db
    from classifier_client import get_classifier_client

    app_instance.dependency_overrides[get_db] = override_get_db
    app_instance.dependency_overrides[get_classifier_client] = fake_classifier.client
    yield app_instance
    app_instance.dependency_overrides.clear()


@pytest.fixture(scope="function")
def client(app) -> Generator[TestClient, None, None]:
    """Create a TestClient for making requests to the app."""
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


@pytest.fixture(scope="function")
def upload_dir():
    """The directory accepted images are written to."""
    from config import UPLOAD_DIR
    return UPLOAD_DIR


# =============================================================================
# USER FIXTURES
# =============================================================================

@pytest.fixture(scope="function")
def test_user_data():
    """Test user data for registration."""
    return {
        "username": "testuser",
        "email": "test@example.com",
        "password": "TestPassword123!",
        "full_name": "Dr. Test User",
    }


@pytest.fixture(scope="function")
def test_user(test_db, test_user_data) -> User:
    """Create a test clinician with a profile."""
    user = User(
        username=test_user_data["username"],
        email=test_user_data["email"],
        hashed_password=get_password_hash(test_user_data["password"]),
        full_name=test_user_data["full_name"],
        is_active=True,
        created_at=datetime.utcnow()
    )
    user.profile = Profile(full_name=test_user_data["full_name"], role="doctor")
    test_db.add(user)
    test_db.commit()
    test_db.refresh(user)
    return user


@pytest.fixture(scope="function")
def inactive_user(test_db) -> User:
    """Create an inactive user for testing inactive user handling."""
    user = User(
        username="inactive_user",
        email="inactive@example.com",
        hashed_password=get_password_hash("InactivePass123!"),
        full_name="Inactive User",
        is_active=False,
        created_at=datetime.utcnow()
    )
    test_db.add(user)
    test_db.commit()
    test_db.refresh(user)
    return user


# =============================================================================
# AUTHENTICATION FIXTURES
# =============================================================================

@pytest.fixture(scope="function")
def user_token(test_user) -> str:
    """Generate a valid JWT token for the test user."""
    return create_access_token(
        data={"sub": test_user.username},
        expires_delta=timedelta(minutes=30)
    )


@pytest.fixture(scope="function")
def expired_token(test_user) -> str:
    """Generate an expired JWT token for testing expiration."""
    return create_access_token(
        data={"sub": test_user.username},
        expires_delta=timedelta(minutes=-10)  # Expired 10 minutes ago
    )


@pytest.fixture(scope="function")
def auth_headers(user_token) -> dict:
    """Get authorization headers for the test user."""
    return {"Authorization": f"Bearer {user_token}"}


# =============================================================================
# PATIENT AND VISIT FIXTURES
# =============================================================================

@pytest.fixture(scope="function")
def test_patient(test_db) -> Patient:
    """A patient with an MRN."""
    patient = Patient(
        name="Jane Doe",
        date_of_birth=date(1948, 3, 14),
        medical_record_number="MRN-0001",
    )
    test_db.add(patient)
    test_db.commit()
    test_db.refresh(patient)
    return patient


@pytest.fixture(scope="function")
def second_patient(test_db) -> Patient:
    """A patient without an MRN."""
    patient = Patient(name="John Roe", date_of_birth=date(1952, 11, 2))
    test_db.add(patient)
    test_db.commit()
    test_db.refresh(patient)
    return patient


@pytest.fixture(scope="function")
def make_visit(test_db, test_user):
    """Factory that stores a visit with explicit stage, confidence and creation time."""
    def _make_visit(
        patient,
        stage=None,
        confidence=None,
        created_at=None,
        confidences=None,
        insights="Analysis complete.",
        raw_report=None,
    ) -> Visit:
        if raw_report is None:
            raw_report = {
                "isMRI": True,
                "dementiaAnalysis": {
                    "predictedClass": DementiaStage(stage).value.replace("_", " ") if stage else None,
                    "confidences": confidences or {},
                    "insights": insights,
                },
            }
        visit = Visit(
            patient_id=patient.id,
            raw_report=raw_report,
            predicted_class=stage,
            confidence=confidence,
            insights=insights,
            created_by=test_user.id,
            created_at=created_at or datetime.utcnow(),
        )
        test_db.add(visit)
        test_db.commit()
        test_db.refresh(visit)
        return visit
    return _make_visit


# =============================================================================
# IMAGE FIXTURES
# =============================================================================

@pytest.fixture(scope="function")
def sample_image_bytes():
    """Generate a simple test image as bytes (1x1 red pixel JPEG)."""
    jpeg_base64 = (
        "/9j/4AAQSkZJRgABAQEASABIAAD/2wBDAAgGBgcGBQgHBwcJCQgKDBQNDAsLDBkS"
        "Ew8UHRofHh0aHBwgJC4nICIsIxwcKDcpLDAxNDQ0Hyc5PTgyPC4zNDL/2wBDAQkJ"
        "CQwLDBgNDRgyIRwhMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIy"
        "MjIyMjIyMjIyMjIyMjL/wAARCAABAAEDASIAAhEBAxEB/8QAFQABAQAAAAAAAAAAAAAAAAAAAAn/"
        "xAAUEAEAAAAAAAAAAAAAAAAAAAAA/8QAFQEBAQAAAAAAAAAAAAAAAAAAAAX/xAAUEQEAAAAAAAAAAAAAAAAAAAAA/9oADAMBAAIRAxEAPwCwAB//2Q=="
    )
    return base64.b64decode(jpeg_base64)


@pytest.fixture(scope="function")
def sample_upload_image(sample_image_bytes):
    """Create a tuple suitable for file upload in tests."""
    return ("brain_scan.jpg", BytesIO(sample_image_bytes), "image/jpeg")
