# tests/conftest.py
import os
import uuid

# The app module builds its engine at import time; keep it in memory.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from video_service.config import Settings, get_settings
from video_service.db import Base, get_db, get_session_factory
from video_service.main import app
from video_service.models import VideoStatus
from video_service.wavespeed import StatusResult, get_video_provider

ADMIN_EMAIL = "admin@example.com"
TEST_PASSWORD = "password123"


class FakeProvider:
    """Stands in for WavespeedClient. Statuses are scripted per request id."""

    def __init__(self):
        self.submitted = []
        self.submit_error = None
        self.statuses = {}
        self.status_calls = 0

    async def submit(self, image_path):
        self.submitted.append(image_path)
        if self.submit_error is not None:
            raise self.submit_error
        return f"req-{len(self.submitted)}"

    async def check_status(self, request_id):
        self.status_calls += 1
        result = self.statuses.get(request_id, StatusResult(status=VideoStatus.PROCESSING))
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def settings(tmp_path):
    s = Settings()
    s.app_url = "http://testserver"
    s.admin_email = ADMIN_EMAIL
    s.resend_api_key = None
    s.wavespeed_api_key = "test-key"
    s.upload_dir = str(tmp_path / "uploads")
    s.reference_video_path = str(tmp_path / "reference-dance.mp4")
    s.max_upload_bytes = 1024
    s.trust_proxy = True
    s.pix_key = "pix@example.com"
    s.payment_amount = "5.00"
    return s


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def client(session_factory, settings, provider):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_video_provider] = lambda: provider

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


# --- Helpers ---

def register_and_login(client, email=None, password=TEST_PASSWORD, first_name="Test"):
    """Registers a user and returns the Authorization headers for it."""
    email = email or f"user_{uuid.uuid4().hex[:8]}@example.com"
    r_register = client.post(
        "/auth/register",
        json={"email": email, "password": password, "first_name": first_name, "last_name": "User"},
    )
    assert r_register.status_code == 201, r_register.text

    r_login = client.post("/auth/login", data={"username": email, "password": password})
    assert r_login.status_code == 200, r_login.text
    return {"Authorization": f"Bearer {r_login.json()['access_token']}"}


def user_id_of(client, headers):
    return client.get("/auth/me", headers=headers).json()["id"]


def credits_of(client, headers):
    return client.get("/user/credits", headers=headers).json()["credits"]


def create_job(client, headers, ip="10.0.0.1", image_path="/uploads/photo.jpg"):
    return client.post(
        "/jobs",
        json={"image_path": image_path},
        headers={**headers, "X-Forwarded-For": ip},
    )


def count_rows(session_factory, model, **filters):
    with session_factory() as db:
        return db.query(model).filter_by(**filters).count()


@pytest.fixture
def user_headers(client):
    return register_and_login(client)


@pytest.fixture
def admin_headers(client):
    return register_and_login(client, email=ADMIN_EMAIL, first_name="Admin")
