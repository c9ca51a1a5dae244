from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from dance_school.config import load_settings
from dance_school.container import build_container
from dance_school.core.enums import EnrollmentStatus
from dance_school.database.document_store import InMemoryDocumentStore
from dance_school.main import create_app

TESTING = "dance_school.config.testing"
TZ = ZoneInfo("America/New_York")


@pytest.fixture
def fixed_now():
    return datetime(2025, 5, 10, 9, 30, tzinfo=TZ)


@pytest.fixture
def settings():
    return load_settings(TESTING)


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def container(settings, store, fixed_now):
    return build_container(settings=settings, store=store, clock=lambda: fixed_now, sleep=lambda _: None)


@pytest.fixture
def enroll(container):
    """Create an enrolled student with a readable id."""

    def _enroll(student_id: str, first_name: str = None, last_name: str = "Dancer"):
        return container.student_directory.create(
            {"first_name": first_name or student_id, "last_name": last_name},
            student_id=student_id,
            enrollment_status=EnrollmentStatus.ENROLLED,
        )

    return _enroll


@pytest.fixture
def app(container):
    return create_app(TESTING, container=container)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_client(container, client):
    container.user_service.create_admin(email="admin@example.com", password="secret123")
    resp = client.post("/api/auth/login", json={"email": "admin@example.com", "password": "secret123"})
    assert resp.status_code == 200
    return client
