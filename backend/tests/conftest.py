"""
Pytest configuration and fixtures for the CRM backend tests.

Every test gets its own data file under tmp_path and runs without WhatsApp
credentials, so outbound messages come back MOCKED unless a test patches the
transport.
"""
import pytest

from app import database
from app.config import settings
from app.services.auth_service import register_account


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    monkeypatch.setattr(settings, "WHATSAPP_ACCESS_TOKEN", None)
    monkeypatch.setattr(settings, "WHATSAPP_PHONE_NUMBER_ID", None)
    monkeypatch.setattr(settings, "WHATSAPP_APP_SECRET", None)
    monkeypatch.setattr(settings, "WHATSAPP_VERIFY_TOKEN", "verify-token")
    monkeypatch.setattr(settings, "AUTOMATION_WORKER_ENABLED", False)
    monkeypatch.setattr(settings, "ENVIRONMENT", "development")


@pytest.fixture
def store(tmp_path, monkeypatch):
    """A DocumentStore on a fresh file, installed as the application store"""
    test_store = database.DocumentStore(tmp_path / "db.json")
    monkeypatch.setattr(database, "_store", test_store)
    return test_store


@pytest.fixture
def user_id(store):
    result = register_account("Test Owner", "owner@example.com", "password123")
    return result["user"]["id"]


@pytest.fixture
def edit_workspace(store, user_id):
    """Context manager giving direct write access to the test user's workspace"""
    from contextlib import contextmanager

    @contextmanager
    def _edit():
        with store.transaction() as document:
            yield database.get_or_create_workspace(document, user_id)

    return _edit


@pytest.fixture
def api_client(store):
    """TestClient with a registered, logged-in user (session cookie set)"""
    from fastapi.testclient import TestClient

    from app.main import app

    client = TestClient(app)
    response = client.post(
        "/api/auth/register",
        json={"name": "Api Owner", "email": "api@example.com", "password": "password123"},
    )
    assert response.status_code == 201
    client.user_id = response.json()["id"]
    return client


@pytest.fixture
def anonymous_client(store):
    from fastapi.testclient import TestClient

    from app.main import app

    return TestClient(app)
