"""
Shared pytest fixtures for API tests.

Each test gets its own temporary database (the session_factory fixture),
a detection pipeline bound to it, and a fresh realtime broadcaster. The
app lifespan is not run; the fixtures install what it would.
"""
import pytest
from fastapi.testclient import TestClient

from main import app
from app.core.database import get_db
from app.services import realtime_broadcaster as broadcaster_module
from app.services.detection_pipeline import set_detection_pipeline


@pytest.fixture(scope="function")
def api_client(session_factory, pipeline, broadcaster, monkeypatch):
    """
    Create an API test client with proper database isolation.

    This fixture:
    1. Overrides get_db to use the test database
    2. Installs the test pipeline and broadcaster as the global instances
    3. Provides a TestClient
    4. Restores the globals and overrides afterwards
    """
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    monkeypatch.setattr(broadcaster_module, "_broadcaster", broadcaster)
    set_detection_pipeline(pipeline)

    client = TestClient(app)

    yield client

    set_detection_pipeline(None)
    app.dependency_overrides.pop(get_db, None)
