"""
E2E test configuration and fixtures.

Drives complete detection flows through the HTTP API against a
temporary database, the way the AI vision provider and dashboards do.
"""
import pytest
from fastapi.testclient import TestClient

from main import app
from app.core.database import get_db
from app.services import realtime_broadcaster as broadcaster_module
from app.services.detection_pipeline import set_detection_pipeline
from tests.conftest import ORG_ID


@pytest.fixture
def e2e_client(session_factory, pipeline, broadcaster, monkeypatch):
    """TestClient with the test database, pipeline and broadcaster installed."""
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    monkeypatch.setattr(broadcaster_module, "_broadcaster", broadcaster)
    set_detection_pipeline(pipeline)

    yield TestClient(app)

    set_detection_pipeline(None)
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def submit(e2e_client):
    """POST a detection and return the response."""
    def _submit(category, confidence, camera_id, **extra):
        payload = {
            "organization_id": ORG_ID,
            "camera_id": camera_id,
            "category": category,
            "confidence": confidence,
        }
        payload.update(extra)
        return e2e_client.post("/api/v1/detections", json=payload)
    return _submit
