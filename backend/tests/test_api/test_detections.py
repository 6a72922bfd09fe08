"""
API tests for detection intake and review

Endpoints tested:
- POST /api/v1/detections
- GET /api/v1/detections
- GET /api/v1/detections/stats
- GET /api/v1/detections/{id}
- PATCH /api/v1/detections/{id}/status
"""
from unittest.mock import MagicMock

from app.core.exceptions import DetectionPersistenceError
from app.services.detection_pipeline import set_detection_pipeline
from tests.conftest import ORG_ID, make_detection_event, make_user


def _detection(**overrides):
    payload = {
        "organization_id": ORG_ID,
        "camera_id": "cam-lobby",
        "camera_name": "Lobby",
        "category": "person",
        "confidence": 0.9,
        "bounding_areas": [{"x": 0.1, "y": 0.2, "width": 0.3, "height": 0.25}],
        "image_ref": "snapshots/cam-lobby/1.jpg",
    }
    payload.update(overrides)
    return payload


class TestSubmitDetection:
    def test_accepted_returns_201(self, api_client):
        response = api_client.post("/api/v1/detections", json=_detection())

        assert response.status_code == 201
        data = response.json()
        assert data["accepted"] is True
        assert data["event"]["category"] == "person"
        assert data["event"]["bounding_areas"] == [{"x": 0.1, "y": 0.2, "width": 0.3, "height": 0.25}]
        assert data["alert"] is None

    def test_fire_opens_alert_and_incident(self, api_client, db_session):
        make_user(db_session)

        response = api_client.post("/api/v1/detections", json=_detection(category="fire", confidence=0.8))

        assert response.status_code == 201
        data = response.json()
        assert data["alert"]["severity"] == "critical"
        assert data["fanout"]["in_app_created"] == 1
        assert data["incident"]["emergency_type"] == "fire"
        assert len(data["incident"]["logs"]) == 4

    def test_category_is_case_insensitive(self, api_client):
        response = api_client.post("/api/v1/detections", json=_detection(category="FIRE", confidence=0.8))

        assert response.status_code == 201
        assert response.json()["event"]["category"] == "fire"

    def test_below_threshold_is_rejection(self, api_client):
        response = api_client.post("/api/v1/detections", json=_detection(category="fall", confidence=0.6))

        assert response.status_code == 200
        data = response.json()
        assert data["accepted"] is False
        assert data["rejection"]["reason"] == "below_threshold"
        assert data["event"] is None

    def test_unknown_category(self, api_client):
        response = api_client.post("/api/v1/detections", json=_detection(category="weather"))

        assert response.status_code == 200
        assert response.json()["rejection"]["reason"] == "unknown_category"

    def test_out_of_range_confidence(self, api_client):
        response = api_client.post("/api/v1/detections", json=_detection(confidence=1.5))

        assert response.status_code == 200
        assert response.json()["rejection"]["reason"] == "invalid_confidence"

    def test_duplicate(self, api_client):
        api_client.post("/api/v1/detections", json=_detection(category="theft", confidence=0.85))

        response = api_client.post("/api/v1/detections", json=_detection(category="theft", confidence=0.85))

        assert response.json()["rejection"]["reason"] == "deduplicated"

    def test_missing_fields(self, api_client):
        response = api_client.post("/api/v1/detections", json={"organization_id": ORG_ID})

        assert response.status_code == 422

    def test_persistence_failure_returns_503(self, api_client, pipeline):
        pipeline.recorder = MagicMock()
        pipeline.recorder.record.side_effect = DetectionPersistenceError("disk I/O error")

        response = api_client.post("/api/v1/detections", json=_detection())

        assert response.status_code == 503
        assert response.headers["retry-after"] == "5"

    def test_pipeline_not_running(self, api_client):
        set_detection_pipeline(None)

        response = api_client.post("/api/v1/detections", json=_detection())

        assert response.status_code == 503

    def test_request_id_echoed(self, api_client):
        response = api_client.post(
            "/api/v1/detections", json=_detection(), headers={"X-Request-ID": "gw-42"}
        )

        assert response.headers["X-Request-ID"] == "gw-42"


class TestListDetections:
    def test_filters_and_pagination(self, api_client, db_session):
        make_detection_event(db_session, category="person")
        make_detection_event(db_session, category="fire", camera_id="cam-9")
        make_detection_event(db_session, category="fire", status="confirmed")
        make_detection_event(db_session, organization_id="org-other")

        everything = api_client.get("/api/v1/detections", params={"organization_id": ORG_ID}).json()
        fire = api_client.get("/api/v1/detections", params={"organization_id": ORG_ID, "category": "fire"}).json()
        confirmed = api_client.get(
            "/api/v1/detections", params={"organization_id": ORG_ID, "status": "confirmed"}
        ).json()
        camera = api_client.get("/api/v1/detections", params={"organization_id": ORG_ID, "camera_id": "cam-9"}).json()
        page = api_client.get("/api/v1/detections", params={"organization_id": ORG_ID, "limit": 2}).json()

        assert everything["total_count"] == 3
        assert fire["total_count"] == 2
        assert confirmed["total_count"] == 1
        assert camera["total_count"] == 1
        assert len(page["data"]) == 2
        assert page["total_count"] == 3

    def test_organization_required(self, api_client):
        assert api_client.get("/api/v1/detections").status_code == 422


class TestDetectionStats:
    def test_stats(self, api_client, db_session):
        make_detection_event(db_session, category="person")
        make_detection_event(db_session, category="fire")

        data = api_client.get("/api/v1/detections/stats", params={"organization_id": ORG_ID}).json()

        assert data["total"] == 2
        assert data["by_category"] == {"person": 1, "fire": 1}
        assert data["by_status"]["pending"] == 2


class TestGetAndReview:
    def test_get_detection(self, api_client, db_session):
        event = make_detection_event(db_session, metadata={"people_count": 3})

        response = api_client.get(f"/api/v1/detections/{event.id}", params={"organization_id": ORG_ID})

        assert response.status_code == 200
        assert response.json()["metadata"] == {"people_count": 3}

    def test_other_organization_is_404(self, api_client, db_session):
        event = make_detection_event(db_session, organization_id="org-other")

        response = api_client.get(f"/api/v1/detections/{event.id}", params={"organization_id": ORG_ID})

        assert response.status_code == 404

    def test_review_status(self, api_client, db_session):
        event = make_detection_event(db_session)

        response = api_client.patch(
            f"/api/v1/detections/{event.id}/status",
            params={"organization_id": ORG_ID},
            json={"status": "false_positive"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "false_positive"
        assert response.json()["reviewed_at"] is not None

    def test_invalid_review_status(self, api_client, db_session):
        event = make_detection_event(db_session)

        response = api_client.patch(
            f"/api/v1/detections/{event.id}/status",
            params={"organization_id": ORG_ID},
            json={"status": "archived"},
        )

        assert response.status_code == 422
