"""
API tests for the realtime feed, health and metrics endpoints
"""
from tests.conftest import ORG_ID


class TestWebSocket:
    def test_ping_pong_and_subscription(self, api_client, broadcaster):
        with api_client.websocket_connect(f"/ws/{ORG_ID}") as websocket:
            websocket.send_text("ping")
            assert websocket.receive_text() == "pong"
            assert broadcaster.subscription_count(ORG_ID) == 1

        assert broadcaster.subscription_count(ORG_ID) == 0


class TestRecentUpdates:
    def test_recent_after_detection(self, api_client):
        api_client.post("/api/v1/detections", json={
            "organization_id": ORG_ID, "camera_id": "cam-1", "category": "theft", "confidence": 0.9,
        })

        data = api_client.get(f"/api/v1/realtime/{ORG_ID}/recent").json()

        types = [m["type"] for m in data["data"]]
        assert types[:2] == ["detection_event", "alert"]
        assert [m["sequence"] for m in data["data"]] == sorted(m["sequence"] for m in data["data"])

    def test_recent_limit(self, api_client):
        for camera in ("cam-1", "cam-2", "cam-3"):
            api_client.post("/api/v1/detections", json={
                "organization_id": ORG_ID, "camera_id": camera, "category": "person", "confidence": 0.9,
            })

        data = api_client.get(f"/api/v1/realtime/{ORG_ID}/recent", params={"limit": 2}).json()

        assert len(data["data"]) == 2
        assert data["data"][-1]["data"]["camera_id"] == "cam-3"


class TestServiceEndpoints:
    def test_root(self, api_client):
        assert api_client.get("/").json()["name"] == "Sentryline API"

    def test_health(self, api_client):
        data = api_client.get("/health").json()

        assert data["status"] == "healthy"
        assert data["pipeline_running"] is True
        assert data["in_flight_detections"] == 0

    def test_health_degraded_while_draining(self, api_client, pipeline):
        pipeline.accepting = False

        assert api_client.get("/health").json()["status"] == "degraded"

    def test_metrics(self, api_client):
        api_client.post("/api/v1/detections", json={
            "organization_id": ORG_ID, "camera_id": "cam-1", "category": "person", "confidence": 0.9,
        })

        response = api_client.get("/metrics")

        assert response.status_code == 200
        assert "detections_total" in response.text
