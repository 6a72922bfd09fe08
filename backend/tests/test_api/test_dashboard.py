"""
API tests for the dashboard statistics endpoint
"""
from tests.conftest import ORG_ID, make_alert, make_camera, make_detection_event


class TestDashboardStats:
    def test_stats(self, api_client, db_session):
        make_detection_event(db_session, category="fire")
        make_alert(db_session, severity="critical")
        make_camera(db_session, status="online")
        make_camera(db_session, status="offline")

        data = api_client.get("/api/v1/dashboard/stats", params={"organization_id": ORG_ID}).json()

        assert data["recent_detections"] == 1
        assert data["active_alerts"] == 1
        assert data["cameras_online"] == 1
        assert data["cameras_offline"] == 1

    def test_window_bounds(self, api_client):
        response = api_client.get("/api/v1/dashboard/stats", params={"organization_id": ORG_ID, "window_hours": 0})

        assert response.status_code == 422
