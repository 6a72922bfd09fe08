"""
API tests for the notification inbox

Endpoints tested:
- GET /api/v1/notifications
- GET /api/v1/notifications/stats
- PATCH /api/v1/notifications/mark-all-read
- PATCH /api/v1/notifications/{id}/read
- POST /api/v1/notifications/system
"""
import uuid

import pytest

from app.models.notification import Notification
from tests.conftest import ORG_ID, make_user


@pytest.fixture
def inbox(db_session):
    """Three notifications for user-1, one for user-2"""
    rows = [
        Notification(id=str(uuid.uuid4()), user_id="user-1", organization_id=ORG_ID, type="alert",
                     title="Fire Alert", body="Fire or smoke detected", severity="critical",
                     ref_id=str(uuid.uuid4()), push_status="sent"),
        Notification(id=str(uuid.uuid4()), user_id="user-1", organization_id=ORG_ID, type="alert",
                     title="Theft Alert", body="Potential theft activity detected", severity="high",
                     ref_id=str(uuid.uuid4()), push_status="failed"),
        Notification(id=str(uuid.uuid4()), user_id="user-1", organization_id=ORG_ID, type="system",
                     title="Maintenance", body="Camera firmware update tonight", severity="low"),
        Notification(id=str(uuid.uuid4()), user_id="user-2", organization_id=ORG_ID, type="alert",
                     title="Fire Alert", body="Fire or smoke detected", severity="critical",
                     ref_id=str(uuid.uuid4()), push_status="sent"),
    ]
    db_session.add_all(rows)
    db_session.commit()
    return rows


class TestListNotifications:
    def test_list_user_inbox(self, api_client, inbox):
        data = api_client.get("/api/v1/notifications", params={"user_id": "user-1"}).json()

        assert data["total_count"] == 3
        assert data["unread_count"] == 3
        assert all(n["user_id"] == "user-1" for n in data["data"])

    def test_type_filter(self, api_client, inbox):
        data = api_client.get("/api/v1/notifications", params={"user_id": "user-1", "type": "system"}).json()

        assert data["total_count"] == 1
        assert data["data"][0]["title"] == "Maintenance"

    def test_read_filter(self, api_client, inbox):
        api_client.patch(f"/api/v1/notifications/{inbox[0].id}/read", params={"user_id": "user-1"})

        unread = api_client.get("/api/v1/notifications", params={"user_id": "user-1", "read": "false"}).json()
        read = api_client.get("/api/v1/notifications", params={"user_id": "user-1", "read": "true"}).json()

        assert unread["total_count"] == 2
        assert read["total_count"] == 1
        assert unread["unread_count"] == 2


class TestReadState:
    def test_mark_read(self, api_client, inbox):
        response = api_client.patch(f"/api/v1/notifications/{inbox[0].id}/read", params={"user_id": "user-1"})

        assert response.status_code == 200
        assert response.json()["read"] is True
        assert response.json()["read_at"] is not None

    def test_mark_read_other_user_is_404(self, api_client, inbox):
        response = api_client.patch(f"/api/v1/notifications/{inbox[3].id}/read", params={"user_id": "user-1"})

        assert response.status_code == 404

    def test_mark_all_read(self, api_client, inbox):
        response = api_client.patch("/api/v1/notifications/mark-all-read", params={"user_id": "user-1"})

        assert response.json() == {"success": True, "updated_count": 3}
        stats = api_client.get("/api/v1/notifications/stats", params={"user_id": "user-2"}).json()
        assert stats["unread"] == 1


class TestStats:
    def test_stats(self, api_client, inbox):
        data = api_client.get("/api/v1/notifications/stats", params={"user_id": "user-1"}).json()

        assert data["total"] == 3
        assert data["by_type"] == {"alert": 2, "system": 1}
        assert data["by_push_status"]["failed"] == 1


class TestSystemNotification:
    def test_sent_to_active_users(self, api_client, db_session):
        active = make_user(db_session)
        make_user(db_session, is_active=False)

        response = api_client.post("/api/v1/notifications/system", json={
            "organization_id": ORG_ID,
            "title": "Maintenance",
            "body": "Recording paused 02:00-02:15",
        })

        assert response.status_code == 200
        assert response.json()["in_app_created"] == 1
        inbox = api_client.get("/api/v1/notifications", params={"user_id": active.id}).json()
        assert inbox["data"][0]["type"] == "system"
