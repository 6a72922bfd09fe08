"""
Unit tests for emergency action executors
"""
import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from app.services.action_executors import (
    BuildingManagementExecutor,
    CameraControlExecutor,
    EmergencyServicesExecutor,
    MessagingActionExecutor,
    STATUS_FAILED,
    STATUS_SIMULATED,
    STATUS_SUCCESS,
    create_action_executors,
)
from app.services.messaging_gateway import GatewayResult, LoggingMessagingGateway
from app.services.notification_fanout import FanOutSummary, NotificationResult


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestSimulatedExecutors:
    """Executors without a webhook run simulated"""

    @pytest.mark.asyncio
    async def test_emergency_services_simulated(self):
        executor = EmergencyServicesExecutor()

        result = await executor.execute("contact_emergency_services", {"service": "fire_brigade"})

        assert result.status == STATUS_SIMULATED
        assert result.succeeded
        assert result.details["integration"] == "emergency_services"
        assert result.details["request"] == {"service": "fire_brigade"}

    @pytest.mark.asyncio
    async def test_emergency_services_requires_service(self):
        with pytest.raises(ValueError):
            await EmergencyServicesExecutor().execute("contact_emergency_services", {})

    @pytest.mark.asyncio
    async def test_camera_control_requires_camera(self):
        with pytest.raises(ValueError):
            await CameraControlExecutor().execute("two_way_audio", {"message": "hello"})

    @pytest.mark.asyncio
    async def test_unsupported_action_rejected(self):
        with pytest.raises(ValueError):
            await BuildingManagementExecutor().execute("two_way_audio", {})

    def test_simulated_without_webhook(self):
        executor = BuildingManagementExecutor()
        assert executor.simulated
        assert executor.supports("activate_building_systems")


class TestWebhookExecutors:
    """Executors with a webhook POST the action"""

    @pytest.mark.asyncio
    async def test_posts_action_and_payload(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(202, json={"dispatch_id": "d-1"})

        async with _client(handler) as client:
            executor = EmergencyServicesExecutor("http://dispatch.test/hook", client)
            result = await executor.execute("contact_emergency_services", {"service": "ambulance"})

        assert result.status == STATUS_SUCCESS
        assert result.details["status_code"] == 202
        assert seen["url"] == "http://dispatch.test/hook"
        assert seen["body"]["action_type"] == "contact_emergency_services"
        assert seen["body"]["payload"] == {"service": "ambulance"}

    @pytest.mark.asyncio
    async def test_http_error_is_failed_result(self):
        async with _client(lambda request: httpx.Response(500, text="down")) as client:
            executor = BuildingManagementExecutor("http://bms.test/hook", client)
            result = await executor.execute("activate_building_systems", {"system": "fire_response"})

        assert result.status == STATUS_FAILED
        assert result.error == "HTTP 500"
        assert not result.succeeded

    @pytest.mark.asyncio
    async def test_connection_error_is_failed_result(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with _client(handler) as client:
            executor = CameraControlExecutor("http://cams.test/hook", client)
            result = await executor.execute("continuous_recording", {"camera_id": "cam-1"})

        assert result.status == STATUS_FAILED
        assert "Request error" in result.error


class TestMessagingActionExecutor:
    """Mass notification and stakeholder contact"""

    @pytest.mark.asyncio
    async def test_mass_notification_uses_fanout(self):
        fanout = MagicMock()
        summary = FanOutSummary(ref_id="inc-1", notification_type="emergency_alert", organization_id="org-1")
        summary.results = [NotificationResult(user_id="u1", in_app_created=True)]
        fanout.fan_out_incident = AsyncMock(return_value=summary)
        executor = MessagingActionExecutor(LoggingMessagingGateway(), fanout)

        result = await executor.execute("mass_notification", {
            "organization_id": "org-1",
            "incident_id": "inc-1",
            "title": "FIRE",
            "message": "Evacuate",
            "priority": "critical",
        })

        assert result.status == STATUS_SUCCESS
        fanout.fan_out_incident.assert_awaited_once_with(
            organization_id="org-1", incident_id="inc-1", title="FIRE", body="Evacuate", severity="critical"
        )

    @pytest.mark.asyncio
    async def test_mass_notification_missing_records_fails(self):
        fanout = MagicMock()
        summary = FanOutSummary(ref_id="inc-1", notification_type="emergency_alert", organization_id="org-1")
        summary.results = [NotificationResult(user_id="u1", in_app_created=False, error="db locked")]
        fanout.fan_out_incident = AsyncMock(return_value=summary)
        executor = MessagingActionExecutor(LoggingMessagingGateway(), fanout)

        result = await executor.execute("mass_notification", {
            "organization_id": "org-1", "incident_id": "inc-1", "title": "FIRE", "message": "Evacuate",
        })

        assert result.status == STATUS_FAILED

    @pytest.mark.asyncio
    async def test_stakeholders_addressed_by_group(self):
        gateway = LoggingMessagingGateway()
        executor = MessagingActionExecutor(gateway, MagicMock())

        result = await executor.execute("contact_stakeholders", {
            "contacts": ["security_team", "site_manager"],
            "title": "INTRUSION",
            "message": "Perimeter breach",
        })

        assert result.status == STATUS_SIMULATED
        assert gateway.sent[0]["targets"] == ["security_team", "site_manager"]

    @pytest.mark.asyncio
    async def test_stakeholder_gateway_failure(self):
        gateway = MagicMock()
        gateway.send_push = AsyncMock(return_value=GatewayResult(
            success=False, channel="push", status_code=502, error="HTTP 502"
        ))
        executor = MessagingActionExecutor(gateway, MagicMock())

        result = await executor.execute("contact_stakeholders", {"contacts": ["care_team"]})

        assert result.status == STATUS_FAILED
        assert result.error == "HTTP 502"

    @pytest.mark.asyncio
    async def test_unsupported_action(self):
        with pytest.raises(ValueError):
            await MessagingActionExecutor(LoggingMessagingGateway(), MagicMock()).execute("lockdown", {})


class TestCreateActionExecutors:
    def test_all_integrations_registered(self):
        executors = create_action_executors(LoggingMessagingGateway(), MagicMock())

        assert set(executors) == {"emergency_services", "building_management", "camera_control", "messaging"}
