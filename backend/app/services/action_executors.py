"""
Emergency action executors.

Each executor is one integration the emergency orchestrator can call:

    - EmergencyServicesExecutor: contact_emergency_services (fire brigade, ambulance, police)
    - BuildingManagementExecutor: activate_building_systems (evacuation, sprinklers, doors, lighting)
    - CameraControlExecutor: two_way_audio, continuous_recording
    - MessagingActionExecutor: mass_notification, contact_stakeholders

Integration executors POST `{action_type, payload}` to their webhook when one
is configured and otherwise run in simulated mode, returning status
`simulated`. The orchestrator only sees `execute(action_type, payload)`.
"""
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

import httpx

from app.core.config import settings
from app.services.messaging_gateway import LoggingMessagingGateway, MessagingGateway

logger = logging.getLogger(__name__)

USER_AGENT = "Sentryline-Emergency/1.0"
MAX_RESPONSE_BODY_LENGTH = 1000

STATUS_SUCCESS = "success"
STATUS_SIMULATED = "simulated"
STATUS_FAILED = "failed"


@dataclass
class ActionResult:
    """
    Outcome of one executed action.

    Attributes:
        action_type: Action that was executed
        status: success, simulated or failed
        details: Integration response or simulation summary
        error: Failure detail
        executed_at: When execution finished (UTC)
    """

    action_type: str
    status: str
    details: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    executed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def succeeded(self) -> bool:
        return self.status in (STATUS_SUCCESS, STATUS_SIMULATED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action_type": self.action_type,
            "status": self.status,
            "details": self.details,
            "error": self.error,
            "executed_at": self.executed_at.isoformat(),
        }


class ActionExecutor:
    """Interface: execute one emergency action."""

    name = "executor"
    supported_actions: Tuple[str, ...] = ()

    def supports(self, action_type: str) -> bool:
        return action_type in self.supported_actions

    async def execute(self, action_type: str, payload: Dict[str, Any]) -> ActionResult:
        raise NotImplementedError


class WebhookActionExecutor(ActionExecutor):
    """
    Integration executor backed by an optional webhook.

    Attributes:
        webhook_url: Integration endpoint (None = simulated)
        http_client: Shared httpx AsyncClient (created per call if not provided)
    """

    def __init__(self, webhook_url: Optional[str] = None, http_client: Optional[httpx.AsyncClient] = None):
        self.webhook_url = webhook_url
        self.http_client = http_client

    @property
    def simulated(self) -> bool:
        return not self.webhook_url

    def _simulate(self, action_type: str, payload: Dict[str, Any]) -> ActionResult:
        reference = str(uuid.uuid4())
        logger.info(
            f"[simulated] {self.name}: {action_type}",
            extra={
                "event_type": "emergency_action_simulated",
                "integration": self.name,
                "action_type": action_type,
                "reference": reference,
            }
        )
        return ActionResult(
            action_type=action_type,
            status=STATUS_SIMULATED,
            details={"integration": self.name, "reference": reference, "request": payload},
        )

    async def _post(self, action_type: str, payload: Dict[str, Any]) -> ActionResult:
        client = self.http_client or httpx.AsyncClient()
        should_close_client = self.http_client is None
        start_time = time.time()

        try:
            response = await client.post(
                self.webhook_url,
                json={
                    "action_type": action_type,
                    "payload": payload,
                    "sent_at": datetime.now(timezone.utc).isoformat(),
                },
                headers={"Content-Type": "application/json", "User-Agent": USER_AGENT},
            )
            response_time_ms = int((time.time() - start_time) * 1000)
            details = {
                "integration": self.name,
                "status_code": response.status_code,
                "response_time_ms": response_time_ms,
                "response_body": response.text[:MAX_RESPONSE_BODY_LENGTH],
            }
            if 200 <= response.status_code < 300:
                return ActionResult(action_type=action_type, status=STATUS_SUCCESS, details=details)
            return ActionResult(
                action_type=action_type,
                status=STATUS_FAILED,
                details=details,
                error=f"HTTP {response.status_code}",
            )

        except httpx.RequestError as e:
            return ActionResult(
                action_type=action_type,
                status=STATUS_FAILED,
                details={"integration": self.name},
                error=f"Request error: {e}",
            )

        finally:
            if should_close_client:
                await client.aclose()

    async def execute(self, action_type: str, payload: Dict[str, Any]) -> ActionResult:
        if not self.supports(action_type):
            raise ValueError(f"{self.name} does not support action '{action_type}'")
        if self.simulated:
            return self._simulate(action_type, payload)
        return await self._post(action_type, payload)


class EmergencyServicesExecutor(WebhookActionExecutor):
    """Contacts fire brigade, ambulance or police dispatch."""

    name = "emergency_services"
    supported_actions = ("contact_emergency_services",)

    async def execute(self, action_type: str, payload: Dict[str, Any]) -> ActionResult:
        if not payload.get("service"):
            raise ValueError("contact_emergency_services requires a 'service'")
        return await super().execute(action_type, payload)


class BuildingManagementExecutor(WebhookActionExecutor):
    """Drives building systems: evacuation alerts, sprinklers, doors, lighting, lockdown."""

    name = "building_management"
    supported_actions = ("activate_building_systems",)


class CameraControlExecutor(WebhookActionExecutor):
    """Camera-side actions on the source camera."""

    name = "camera_control"
    supported_actions = ("two_way_audio", "continuous_recording")

    async def execute(self, action_type: str, payload: Dict[str, Any]) -> ActionResult:
        if not payload.get("camera_id"):
            raise ValueError(f"{action_type} requires a 'camera_id'")
        return await super().execute(action_type, payload)


class MessagingActionExecutor(ActionExecutor):
    """
    Mass notification of organization users and stakeholder contact.

    Attributes:
        gateway: Messaging gateway used for stakeholder messages
        fanout: NotificationFanOut used for mass notification
    """

    name = "messaging"
    supported_actions = ("mass_notification", "contact_stakeholders")

    def __init__(self, gateway: MessagingGateway, fanout):
        self.gateway = gateway
        self.fanout = fanout

    async def _mass_notification(self, payload: Dict[str, Any]) -> ActionResult:
        summary = await self.fanout.fan_out_incident(
            organization_id=payload["organization_id"],
            incident_id=payload["incident_id"],
            title=payload["title"],
            body=payload["message"],
            severity=payload.get("priority", "critical"),
        )
        details = summary.to_dict()
        if summary.in_app_created < summary.recipients:
            return ActionResult(
                action_type="mass_notification",
                status=STATUS_FAILED,
                details=details,
                error=f"{summary.recipients - summary.in_app_created} in-app notification(s) not created",
            )
        return ActionResult(action_type="mass_notification", status=STATUS_SUCCESS, details=details)

    async def _contact_stakeholders(self, payload: Dict[str, Any]) -> ActionResult:
        contacts = list(payload.get("contacts") or [])
        # Stakeholder groups are addressed by name; the gateway maps groups to people
        result = await self.gateway.send_push(
            payload.get("title", "Emergency incident"),
            payload.get("message", ""),
            contacts,
            data={
                "incident_id": payload.get("incident_id"),
                "priority": payload.get("priority", "high"),
                "evidence": payload.get("evidence", []),
            },
        )
        details = {"contacts": contacts, "status_code": result.status_code}
        if not result.success:
            return ActionResult(
                action_type="contact_stakeholders",
                status=STATUS_FAILED,
                details=details,
                error=result.error,
            )
        status = STATUS_SIMULATED if isinstance(self.gateway, LoggingMessagingGateway) else STATUS_SUCCESS
        return ActionResult(action_type="contact_stakeholders", status=status, details=details)

    async def execute(self, action_type: str, payload: Dict[str, Any]) -> ActionResult:
        if action_type == "mass_notification":
            return await self._mass_notification(payload)
        if action_type == "contact_stakeholders":
            return await self._contact_stakeholders(payload)
        raise ValueError(f"{self.name} does not support action '{action_type}'")


def create_action_executors(
    gateway: MessagingGateway,
    fanout,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Dict[str, ActionExecutor]:
    """Build the executor set from settings, keyed by executor name."""
    executors = [
        EmergencyServicesExecutor(settings.EMERGENCY_SERVICES_WEBHOOK_URL, http_client),
        BuildingManagementExecutor(settings.BUILDING_MANAGEMENT_WEBHOOK_URL, http_client),
        CameraControlExecutor(settings.CAMERA_CONTROL_WEBHOOK_URL, http_client),
        MessagingActionExecutor(gateway, fanout),
    ]
    return {executor.name: executor for executor in executors}
