"""
Emergency Response Orchestrator

Opens an EmergencyIncident for a critical-category detection and runs the
response plan for its emergency type:

    fire      contact fire brigade -> building fire response -> evacuate (mass notify) -> stakeholders
    fall      contact ambulance -> two-way audio -> care stakeholders -> medical access
    security  police (confidence > 0.8, else skipped) -> lockdown -> security stakeholders -> recording
    intrusion police (confidence > 0.8, else skipped) -> perimeter security -> stakeholders -> recording
    medical   contact ambulance -> medical access -> medical stakeholders

Incident progress: created -> evidence_captured -> actions_executing -> actions_complete.
Closing (status=resolved) is an operator action.

Guarantees:
    - One incident per source detection event. Concurrent calls for the same
      event serialize on a per-event lock; the unique source_event_id
      constraint covers other processes.
    - Evidence capture, state writes and broadcasts are best effort; none of
      them stops the plan. A later call for an unfinished incident resumes it,
      running only the steps that have no log entry.
    - Every plan step appends exactly one EmergencyResponseLog entry, in
      order, whatever its outcome (success, simulated, failed, timeout, skipped).
    - Every action is bounded by EMERGENCY_ACTION_TIMEOUT_SECONDS; a timeout
      is logged like any other failure and the plan continues.
"""
import asyncio
import json
import logging
import time
import weakref
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.core.config import settings
from app.core.database import SessionFactory, get_db_session
from app.core.exceptions import AlreadyResolvedError, IncidentNotFound
from app.core.metrics import record_emergency_action, record_incident_opened
from app.models.camera import Camera
from app.models.detection_event import DetectionEvent
from app.models.emergency import EmergencyIncident, EmergencyResponseLog
from app.services.action_executors import ActionExecutor, ActionResult

logger = logging.getLogger(__name__)

# Detection category -> emergency type
CATEGORY_EMERGENCY_TYPES = {
    "fire": "fire",
    "fall": "fall",
    "theft": "security",
    "intrusion": "intrusion",
}

STATUS_TIMEOUT = "timeout"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"


@dataclass
class ResponseContext:
    """What a plan step can see when building its payload."""

    incident_id: str
    organization_id: str
    emergency_type: str
    camera_id: str
    camera_name: str
    location: str
    confidence: float
    evidence: List[Dict[str, Any]]

    @property
    def primary_evidence(self) -> Optional[str]:
        return self.evidence[0]["ref"] if self.evidence else None

    def stakeholder_message(self) -> str:
        return (
            f"{self.emergency_type.upper()} emergency at {self.camera_name} ({self.location}). "
            f"Confidence {round(self.confidence * 100)}%. Incident {self.incident_id}."
        )


@dataclass
class ResponseStep:
    """
    One step of a response plan.

    Attributes:
        action_type: Action passed to the executor (and logged)
        executor: Executor name
        build_payload: Builds the action payload from the context
        condition: Step runs only when this returns True; otherwise it is logged as skipped
        skip_reason: Logged when the condition is False
    """

    action_type: str
    executor: str
    build_payload: Callable[[ResponseContext], Dict[str, Any]]
    condition: Optional[Callable[[ResponseContext], bool]] = None
    skip_reason: str = ""


@dataclass
class ResponsePlan:
    emergency_type: str
    response_level: str
    steps: List[ResponseStep] = field(default_factory=list)


def _contact_service(service: str, incident_type: str, **extra) -> Callable[[ResponseContext], Dict[str, Any]]:
    def build(ctx: ResponseContext) -> Dict[str, Any]:
        return {
            "service": service,
            "type": incident_type,
            "incident_id": ctx.incident_id,
            "location": ctx.camera_name,
            "address": ctx.location,
            "confidence": ctx.confidence,
            "evidence": ctx.primary_evidence,
            **extra,
        }
    return build


def _building_systems(system: str, controls: List[str]) -> Callable[[ResponseContext], Dict[str, Any]]:
    def build(ctx: ResponseContext) -> Dict[str, Any]:
        return {
            "system": system,
            "incident_id": ctx.incident_id,
            "location": ctx.location,
            "controls": {control: True for control in controls},
        }
    return build


def _stakeholders(emergency: str, contacts: List[str], priority: str = "high") -> Callable[[ResponseContext], Dict[str, Any]]:
    def build(ctx: ResponseContext) -> Dict[str, Any]:
        return {
            "emergency": emergency,
            "incident_id": ctx.incident_id,
            "organization_id": ctx.organization_id,
            "contacts": list(contacts),
            "priority": priority,
            "title": f"{ctx.emergency_type.upper()} emergency: {ctx.camera_name}",
            "message": ctx.stakeholder_message(),
            "evidence": [item["ref"] for item in ctx.evidence],
        }
    return build


def _fire_evacuation(ctx: ResponseContext) -> Dict[str, Any]:
    return {
        "type": "fire_evacuation",
        "incident_id": ctx.incident_id,
        "organization_id": ctx.organization_id,
        "title": "FIRE DETECTED - EVACUATE IMMEDIATELY",
        "message": (
            f"Fire detected at {ctx.camera_name}. Please evacuate the building immediately "
            f"and proceed to the assembly point."
        ),
        "priority": "critical",
    }


def _two_way_audio(ctx: ResponseContext) -> Dict[str, Any]:
    return {
        "camera_id": ctx.camera_id,
        "incident_id": ctx.incident_id,
        "message": "Emergency services have been contacted. Help is on the way. Please stay calm.",
        "repeat": True,
        "duration": 300,
    }


def _continuous_recording(ctx: ResponseContext) -> Dict[str, Any]:
    return {
        "camera_id": ctx.camera_id,
        "incident_id": ctx.incident_id,
        "duration": settings.EMERGENCY_RECORDING_DURATION_SECONDS,
        "quality": "high",
        "backup": True,
    }


def _police_warranted(ctx: ResponseContext) -> bool:
    return ctx.confidence > settings.EMERGENCY_POLICE_CONFIDENCE_THRESHOLD


def _police_step(incident_type: str) -> ResponseStep:
    return ResponseStep(
        action_type="contact_emergency_services",
        executor="emergency_services",
        build_payload=_contact_service("police", incident_type),
        condition=_police_warranted,
        skip_reason="confidence at or below police escalation threshold",
    )


RESPONSE_PLANS: Dict[str, ResponsePlan] = {
    "fire": ResponsePlan("fire", "critical", [
        ResponseStep("contact_emergency_services", "emergency_services", _contact_service("fire_brigade", "fire")),
        ResponseStep("activate_building_systems", "building_management", _building_systems(
            "fire_response", ["evacuation_alert", "sprinkler_system", "fire_doors", "emergency_lighting"]
        )),
        ResponseStep("mass_notification", "messaging", _fire_evacuation),
        ResponseStep("contact_stakeholders", "messaging", _stakeholders(
            "fire_emergency", ["building_manager", "security_team", "facilities_manager"], priority="critical"
        )),
    ]),
    "fall": ResponsePlan("fall", "high", [
        ResponseStep("contact_emergency_services", "emergency_services", _contact_service(
            "ambulance", "fall", urgency="high"
        )),
        ResponseStep("two_way_audio", "camera_control", _two_way_audio),
        ResponseStep("contact_stakeholders", "messaging", _stakeholders(
            "fall_emergency", ["care_team", "family_contact", "medical_team"]
        )),
        ResponseStep("activate_building_systems", "building_management", _building_systems(
            "medical_access", ["door_unlock", "emergency_lighting", "elevator_priority"]
        )),
    ]),
    "security": ResponsePlan("security", "high", [
        _police_step("security_threat"),
        ResponseStep("activate_building_systems", "building_management", _building_systems(
            "security_lockdown", ["lockdown", "alarm_system", "security_lighting"]
        )),
        ResponseStep("contact_stakeholders", "messaging", _stakeholders(
            "security_emergency", ["security_team", "management", "site_supervisor"], priority="immediate"
        )),
        ResponseStep("continuous_recording", "camera_control", _continuous_recording),
    ]),
    "intrusion": ResponsePlan("intrusion", "high", [
        _police_step("intrusion"),
        ResponseStep("activate_building_systems", "building_management", _building_systems(
            "perimeter_security", ["perimeter_alert", "lighting_activation", "alarm_system", "camera_tracking"]
        )),
        ResponseStep("contact_stakeholders", "messaging", _stakeholders(
            "intrusion_emergency", ["security_team", "site_manager"], priority="immediate"
        )),
        ResponseStep("continuous_recording", "camera_control", _continuous_recording),
    ]),
    "medical": ResponsePlan("medical", "critical", [
        ResponseStep("contact_emergency_services", "emergency_services", _contact_service(
            "ambulance", "medical", urgency="critical"
        )),
        ResponseStep("activate_building_systems", "building_management", _building_systems(
            "medical_access", ["door_unlock", "emergency_lighting", "elevator_priority"]
        )),
        ResponseStep("contact_stakeholders", "messaging", _stakeholders(
            "medical_emergency", ["medical_team", "emergency_contact"], priority="critical"
        )),
    ]),
}


def emergency_type_for(category: str) -> Optional[str]:
    """Emergency type opened for a detection category, or None if the category is not critical."""
    return CATEGORY_EMERGENCY_TYPES.get(category)


# Evidence collaborator: (event snapshot, context window seconds) -> context evidence items. May raise.
ContextCapture = Callable[[Dict[str, Any], int], Awaitable[List[Dict[str, Any]]]]


async def capture_context_snapshots(event: Dict[str, Any], window_seconds: int) -> List[Dict[str, Any]]:
    """
    Default context capture: before/after snapshot references from the same camera.

    Stream access is external, so these are references the recording store resolves.
    """
    image_ref = event.get("image_ref")
    if not image_ref:
        return []
    detected_at: datetime = event["detected_at"]
    return [
        {
            "kind": "context_before",
            "ref": f"{image_ref}?context=before",
            "captured_at": (detected_at - timedelta(seconds=window_seconds)).isoformat(),
        },
        {
            "kind": "context_after",
            "ref": f"{image_ref}?context=after",
            "captured_at": (detected_at + timedelta(seconds=window_seconds)).isoformat(),
        },
    ]


class EmergencyOrchestrator:
    """
    Runs response plans for critical detections.

    Attributes:
        session_factory: Factory for database sessions
        executors: Executor name -> ActionExecutor
        broadcaster: Optional realtime broadcaster for incident updates
        context_capture: Context snapshot collaborator
        action_timeout: Per-action time bound in seconds
    """

    def __init__(
        self,
        executors: Dict[str, ActionExecutor],
        session_factory: Optional[SessionFactory] = None,
        broadcaster=None,
        context_capture: Optional[ContextCapture] = None,
        action_timeout: Optional[float] = None,
        plans: Optional[Dict[str, ResponsePlan]] = None,
    ):
        self.executors = executors
        self.session_factory = session_factory
        self.broadcaster = broadcaster
        self.context_capture = context_capture or capture_context_snapshots
        self.action_timeout = action_timeout or settings.EMERGENCY_ACTION_TIMEOUT_SECONDS
        self.plans = plans or RESPONSE_PLANS
        self._event_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, source_event_id: str) -> asyncio.Lock:
        lock = self._event_locks.get(source_event_id)
        if lock is None:
            lock = asyncio.Lock()
            self._event_locks[source_event_id] = lock
        return lock

    def _load_incident(self, db, incident_id: str) -> EmergencyIncident:
        incident = db.query(EmergencyIncident).options(
            selectinload(EmergencyIncident.logs)
        ).filter(EmergencyIncident.id == incident_id).first()
        if incident is None:
            raise IncidentNotFound(f"Incident {incident_id} not found")
        return incident

    def _find_by_event(self, source_event_id: str) -> Optional[EmergencyIncident]:
        with get_db_session(self.session_factory) as db:
            incident = db.query(EmergencyIncident).options(
                selectinload(EmergencyIncident.logs)
            ).filter(EmergencyIncident.source_event_id == source_event_id).first()
            return incident

    def _event_snapshot(self, event_id: str) -> Dict[str, Any]:
        with get_db_session(self.session_factory) as db:
            event = db.query(DetectionEvent).filter(DetectionEvent.id == event_id).first()
            if event is None:
                raise ValueError(f"Detection event {event_id} not found")
            camera = db.query(Camera).filter(Camera.id == event.camera_id).first()
            metadata = event.metadata_dict
            detected_at = event.detected_at
            if detected_at is not None and detected_at.tzinfo is None:
                detected_at = detected_at.replace(tzinfo=timezone.utc)
            return {
                "id": event.id,
                "organization_id": event.organization_id,
                "camera_id": event.camera_id,
                "camera_name": event.camera_name or (camera.name if camera else event.camera_id),
                "location": metadata.get("location") or (camera.location if camera and camera.location else "Unknown"),
                "confidence": event.confidence,
                "image_ref": event.image_ref,
                "detected_at": detected_at or datetime.now(timezone.utc),
            }

    def _create_incident(self, event: Dict[str, Any], plan: ResponsePlan) -> Tuple[EmergencyIncident, bool]:
        """Insert the incident, or return the one another writer created first."""
        with get_db_session(self.session_factory) as db:
            incident = EmergencyIncident(
                organization_id=event["organization_id"],
                source_event_id=event["id"],
                emergency_type=plan.emergency_type,
                response_level=plan.response_level,
                camera_id=event["camera_id"],
                camera_name=event["camera_name"],
                location=event["location"],
                confidence=event["confidence"],
                response_state="created",
                status="active",
                detected_at=event["detected_at"],
            )
            db.add(incident)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                existing = db.query(EmergencyIncident).options(
                    selectinload(EmergencyIncident.logs)
                ).filter(EmergencyIncident.source_event_id == event["id"]).first()
                if existing is None:
                    raise
                return existing, False
            db.refresh(incident)
            return incident, True

    def _set_state(self, incident_id: str, state: str, evidence: Optional[List[Dict[str, Any]]] = None) -> None:
        with get_db_session(self.session_factory) as db:
            values: Dict[str, Any] = {"response_state": state}
            if evidence is not None:
                values["evidence"] = json.dumps(evidence)
            db.query(EmergencyIncident).filter(EmergencyIncident.id == incident_id).update(values)
            db.commit()

    def _append_log(
        self,
        incident_id: str,
        sequence: int,
        action_type: str,
        status: str,
        payload: Dict[str, Any],
        result: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
        duration_ms: Optional[int] = None,
    ) -> None:
        with get_db_session(self.session_factory) as db:
            db.add(EmergencyResponseLog(
                incident_id=incident_id,
                sequence=sequence,
                action_type=action_type,
                status=status,
                payload=json.dumps(payload, default=str),
                result=json.dumps(result, default=str) if result is not None else None,
                error_message=error,
                duration_ms=duration_ms,
            ))
            db.commit()

    async def _capture_evidence(self, event: Dict[str, Any], incident_id: str) -> List[Dict[str, Any]]:
        evidence: List[Dict[str, Any]] = []
        if event.get("image_ref"):
            evidence.append({
                "kind": "detection_snapshot",
                "ref": event["image_ref"],
                "captured_at": event["detected_at"].isoformat(),
            })

        try:
            context = await asyncio.wait_for(
                self.context_capture(event, settings.EMERGENCY_CONTEXT_WINDOW_SECONDS),
                timeout=self.action_timeout,
            )
            evidence.extend(context or [])
        except asyncio.TimeoutError:
            logger.warning(
                f"Context evidence capture timed out for incident {incident_id}",
                extra={"incident_id": incident_id, "camera_id": event["camera_id"]}
            )
        except Exception as e:
            logger.warning(
                f"Context evidence capture failed for incident {incident_id}: {e}",
                extra={"incident_id": incident_id, "camera_id": event["camera_id"], "error_type": type(e).__name__}
            )

        return evidence

    async def _run_step(self, step: ResponseStep, ctx: ResponseContext, sequence: int) -> str:
        """Execute one step and append its log entry. Never raises."""
        start_time = time.time()
        payload: Dict[str, Any] = {}
        status = STATUS_FAILED
        error: Optional[str] = None

        try:
            payload = step.build_payload(ctx)
            if step.condition is not None and not step.condition(ctx):
                status = STATUS_SKIPPED
                result_details = {"reason": step.skip_reason}
            else:
                executor = self.executors.get(step.executor)
                if executor is None:
                    raise LookupError(f"No executor registered for '{step.executor}'")
                action_result: ActionResult = await asyncio.wait_for(
                    executor.execute(step.action_type, payload),
                    timeout=self.action_timeout,
                )
                status = action_result.status
                error = action_result.error
                result_details = action_result.to_dict()
        except asyncio.TimeoutError:
            status = STATUS_TIMEOUT
            error = f"Action timed out after {self.action_timeout}s"
            result_details = None
        except Exception as e:
            status = STATUS_FAILED
            error = f"{type(e).__name__}: {e}"
            result_details = None

        duration_ms = int((time.time() - start_time) * 1000)
        record_emergency_action(ctx.emergency_type, step.action_type, status)

        log_extra = {
            "event_type": "emergency_action",
            "incident_id": ctx.incident_id,
            "emergency_type": ctx.emergency_type,
            "action_type": step.action_type,
            "sequence": sequence,
            "status": status,
            "duration_ms": duration_ms,
        }
        if status in (STATUS_FAILED, STATUS_TIMEOUT):
            logger.error(f"Emergency action {step.action_type} {status}: {error}", extra=log_extra)
        else:
            logger.info(f"Emergency action {step.action_type} {status}", extra=log_extra)

        try:
            self._append_log(
                ctx.incident_id, sequence, step.action_type, status,
                payload, result_details, error, duration_ms,
            )
        except Exception as e:
            logger.error(
                f"Failed to append response log for {step.action_type}: {e}",
                extra=log_extra,
                exc_info=True
            )
        return status

    def _mark_state(self, incident_id: str, state: str, evidence: Optional[List[Dict[str, Any]]] = None) -> bool:
        """Record incident progress. Logs instead of raising so the plan still runs."""
        try:
            self._set_state(incident_id, state, evidence)
            return True
        except Exception as e:
            logger.error(
                f"Failed to mark incident {incident_id} as {state}: {e}",
                extra={"incident_id": incident_id, "response_state": state, "error_type": type(e).__name__},
                exc_info=True
            )
            return False

    async def _publish(self, incident: EmergencyIncident) -> None:
        if self.broadcaster is None:
            return
        try:
            await self.broadcaster.publish(incident.organization_id, "incident", incident.to_dict())
        except Exception as e:
            logger.error(
                f"Failed to publish incident {incident.id}: {e}",
                extra={"incident_id": incident.id, "error_type": type(e).__name__}
            )

    async def handle(self, event_id: str, emergency_type: str) -> EmergencyIncident:
        """
        Open (or return) the incident for a detection event and run its response plan.

        An incident whose plan did not finish (a crash or failed write after the
        incident was stored) is resumed: only the steps with no log entry run.

        Args:
            event_id: Source DetectionEvent id
            emergency_type: fire, fall, medical, security or intrusion

        Returns:
            The incident with its ordered response log loaded

        Raises:
            ValueError: Unknown emergency type or event
        """
        plan = self.plans.get(emergency_type)
        if plan is None:
            raise ValueError(f"No response plan for emergency type '{emergency_type}'")

        async with self._lock_for(event_id):
            existing = self._find_by_event(event_id)
            if existing is not None:
                if existing.response_state == "actions_complete":
                    logger.info(
                        f"Incident already exists for event {event_id}, not reopening",
                        extra={"incident_id": existing.id, "source_event_id": event_id}
                    )
                    return existing
                logger.warning(
                    f"Resuming response plan for incident {existing.id} "
                    f"(state {existing.response_state}, {len(existing.logs)} actions logged)",
                    extra={
                        "event_type": "incident_resumed",
                        "incident_id": existing.id,
                        "source_event_id": event_id,
                        "response_state": existing.response_state,
                    }
                )
                event = self._event_snapshot(event_id)
                logged = {log.sequence for log in existing.logs}
                return await self._run_plan(existing, event, self.plans.get(existing.emergency_type, plan), logged)

            event = self._event_snapshot(event_id)
            incident, created = self._create_incident(event, plan)
            if not created:
                return incident

            record_incident_opened(plan.emergency_type)
            logger.warning(
                f"EMERGENCY: {plan.emergency_type.upper()} incident opened at {event['camera_name']} "
                f"({round(event['confidence'] * 100)}% confidence)",
                extra={
                    "event_type": "incident_opened",
                    "incident_id": incident.id,
                    "source_event_id": event_id,
                    "organization_id": event["organization_id"],
                    "emergency_type": plan.emergency_type,
                    "response_level": plan.response_level,
                }
            )
            await self._publish(incident)
            return await self._run_plan(incident, event, plan, logged=set())

    async def _run_plan(
        self,
        incident: EmergencyIncident,
        event: Dict[str, Any],
        plan: ResponsePlan,
        logged: Set[int],
    ) -> EmergencyIncident:
        """Capture evidence if still missing, then run every step whose sequence is not in `logged`."""
        if incident.response_state == "created":
            evidence = await self._capture_evidence(event, incident.id)
            self._mark_state(incident.id, "evidence_captured", evidence)
        else:
            evidence = incident.evidence_list

        self._mark_state(incident.id, "actions_executing")
        ctx = ResponseContext(
            incident_id=incident.id,
            organization_id=event["organization_id"],
            emergency_type=plan.emergency_type,
            camera_id=event["camera_id"],
            camera_name=event["camera_name"],
            location=event["location"],
            confidence=event["confidence"],
            evidence=evidence,
        )
        statuses = []
        for sequence, step in enumerate(plan.steps, start=1):
            if sequence in logged:
                continue
            # A step that has started always finishes and logs, even on shutdown
            step_task = asyncio.ensure_future(self._run_step(step, ctx, sequence))
            try:
                statuses.append(await asyncio.shield(step_task))
            except asyncio.CancelledError:
                await step_task
                logger.warning(
                    f"Response plan for incident {incident.id} interrupted after step {sequence}/{len(plan.steps)}",
                    extra={"incident_id": incident.id, "emergency_type": plan.emergency_type}
                )
                raise

        self._mark_state(incident.id, "actions_complete")
        failed = sum(1 for status in statuses if status in (STATUS_FAILED, STATUS_TIMEOUT))
        logger.info(
            f"Response plan complete for incident {incident.id}: {len(statuses) - failed}/{len(statuses)} actions ok",
            extra={
                "event_type": "incident_actions_complete",
                "incident_id": incident.id,
                "emergency_type": plan.emergency_type,
                "actions": len(statuses),
                "failed_actions": failed,
                "previously_logged": len(logged),
            }
        )

        with get_db_session(self.session_factory) as db:
            incident = self._load_incident(db, incident.id)
        await self._publish(incident)
        return incident


def resolve_incident(
    db: Session,
    organization_id: str,
    incident_id: str,
    resolved_by: str,
    notes: Optional[str] = None,
) -> EmergencyIncident:
    """
    Close an incident (operator action).

    Raises:
        IncidentNotFound: Unknown incident for this organization
        AlreadyResolvedError: Incident was already closed
    """
    incident = db.query(EmergencyIncident).filter(
        EmergencyIncident.id == incident_id,
        EmergencyIncident.organization_id == organization_id,
    ).first()
    if incident is None:
        raise IncidentNotFound(f"Incident {incident_id} not found")
    if incident.status == "resolved":
        raise AlreadyResolvedError(f"Incident {incident_id} is already resolved")

    incident.status = "resolved"
    incident.resolved_by = resolved_by
    incident.resolved_at = datetime.now(timezone.utc)
    incident.resolution_notes = notes
    db.commit()
    db.refresh(incident)

    logger.info(
        f"Incident {incident_id} resolved by {resolved_by}",
        extra={"event_type": "incident_resolved", "incident_id": incident_id, "resolved_by": resolved_by}
    )
    return incident
