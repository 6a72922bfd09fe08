"""
Unit tests for the emergency response orchestrator
"""
import asyncio
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from app.core.exceptions import AlreadyResolvedError, IncidentNotFound
from app.models.emergency import EmergencyIncident, EmergencyResponseLog
from app.services.action_executors import ActionExecutor, ActionResult, create_action_executors
from app.services.emergency_orchestrator import (
    EmergencyOrchestrator,
    RESPONSE_PLANS,
    emergency_type_for,
    resolve_incident,
)
from app.services.notification_fanout import NotificationFanOut
from tests.conftest import ORG_ID, make_camera, make_detection_event, make_user


class SlowExecutor(ActionExecutor):
    """Executor that never answers in time"""

    name = "building_management"
    supported_actions = ("activate_building_systems",)

    async def execute(self, action_type, payload):
        await asyncio.sleep(5)
        return ActionResult(action_type=action_type, status="success")


class BrokenExecutor(ActionExecutor):
    name = "emergency_services"
    supported_actions = ("contact_emergency_services",)

    async def execute(self, action_type, payload):
        raise ConnectionError("dispatch line down")


@pytest.fixture
def executors(session_factory, gateway):
    fanout = NotificationFanOut(gateway, session_factory=session_factory)
    return create_action_executors(gateway, fanout)


@pytest.fixture
def orchestrator(session_factory, executors):
    return EmergencyOrchestrator(executors, session_factory=session_factory, action_timeout=1.0)


def _fire_event(db_session, confidence=0.75, **overrides):
    overrides.setdefault("image_ref", "snapshots/cam-001/frame.jpg")
    return make_detection_event(db_session, category="fire", confidence=confidence, severity="critical", **overrides)


def _logs(session_factory, incident_id):
    db = session_factory()
    try:
        return db.query(EmergencyResponseLog).filter_by(incident_id=incident_id).order_by(
            EmergencyResponseLog.sequence
        ).all()
    finally:
        db.close()


class TestCategoryMapping:
    @pytest.mark.parametrize("category,emergency_type", [
        ("fire", "fire"), ("fall", "fall"), ("theft", "security"), ("intrusion", "intrusion"),
    ])
    def test_critical_categories(self, category, emergency_type):
        assert emergency_type_for(category) == emergency_type

    @pytest.mark.parametrize("category", ["person", "face", "vehicle", "motion"])
    def test_non_critical_categories(self, category):
        assert emergency_type_for(category) is None

    def test_plans_exist_for_all_types(self):
        assert set(RESPONSE_PLANS) == {"fire", "fall", "medical", "security", "intrusion"}


class TestFireResponse:
    """Fire plan end to end against simulated integrations"""

    @pytest.mark.asyncio
    async def test_fire_plan_runs_four_actions_in_order(self, orchestrator, db_session, session_factory):
        event = _fire_event(db_session)

        incident = await orchestrator.handle(event.id, "fire")

        assert incident.emergency_type == "fire"
        assert incident.response_level == "critical"
        assert incident.response_state == "actions_complete"
        assert incident.status == "active"
        assert [log.action_type for log in incident.logs] == [
            "contact_emergency_services",
            "activate_building_systems",
            "mass_notification",
            "contact_stakeholders",
        ]
        assert [log.sequence for log in incident.logs] == [1, 2, 3, 4]
        assert all(log.status in ("success", "simulated") for log in incident.logs)

    @pytest.mark.asyncio
    async def test_fire_brigade_payload(self, orchestrator, db_session, session_factory):
        camera = make_camera(db_session, name="Warehouse", location="Building B")
        event = _fire_event(db_session, camera_id=camera.id, camera_name="Warehouse")

        incident = await orchestrator.handle(event.id, "fire")

        payload = incident.logs[0].to_dict()["payload"]
        assert payload["service"] == "fire_brigade"
        assert payload["location"] == "Warehouse"
        assert payload["address"] == "Building B"
        assert payload["evidence"] == "snapshots/cam-001/frame.jpg"

    @pytest.mark.asyncio
    async def test_evidence_captured(self, orchestrator, db_session):
        event = _fire_event(db_session)

        incident = await orchestrator.handle(event.id, "fire")

        kinds = [item["kind"] for item in incident.evidence_list]
        assert kinds == ["detection_snapshot", "context_before", "context_after"]

    @pytest.mark.asyncio
    async def test_mass_notification_reaches_users(self, orchestrator, db_session, session_factory):
        make_user(db_session)
        make_user(db_session)
        event = _fire_event(db_session)

        incident = await orchestrator.handle(event.id, "fire")

        result = incident.logs[2].to_dict()["result"]
        assert result["details"]["in_app_created"] == 2


class TestPoliceEscalation:
    """Police are only contacted above the confidence threshold"""

    @pytest.mark.asyncio
    async def test_low_confidence_police_step_skipped(self, orchestrator, db_session):
        event = make_detection_event(db_session, category="theft", confidence=0.78)

        incident = await orchestrator.handle(event.id, "security")

        assert len(incident.logs) == 4
        assert incident.logs[0].action_type == "contact_emergency_services"
        assert incident.logs[0].status == "skipped"
        assert incident.logs[1].status in ("success", "simulated")

    @pytest.mark.asyncio
    async def test_high_confidence_police_contacted(self, orchestrator, db_session):
        event = make_detection_event(db_session, category="intrusion", confidence=0.92)

        incident = await orchestrator.handle(event.id, "intrusion")

        assert incident.logs[0].status == "simulated"
        assert incident.logs[0].to_dict()["payload"]["service"] == "police"

    @pytest.mark.asyncio
    async def test_threshold_is_exclusive(self, orchestrator, db_session):
        event = make_detection_event(db_session, category="theft", confidence=0.8)

        incident = await orchestrator.handle(event.id, "security")

        assert incident.logs[0].status == "skipped"


class TestFailures:
    """Failed and slow actions are logged and the plan continues"""

    @pytest.mark.asyncio
    async def test_timeout_logged_and_plan_continues(self, session_factory, executors, db_session):
        executors["building_management"] = SlowExecutor()
        orchestrator = EmergencyOrchestrator(executors, session_factory=session_factory, action_timeout=0.1)
        event = _fire_event(db_session)

        incident = await orchestrator.handle(event.id, "fire")

        statuses = [log.status for log in incident.logs]
        assert statuses[1] == "timeout"
        assert len(statuses) == 4
        assert incident.response_state == "actions_complete"

    @pytest.mark.asyncio
    async def test_executor_error_logged_as_failed(self, session_factory, executors, db_session):
        executors["emergency_services"] = BrokenExecutor()
        orchestrator = EmergencyOrchestrator(executors, session_factory=session_factory, action_timeout=1.0)
        event = _fire_event(db_session)

        incident = await orchestrator.handle(event.id, "fire")

        assert incident.logs[0].status == "failed"
        assert "dispatch line down" in incident.logs[0].error_message
        assert len(incident.logs) == 4

    @pytest.mark.asyncio
    async def test_missing_executor_logged_as_failed(self, session_factory, executors, db_session):
        del executors["camera_control"]
        orchestrator = EmergencyOrchestrator(executors, session_factory=session_factory)
        event = make_detection_event(db_session, category="fall", confidence=0.95)

        incident = await orchestrator.handle(event.id, "fall")

        assert incident.logs[1].action_type == "two_way_audio"
        assert incident.logs[1].status == "failed"

    @pytest.mark.asyncio
    async def test_evidence_failure_does_not_block_incident(self, session_factory, executors, db_session):
        capture = AsyncMock(side_effect=RuntimeError("stream unavailable"))
        orchestrator = EmergencyOrchestrator(executors, session_factory=session_factory, context_capture=capture)
        event = _fire_event(db_session)

        incident = await orchestrator.handle(event.id, "fire")

        assert [item["kind"] for item in incident.evidence_list] == ["detection_snapshot"]
        assert len(incident.logs) == 4

    @pytest.mark.asyncio
    async def test_unknown_emergency_type(self, orchestrator, db_session):
        event = _fire_event(db_session)

        with pytest.raises(ValueError):
            await orchestrator.handle(event.id, "flood")

    @pytest.mark.asyncio
    async def test_unknown_event(self, orchestrator):
        with pytest.raises(ValueError):
            await orchestrator.handle("missing-event", "fire")


class TestResponsePlans:
    """Every plan logs one entry per step, in plan order"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("emergency_type", sorted(RESPONSE_PLANS))
    async def test_plan_logs_every_step_in_order(self, orchestrator, db_session, emergency_type):
        plan = RESPONSE_PLANS[emergency_type]
        event = make_detection_event(db_session, category="fall", confidence=0.95, severity="critical")

        incident = await orchestrator.handle(event.id, emergency_type)

        assert incident.emergency_type == emergency_type
        assert incident.response_level == plan.response_level
        assert incident.response_state == "actions_complete"
        assert len(incident.logs) == len(plan.steps)
        assert [log.action_type for log in incident.logs] == [step.action_type for step in plan.steps]
        assert [log.sequence for log in incident.logs] == list(range(1, len(plan.steps) + 1))

    @pytest.mark.asyncio
    async def test_medical_plan(self, orchestrator, db_session):
        event = make_detection_event(db_session, category="fall", confidence=0.9, severity="critical")

        incident = await orchestrator.handle(event.id, "medical")

        logs = [log.to_dict() for log in incident.logs]
        assert [log["action_type"] for log in logs] == [
            "contact_emergency_services",
            "activate_building_systems",
            "contact_stakeholders",
        ]
        assert logs[0]["payload"]["service"] == "ambulance"
        assert logs[0]["payload"]["urgency"] == "critical"
        assert logs[1]["payload"]["system"] == "medical_access"


class TestRecovery:
    """Bookkeeping failures never leave an incident without its response"""

    @pytest.mark.asyncio
    async def test_state_write_failure_does_not_stop_plan(self, orchestrator, db_session):
        original = orchestrator._set_state
        calls = []

        def flaky_set_state(incident_id, state, evidence=None):
            calls.append(state)
            if len(calls) == 1:
                raise OperationalError("UPDATE", {}, Exception("transient db error"))
            return original(incident_id, state, evidence)

        orchestrator._set_state = flaky_set_state
        event = _fire_event(db_session, confidence=0.9)

        incident = await orchestrator.handle(event.id, "fire")

        assert calls[0] == "evidence_captured"
        assert len(incident.logs) == 4
        assert incident.response_state == "actions_complete"

    @pytest.mark.asyncio
    async def test_publish_failure_does_not_stop_plan(self, session_factory, executors, db_session):
        broadcaster = AsyncMock()
        broadcaster.publish.side_effect = RuntimeError("subscriber registry unavailable")
        orchestrator = EmergencyOrchestrator(executors, session_factory=session_factory, broadcaster=broadcaster)
        event = _fire_event(db_session)

        incident = await orchestrator.handle(event.id, "fire")

        assert len(incident.logs) == 4
        assert incident.response_state == "actions_complete"

    @pytest.mark.asyncio
    async def test_created_incident_is_resumed(self, orchestrator, db_session, session_factory):
        event = _fire_event(db_session)
        stuck = EmergencyIncident(
            organization_id=ORG_ID, source_event_id=event.id, emergency_type="fire",
            response_level="critical", camera_id=event.camera_id, confidence=event.confidence,
            response_state="created",
        )
        db_session.add(stuck)
        db_session.commit()

        incident = await orchestrator.handle(event.id, "fire")

        assert incident.id == stuck.id
        assert incident.response_state == "actions_complete"
        assert [log.sequence for log in incident.logs] == [1, 2, 3, 4]
        assert incident.evidence_list[0]["kind"] == "detection_snapshot"

    @pytest.mark.asyncio
    async def test_resume_runs_only_missing_steps(self, orchestrator, db_session, session_factory):
        event = _fire_event(db_session)
        stuck = EmergencyIncident(
            organization_id=ORG_ID, source_event_id=event.id, emergency_type="fire",
            response_level="critical", camera_id=event.camera_id, confidence=event.confidence,
            response_state="actions_executing",
        )
        db_session.add(stuck)
        db_session.commit()
        db_session.add(EmergencyResponseLog(
            incident_id=stuck.id, sequence=1, action_type="contact_emergency_services",
            status="success", payload="{}",
        ))
        db_session.commit()

        incident = await orchestrator.handle(event.id, "fire")

        logs = _logs(session_factory, stuck.id)
        assert [log.sequence for log in logs] == [1, 2, 3, 4]
        assert logs[0].status == "success"
        assert logs[0].payload == "{}"
        assert incident.response_state == "actions_complete"
        db = session_factory()
        try:
            assert db.query(EmergencyIncident).filter_by(source_event_id=event.id).count() == 1
        finally:
            db.close()

    @pytest.mark.asyncio
    async def test_completed_incident_not_rerun(self, orchestrator, db_session, session_factory):
        event = _fire_event(db_session)
        first = await orchestrator.handle(event.id, "fire")
        first_ids = [log.id for log in _logs(session_factory, first.id)]

        again = await orchestrator.handle(event.id, "fire")

        assert again.id == first.id
        assert [log.id for log in _logs(session_factory, first.id)] == first_ids


class TestIdempotency:
    """One incident per source event"""

    @pytest.mark.asyncio
    async def test_second_call_returns_existing(self, orchestrator, db_session, session_factory):
        event = _fire_event(db_session)

        first = await orchestrator.handle(event.id, "fire")
        second = await orchestrator.handle(event.id, "fire")

        assert second.id == first.id
        assert len(_logs(session_factory, first.id)) == 4

    @pytest.mark.asyncio
    async def test_concurrent_calls_open_one_incident(self, orchestrator, db_session, session_factory):
        event = _fire_event(db_session)

        incidents = await asyncio.gather(*(orchestrator.handle(event.id, "fire") for _ in range(3)))

        assert len({incident.id for incident in incidents}) == 1
        db = session_factory()
        try:
            assert db.query(EmergencyIncident).filter_by(source_event_id=event.id).count() == 1
        finally:
            db.close()
        assert len(_logs(session_factory, incidents[0].id)) == 4


class TestBroadcast:
    @pytest.mark.asyncio
    async def test_incident_published_on_open_and_completion(self, session_factory, executors, db_session):
        broadcaster = AsyncMock()
        orchestrator = EmergencyOrchestrator(executors, session_factory=session_factory, broadcaster=broadcaster)
        event = _fire_event(db_session)

        await orchestrator.handle(event.id, "fire")

        calls = [c.args for c in broadcaster.publish.await_args_list]
        assert [c[1] for c in calls] == ["incident", "incident"]
        assert calls[0][2]["response_state"] == "created"
        assert calls[1][2]["response_state"] == "actions_complete"


class TestResolveIncident:
    @pytest.mark.asyncio
    async def test_resolve(self, orchestrator, db_session, session_factory):
        incident = await orchestrator.handle(_fire_event(db_session).id, "fire")
        db = session_factory()
        try:
            resolved = resolve_incident(db, ORG_ID, incident.id, "operator-1", notes="False alarm, steam")

            assert resolved.status == "resolved"
            assert resolved.resolved_by == "operator-1"
            assert resolved.resolved_at is not None
            assert resolved.response_state == "actions_complete"

            with pytest.raises(AlreadyResolvedError):
                resolve_incident(db, ORG_ID, incident.id, "operator-2")
        finally:
            db.close()

    def test_resolve_other_organization(self, db_session):
        with pytest.raises(IncidentNotFound):
            resolve_incident(db_session, "org-other", "missing", "operator-1")
