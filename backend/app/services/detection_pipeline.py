"""
Detection Pipeline

Runs one detection through the stages in order:

    gate -> dedup -> record -> broadcast -> fan-out -> orchestrate

Each stage is a separate collaborator and can be tested alone; this module
only sequences them and turns their outcomes into a PipelineResult.

Failure handling:
    - Rejections (unknown/disabled type, low confidence, duplicate) come back
      as PipelineResult.rejection.
    - DetectionPersistenceError propagates to the caller, who resubmits.
      The dedup window is only recorded after the event is persisted, so a
      resubmission is not suppressed.
    - Fan-out and orchestration failures are logged and listed in
      PipelineResult.errors; the event and alert stay valid.

Concurrency:
    Detections run as independent tasks. The dedup check, the write and the
    window update for one (organization, camera, category) run under that
    key's lock, so two concurrent duplicates cannot both be accepted.
    submit() shields processing from caller cancellation, and drain() lets
    in-flight detections finish on shutdown.

Usage:
    pipeline = get_detection_pipeline()
    result = await pipeline.submit(raw_detection)
"""
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

import httpx

from app.core.database import SessionFactory, get_db_session
from app.core.exceptions import DetectionPersistenceError, Rejection, RejectionReason
from app.core.logging_config import clear_trace_id, set_trace_id
from app.core.metrics import (
    pipeline_in_flight,
    record_alert_created,
    record_detection,
    record_stage_duration,
)
from app.models.alert import Alert
from app.models.detection_event import DetectionEvent
from app.models.emergency import EmergencyIncident
from app.services.alert_recorder import EventRecorder
from app.services.deduplicator import Deduplicator
from app.services.detection_registry import DetectionConfigService
from app.services.action_executors import create_action_executors
from app.services.emergency_orchestrator import EmergencyOrchestrator, emergency_type_for
from app.services.intake_gate import AcceptedDetection, IntakeGate, RawDetection
from app.services.messaging_gateway import MessagingGateway, create_messaging_gateway
from app.services.notification_fanout import FanOutSummary, NotificationFanOut

logger = logging.getLogger(__name__)


class PipelineShuttingDown(RuntimeError):
    """Raised by submit() once shutdown has started."""
    pass


@dataclass
class PipelineResult:
    """
    Outcome of one detection.

    Attributes:
        trace_id: Correlates every log line for this detection
        rejection: Set when the detection was not accepted
        event: Persisted detection event
        alert: Alert raised by the event, if any
        fanout: Fan-out summary, if the alert was fanned out
        incident: Emergency incident, if one was opened
        errors: Downstream failures (fan-out, orchestration)
        duration_ms: End-to-end processing time
    """

    trace_id: str
    rejection: Optional[Rejection] = None
    event: Optional[DetectionEvent] = None
    alert: Optional[Alert] = None
    fanout: Optional[FanOutSummary] = None
    incident: Optional[EmergencyIncident] = None
    errors: List[str] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def accepted(self) -> bool:
        return self.rejection is None and self.event is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trace_id": self.trace_id,
            "accepted": self.accepted,
            "rejection": self.rejection.to_dict() if self.rejection else None,
            "event": self.event.to_dict() if self.event else None,
            "alert": self.alert.to_dict() if self.alert else None,
            "fanout": self.fanout.to_dict() if self.fanout else None,
            "incident": self.incident.to_dict(include_logs=True) if self.incident else None,
            "errors": list(self.errors),
            "duration_ms": round(self.duration_ms, 2),
        }


class DetectionPipeline:
    """
    Sequences the detection stages.

    Attributes:
        gate: Intake gate
        deduplicator: Dedup window
        recorder: Event & alert recorder
        fanout: Notification fan-out
        orchestrator: Emergency orchestrator
        broadcaster: Realtime broadcaster (optional)
        session_factory: Factory for the per-detection session
    """

    def __init__(
        self,
        config_service: DetectionConfigService,
        fanout: NotificationFanOut,
        orchestrator: EmergencyOrchestrator,
        deduplicator: Optional[Deduplicator] = None,
        recorder: Optional[EventRecorder] = None,
        broadcaster=None,
        session_factory: Optional[SessionFactory] = None,
    ):
        self.config_service = config_service
        self.gate = IntakeGate(config_service)
        self.deduplicator = deduplicator or Deduplicator()
        self.recorder = recorder or EventRecorder()
        self.fanout = fanout
        self.orchestrator = orchestrator
        self.broadcaster = broadcaster
        self.session_factory = session_factory
        self.accepting = True
        self._in_flight: Set[asyncio.Task] = set()
        self.stats = {"processed": 0, "accepted": 0, "rejected": 0, "persistence_errors": 0, "downstream_errors": 0}

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def _reject(self, result: PipelineResult, rejection: Rejection, category: str) -> PipelineResult:
        result.rejection = rejection
        self.stats["rejected"] += 1
        record_detection(category, rejection.reason.value)
        logger.info(
            f"Detection rejected: {rejection.reason.value}",
            extra={
                "event_type": "detection_rejected",
                "reason": rejection.reason.value,
                "camera_id": rejection.camera_id,
                "category": category,
            }
        )
        return result

    async def _broadcast(self, organization_id: str, event_type: str, data: Dict[str, Any], result: PipelineResult) -> None:
        if self.broadcaster is None:
            return
        try:
            await self.broadcaster.publish(organization_id, event_type, data)
        except Exception as e:
            result.errors.append(f"broadcast {event_type}: {e}")
            logger.warning(
                f"Realtime publish failed for {event_type}: {e}",
                extra={"organization_id": organization_id, "message_type": event_type}
            )

    async def _dedup_and_record(self, accepted: AcceptedDetection, result: PipelineResult) -> bool:
        """Dedup check, persist and window update under the key's lock. Returns False when suppressed."""
        detection = accepted.detection
        async with self.deduplicator.lock_for(detection.organization_id, detection.camera_id, accepted.category):
            stage_start = time.time()
            suppressed = self.deduplicator.should_suppress(
                detection.organization_id, detection.camera_id, accepted.category, detection.detected_at
            )
            record_stage_duration("dedup", time.time() - stage_start)
            if suppressed:
                self._reject(result, Rejection(
                    reason=RejectionReason.DEDUPLICATED,
                    category=detection.category,
                    camera_id=detection.camera_id,
                    detail=f"repeat {accepted.category} within {self.deduplicator.window_for(accepted.category)}s",
                ), accepted.category)
                return False

            stage_start = time.time()
            with get_db_session(self.session_factory) as db:
                recorded = self.recorder.record(accepted, db)
            record_stage_duration("record", time.time() - stage_start)

            self.deduplicator.record_accepted(
                detection.organization_id, detection.camera_id, accepted.category, detection.detected_at
            )

        result.event = recorded.event
        result.alert = recorded.alert
        return True

    async def process(self, detection: RawDetection) -> PipelineResult:
        """
        Run one detection through every stage.

        Raises:
            DetectionPersistenceError: The event could not be stored; resubmit
        """
        result = PipelineResult(trace_id=str(uuid.uuid4()))
        token = set_trace_id(result.trace_id)
        start_time = time.time()
        pipeline_in_flight.inc()
        self.stats["processed"] += 1

        try:
            stage_start = time.time()
            gate_result = self.gate.accept(detection)
            record_stage_duration("gate", time.time() - stage_start)
            if isinstance(gate_result, Rejection):
                return self._reject(result, gate_result, detection.normalized_category or "unknown")
            accepted = gate_result

            try:
                if not await self._dedup_and_record(accepted, result):
                    return result
            except DetectionPersistenceError:
                self.stats["persistence_errors"] += 1
                record_detection(accepted.category, "persistence_error")
                raise

            self.stats["accepted"] += 1
            record_detection(accepted.category, "accepted")
            event = result.event
            alert = result.alert

            await self._broadcast(event.organization_id, "detection_event", event.to_dict(), result)
            if alert is not None:
                record_alert_created(alert.category, alert.severity)
                await self._broadcast(alert.organization_id, "alert", alert.to_dict(), result)

            if alert is not None and accepted.config.notify_enabled:
                stage_start = time.time()
                try:
                    result.fanout = await self.fanout.fan_out_alert(alert.id)
                except Exception as e:
                    self.stats["downstream_errors"] += 1
                    result.errors.append(f"fanout: {e}")
                    logger.error(
                        f"Notification fan-out failed for alert {alert.id}: {e}",
                        extra={"alert_id": alert.id, "organization_id": alert.organization_id},
                        exc_info=True
                    )
                record_stage_duration("fanout", time.time() - stage_start)

            emergency_type = emergency_type_for(accepted.category)
            if emergency_type is not None:
                stage_start = time.time()
                try:
                    result.incident = await self.orchestrator.handle(event.id, emergency_type)
                except Exception as e:
                    self.stats["downstream_errors"] += 1
                    result.errors.append(f"orchestrator: {e}")
                    logger.error(
                        f"Emergency orchestration failed for event {event.id}: {e}",
                        extra={"detection_event_id": event.id, "emergency_type": emergency_type},
                        exc_info=True
                    )
                record_stage_duration("orchestrate", time.time() - stage_start)

            return result

        finally:
            result.duration_ms = (time.time() - start_time) * 1000
            pipeline_in_flight.dec()
            clear_trace_id(token)

    async def submit(self, detection: RawDetection) -> PipelineResult:
        """
        Process a detection as a tracked task.

        The task keeps running if the caller is cancelled (e.g. the HTTP
        client disconnects), and is awaited by drain() on shutdown.

        Raises:
            PipelineShuttingDown: Shutdown has started
            DetectionPersistenceError: The event could not be stored
        """
        if not self.accepting:
            raise PipelineShuttingDown("Detection pipeline is shutting down")

        task = asyncio.create_task(self.process(detection))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return await asyncio.shield(task)

    async def drain(self, timeout: float) -> int:
        """
        Stop accepting detections and wait for in-flight ones.

        Returns:
            Number of detections still running after the timeout
        """
        self.accepting = False
        pending = set(self._in_flight)
        if not pending:
            return 0

        logger.info(f"Draining {len(pending)} in-flight detection(s) (timeout: {timeout}s)...")
        done, still_running = await asyncio.wait(pending, timeout=timeout)
        if still_running:
            logger.warning(
                f"Drain timeout - cancelling {len(still_running)} detection(s)",
                extra={"remaining": len(still_running)}
            )
            for task in still_running:
                task.cancel()
            await asyncio.gather(*still_running, return_exceptions=True)
        else:
            logger.info("In-flight detections drained")
        return len(still_running)


def build_detection_pipeline(
    session_factory: Optional[SessionFactory] = None,
    gateway: Optional[MessagingGateway] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    broadcaster=None,
    deduplicator: Optional[Deduplicator] = None,
    **orchestrator_options,
) -> DetectionPipeline:
    """
    Wire the pipeline stages together.

    Args:
        session_factory: Session factory shared by every stage (default SessionLocal)
        gateway: Messaging gateway (default from settings)
        http_client: Shared httpx client for integrations
        broadcaster: Realtime broadcaster
        deduplicator: Dedup window (default in-memory)
        orchestrator_options: Passed to EmergencyOrchestrator (context_capture, action_timeout, plans)
    """
    gateway = gateway or create_messaging_gateway(http_client)
    config_service = DetectionConfigService(session_factory)
    fanout = NotificationFanOut(gateway, session_factory=session_factory, broadcaster=broadcaster)
    orchestrator = EmergencyOrchestrator(
        create_action_executors(gateway, fanout, http_client),
        session_factory=session_factory,
        broadcaster=broadcaster,
        **orchestrator_options,
    )
    return DetectionPipeline(
        config_service=config_service,
        fanout=fanout,
        orchestrator=orchestrator,
        deduplicator=deduplicator,
        broadcaster=broadcaster,
        session_factory=session_factory,
    )


# Global instance (initialized in FastAPI lifespan)
_detection_pipeline: Optional[DetectionPipeline] = None


async def initialize_detection_pipeline(**kwargs) -> DetectionPipeline:
    """
    Build and install the global DetectionPipeline

    Called from FastAPI lifespan startup. Accepts build_detection_pipeline arguments.
    """
    global _detection_pipeline

    if _detection_pipeline is not None:
        logger.warning("DetectionPipeline already initialized")
        return _detection_pipeline

    _detection_pipeline = build_detection_pipeline(**kwargs)
    logger.info(
        "DetectionPipeline initialized",
        extra={
            "event_type": "pipeline_init",
            "gateway": type(_detection_pipeline.fanout.gateway).__name__,
            "executors": sorted(_detection_pipeline.orchestrator.executors),
        }
    )
    return _detection_pipeline


def get_detection_pipeline() -> Optional[DetectionPipeline]:
    """
    Get the global DetectionPipeline instance

    Returns:
        DetectionPipeline instance or None if not initialized
    """
    return _detection_pipeline


def set_detection_pipeline(pipeline: Optional[DetectionPipeline]) -> None:
    """Install a pipeline instance (used by the app lifespan and tests)."""
    global _detection_pipeline
    _detection_pipeline = pipeline


async def shutdown_detection_pipeline(timeout: float = 30.0) -> None:
    """
    Drain and clear the global DetectionPipeline instance

    Called from FastAPI lifespan shutdown.

    Args:
        timeout: Maximum time to wait for in-flight detections (seconds)
    """
    global _detection_pipeline

    if _detection_pipeline is None:
        logger.warning("DetectionPipeline not initialized")
        return

    await _detection_pipeline.drain(timeout)
    _detection_pipeline = None
    logger.info("Global DetectionPipeline shutdown complete")
