"""
Event & Alert Recorder.

Persists every accepted detection as a DetectionEvent and, when the
detection is alert-worthy, creates the Alert in the same transaction so a
failed write leaves nothing behind and the detection can be resubmitted.

Alert rules (evaluate_alert_rule is pure):
    - theft: confidence > 0.8 -> high
    - fall: confidence > 0.7 -> high
    - fire: confidence > 0.6 -> critical
    - face: person of interest match and confidence > 0.85 -> high,
      otherwise a low informational alert
    - people_count metadata above the organization threshold -> medium
    - everything else: no alert, the event stays available for review

Usage:
    recorder = EventRecorder()
    result = recorder.record(accepted, db)
    if result.alert: ...
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import DetectionPersistenceError
from app.models.alert import Alert
from app.models.camera import Camera
from app.models.detection_event import DetectionEvent
from app.models.known_person import KnownPerson
from app.models.organization_setting import OrganizationSetting
from app.services.intake_gate import AcceptedDetection

logger = logging.getLogger(__name__)

PEOPLE_COUNT_SETTING_KEY = "people_count_threshold"
POI_DEGRADED_TAG = "poi_lookup_degraded"

ALERT_TITLES = {
    "fire": "URGENT: Fire Detected",
    "fall": "URGENT: Fall Detected",
    "theft": "Theft Alert",
    "face": "Face Recognition Alert",
    "people_count": "Crowd Alert",
}


@dataclass
class PersonMatch:
    """Result of a known-person lookup."""

    name: str
    is_person_of_interest: bool


@dataclass
class AlertDecision:
    """
    Outcome of alert-rule evaluation.

    Attributes:
        rule: Rule that fired (category name or "people_count")
        severity: Alert severity
        summary: What was detected, without location or confidence
        tags: Extra tags stored on the alert
    """

    rule: str
    severity: str
    summary: str
    tags: List[str] = field(default_factory=list)


@dataclass
class RecordResult:
    """A persisted detection event and the alert it raised, if any."""

    event: DetectionEvent
    alert: Optional[Alert] = None


# Lookup collaborator: (db, organization_id, identity_id) -> PersonMatch or None. May raise.
PersonLookup = Callable[[Session, str, str], Optional[PersonMatch]]


def lookup_known_person(db: Session, organization_id: str, identity_id: str) -> Optional[PersonMatch]:
    """Default person lookup against the known_persons table."""
    person = db.query(KnownPerson).filter(
        KnownPerson.id == identity_id,
        KnownPerson.organization_id == organization_id,
    ).first()
    if person is None:
        return None
    return PersonMatch(name=person.name, is_person_of_interest=person.is_person_of_interest)


def _people_count(metadata: Dict[str, Any]) -> Optional[int]:
    value = metadata.get("people_count")
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


def evaluate_alert_rule(
    category: str,
    confidence: float,
    metadata: Dict[str, Any],
    people_count_threshold: int,
    person: Optional[PersonMatch] = None,
    person_lookup_failed: bool = False,
) -> Optional[AlertDecision]:
    """
    Decide whether a detection raises an alert.

    Args:
        category: Detection category
        confidence: Detection confidence
        metadata: Detection metadata
        people_count_threshold: Organization crowd threshold
        person: Identity match for face detections
        person_lookup_failed: The identity lookup errored

    Returns:
        AlertDecision, or None when no alert is raised
    """
    if category == "theft":
        if confidence > 0.8:
            return AlertDecision("theft", "high", "Potential theft activity detected")
        return None

    if category == "fall":
        if confidence > 0.7:
            return AlertDecision("fall", "high", "Person fall detected")
        return None

    if category == "fire":
        if confidence > 0.6:
            return AlertDecision("fire", "critical", "Fire or smoke detected")
        return None

    if category == "face":
        if person_lookup_failed:
            return AlertDecision("face", "low", "Unknown person detected", tags=[POI_DEGRADED_TAG])
        if person is not None and person.is_person_of_interest and confidence > 0.85:
            return AlertDecision("face", "high", f"Known person of interest detected: {person.name}")
        if person is not None:
            return AlertDecision("face", "low", f"Known person detected: {person.name}")
        return AlertDecision("face", "low", "Unknown person detected")

    count = _people_count(metadata)
    if count is not None and count > people_count_threshold:
        return AlertDecision("people_count", "medium", f"High people count detected: {count} people")

    return None


def format_alert_description(summary: str, camera_name: Optional[str], location: Optional[str], confidence: float) -> str:
    """Build the operator-facing alert description."""
    where = camera_name or "unknown camera"
    if location:
        where = f"{where} ({location})"
    return f"{summary} at {where}, {round(confidence * 100)}% confidence"


class EventRecorder:
    """
    Persist detection events and the alerts they raise.

    Attributes:
        person_lookup: Known-person lookup used for face detections
    """

    def __init__(self, person_lookup: Optional[PersonLookup] = None):
        self.person_lookup = person_lookup or lookup_known_person

    def _people_count_threshold(self, db: Session, organization_id: str) -> int:
        row = db.query(OrganizationSetting).filter(
            OrganizationSetting.organization_id == organization_id,
            OrganizationSetting.key == PEOPLE_COUNT_SETTING_KEY,
        ).first()
        if row is not None:
            try:
                return int(row.value)
            except ValueError:
                logger.warning(
                    f"Invalid people count threshold '{row.value}', using default",
                    extra={"organization_id": organization_id}
                )
        return settings.PEOPLE_COUNT_ALERT_THRESHOLD

    def _camera_location(self, db: Session, event: DetectionEvent) -> Optional[str]:
        location = event.metadata_dict.get("location")
        if location:
            return location
        camera = db.query(Camera).filter(Camera.id == event.camera_id).first()
        return camera.location if camera else None

    def evaluate_for_alert(self, event: DetectionEvent, db: Session) -> Optional[Alert]:
        """
        Build the Alert for an event, if any, and add it to the session.

        The caller commits. A failed identity lookup downgrades face alerts
        instead of failing the detection; it runs in a savepoint so only the
        lookup is rolled back.
        """
        metadata = event.metadata_dict
        person = None
        lookup_failed = False

        if event.category == "face":
            identity_id = metadata.get("identity_id") or metadata.get("person_id")
            if identity_id:
                try:
                    # Savepoint: a failed lookup must not abort the event's transaction
                    with db.begin_nested():
                        person = self.person_lookup(db, event.organization_id, identity_id)
                except Exception as e:
                    lookup_failed = True
                    logger.warning(
                        f"Person of interest lookup failed, alert degraded: {e}",
                        extra={
                            "event_type": "poi_lookup_failed",
                            "organization_id": event.organization_id,
                            "detection_event_id": event.id,
                            "identity_id": identity_id,
                            "error_type": type(e).__name__,
                        }
                    )

        decision = evaluate_alert_rule(
            category=event.category,
            confidence=event.confidence,
            metadata=metadata,
            people_count_threshold=self._people_count_threshold(db, event.organization_id),
            person=person,
            person_lookup_failed=lookup_failed,
        )
        if decision is None:
            return None

        location = self._camera_location(db, event)
        alert = Alert(
            organization_id=event.organization_id,
            camera_id=event.camera_id,
            camera_name=event.camera_name,
            category=event.category,
            severity=decision.severity,
            title=ALERT_TITLES.get(decision.rule, f"{event.category.title()} Alert"),
            description=format_alert_description(decision.summary, event.camera_name, location, event.confidence),
            confidence=event.confidence,
            source_event_id=event.id,
            tags=json.dumps(decision.tags),
        )
        db.add(alert)
        return alert

    def record(self, accepted: AcceptedDetection, db: Session) -> RecordResult:
        """
        Persist an accepted detection and its alert in one transaction.

        Raises:
            DetectionPersistenceError: If the store rejects the write
        """
        detection = accepted.detection
        try:
            event = DetectionEvent(
                organization_id=detection.organization_id,
                camera_id=detection.camera_id,
                camera_name=detection.camera_name,
                category=accepted.category,
                confidence=accepted.confidence,
                severity=accepted.severity,
                description=detection.description,
                bounding_areas=json.dumps(detection.bounding_areas or []),
                image_ref=detection.image_ref,
                status="pending",
                metadata_json=json.dumps(detection.metadata or {}, default=str),
                detected_at=detection.detected_at,
            )
            db.add(event)
            db.flush()

            alert = self.evaluate_for_alert(event, db)
            db.commit()
            db.refresh(event)
            if alert is not None:
                db.refresh(alert)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(
                f"Failed to persist detection: {e}",
                extra={
                    "event_type": "detection_persist_failed",
                    "organization_id": detection.organization_id,
                    "camera_id": detection.camera_id,
                    "category": accepted.category,
                },
                exc_info=True
            )
            raise DetectionPersistenceError(
                "Detection could not be persisted; resubmit it",
                detection={"camera_id": detection.camera_id, "category": accepted.category},
            ) from e

        logger.info(
            f"Detection recorded: {event.category} on {event.camera_name or event.camera_id}",
            extra={
                "event_type": "detection_recorded",
                "detection_event_id": event.id,
                "organization_id": event.organization_id,
                "camera_id": event.camera_id,
                "category": event.category,
                "confidence": event.confidence,
                "alert_id": alert.id if alert else None,
                "alert_severity": alert.severity if alert else None,
            }
        )
        return RecordResult(event=event, alert=alert)
