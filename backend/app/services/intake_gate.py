"""
Detection Intake Gate.

Pure accept/reject decision for a raw detection from the vision provider:
unknown category, out-of-range confidence, disabled type and sub-threshold
confidence are rejected. Accepted detections carry their resolved severity
and the category settings used to judge them.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from app.core.exceptions import Rejection, RejectionReason
from app.services.detection_registry import (
    DetectionConfigService,
    DetectionTypeSettings,
    SEVERITY_LEVELS,
)

logger = logging.getLogger(__name__)


@dataclass
class RawDetection:
    """
    Detection as produced by the AI vision provider.

    Attributes:
        organization_id: Owning organization
        camera_id: Source camera
        camera_name: Camera name at detection time
        category: Detection category (fire, fall, ...)
        confidence: Provider confidence, expected in [0, 1]
        bounding_areas: List of {x, y, width, height}
        image_ref: Reference to the analysed frame
        description: Provider description
        metadata: Provider metadata (severity, people_count, identity_id, location, ...)
        detected_at: When the provider saw it (defaults to now)
    """

    organization_id: str
    camera_id: str
    category: str
    confidence: Any
    camera_name: Optional[str] = None
    bounding_areas: List[Dict[str, Any]] = field(default_factory=list)
    image_ref: Optional[str] = None
    description: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    detected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def normalized_category(self) -> str:
        return (self.category or "").strip().lower()


@dataclass
class AcceptedDetection:
    """A detection that passed the gate."""

    detection: RawDetection
    category: str
    confidence: float
    severity: str
    config: DetectionTypeSettings


GateResult = Union[AcceptedDetection, Rejection]


class IntakeGate:
    """
    Accept or reject raw detections against the organization's config.

    Owns no state; configuration comes from the injected config service.
    """

    def __init__(self, config_service: DetectionConfigService):
        self.config_service = config_service

    def _reject(self, detection: RawDetection, reason: RejectionReason, detail: str, **context) -> Rejection:
        rejection = Rejection(
            reason=reason,
            category=detection.category,
            camera_id=detection.camera_id,
            detail=detail,
            context=context,
        )
        logger.debug(
            f"Detection rejected: {reason.value} ({detail})",
            extra={
                "event_type": "detection_rejected",
                "reason": reason.value,
                "organization_id": detection.organization_id,
                "camera_id": detection.camera_id,
                "category": detection.category,
                **context,
            }
        )
        return rejection

    def accept(self, detection: RawDetection) -> GateResult:
        """
        Decide whether a detection enters the pipeline.

        Args:
            detection: Raw provider detection

        Returns:
            AcceptedDetection, or a Rejection describing why not
        """
        category = detection.normalized_category
        config = self.config_service.get_config(detection.organization_id, category)
        if config is None:
            return self._reject(
                detection,
                RejectionReason.UNKNOWN_CATEGORY,
                f"category '{detection.category}' is not registered",
            )

        confidence = detection.confidence
        if (
            isinstance(confidence, bool)
            or not isinstance(confidence, (int, float))
            or math.isnan(confidence)
            or confidence < 0.0
            or confidence > 1.0
        ):
            return self._reject(
                detection,
                RejectionReason.INVALID_CONFIDENCE,
                f"confidence {confidence!r} is outside [0, 1]",
            )
        confidence = float(confidence)

        if not config.enabled:
            return self._reject(
                detection,
                RejectionReason.TYPE_DISABLED,
                f"{category} detection is disabled",
            )

        if confidence < config.confidence_threshold:
            return self._reject(
                detection,
                RejectionReason.BELOW_THRESHOLD,
                f"confidence {confidence:.2f} below threshold {config.confidence_threshold:.2f}",
                confidence=confidence,
                threshold=config.confidence_threshold,
            )

        severity = (detection.metadata or {}).get("severity")
        if severity not in SEVERITY_LEVELS:
            severity = config.severity

        return AcceptedDetection(
            detection=detection,
            category=category,
            confidence=confidence,
            severity=severity,
            config=config,
        )
