"""
Pipeline error taxonomy.

Rejections (disabled type, low confidence, duplicate) are expected outcomes
and are returned as `Rejection` values, never raised. Exceptions here cover
the cases the caller has to act on.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class PipelineError(Exception):
    """Base class for detection pipeline errors."""
    pass


class DetectionPersistenceError(PipelineError):
    """
    Raised when an accepted detection cannot be written to the store.

    Fatal for that detection. The caller should resubmit the whole
    detection; nothing downstream has run.
    """

    def __init__(self, message: str, detection: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.detection = detection or {}


class ConfigValidationError(PipelineError):
    """Raised when a detection type configuration edit is invalid."""

    def __init__(self, message: str, field_name: Optional[str] = None):
        super().__init__(message)
        self.field_name = field_name


class AlertNotFound(PipelineError):
    """Raised when an alert id does not exist in the organization."""
    pass


class IncidentNotFound(PipelineError):
    """Raised when an emergency incident id does not exist in the organization."""
    pass


class AlreadyResolvedError(PipelineError):
    """Raised when resolving an alert or incident that is already resolved."""
    pass


class RejectionReason(str, Enum):
    """Why a detection was not accepted."""

    UNKNOWN_CATEGORY = "unknown_category"
    TYPE_DISABLED = "type_disabled"
    BELOW_THRESHOLD = "below_threshold"
    DEDUPLICATED = "deduplicated"
    INVALID_CONFIDENCE = "invalid_confidence"


@dataclass
class Rejection:
    """
    A detection that was not accepted.

    Attributes:
        reason: Rejection reason
        category: Category as submitted
        camera_id: Source camera
        detail: Human-readable explanation
        context: Extra values for logs (threshold, window, ...)
    """

    reason: RejectionReason
    category: str
    camera_id: str
    detail: str = ""
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reason": self.reason.value,
            "category": self.category,
            "camera_id": self.camera_id,
            "detail": self.detail,
            "context": self.context,
        }
