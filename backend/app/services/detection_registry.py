"""
Detection Type Registry and configuration service.

Holds the built-in defaults for every detection category and layers
per-organization overrides (stored in `detection_type_configs`) on top.

The service is an explicit instance handed to the intake gate and the
alert evaluator. Organization configs are cached after first read; every
successful write reloads that organization's cache so the next detection
sees the new thresholds without a restart.

Usage:
    registry = DetectionConfigService(session_factory)
    config = registry.get_config("org-1", "fire")
    registry.update_config("org-1", "fire", {"confidence_threshold": 0.7}, updated_by="u1")
"""
import logging
import threading
from dataclasses import dataclass, asdict, replace
from typing import Any, Dict, List, Optional

from app.core.database import SessionFactory, get_db_session
from app.core.exceptions import ConfigValidationError
from app.models.detection_config import DetectionTypeConfig

logger = logging.getLogger(__name__)

SEVERITY_LEVELS = ("low", "medium", "high", "critical")

# Editable threshold range; defaults may sit outside it
MIN_EDITABLE_THRESHOLD = 0.5
MAX_EDITABLE_THRESHOLD = 0.99

EDITABLE_FIELDS = ("enabled", "confidence_threshold", "severity", "notify_enabled", "display_name", "description")


@dataclass(frozen=True)
class DetectionTypeSettings:
    """
    Effective configuration for one detection category.

    Attributes:
        category: Detection category key
        display_name: Label shown in the dashboard
        description: What the category detects
        enabled: Accept detections of this category
        confidence_threshold: Minimum confidence to accept, in [0, 1]
        severity: Default severity when the detection carries none
        notify_enabled: Fan alerts of this category out to users
    """

    category: str
    display_name: str
    description: str
    enabled: bool
    confidence_threshold: float
    severity: str
    notify_enabled: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


DEFAULT_DETECTION_TYPES: Dict[str, DetectionTypeSettings] = {
    "face": DetectionTypeSettings(
        category="face",
        display_name="Face Detection",
        description="Identifies and recognises human faces",
        enabled=True,
        confidence_threshold=0.85,
        severity="medium",
        notify_enabled=True,
    ),
    "fall": DetectionTypeSettings(
        category="fall",
        display_name="Fall Detection",
        description="Detects when a person falls (elderly care, workplace safety)",
        enabled=True,
        confidence_threshold=0.90,
        severity="high",
        notify_enabled=True,
    ),
    "theft": DetectionTypeSettings(
        category="theft",
        display_name="Theft Detection",
        description="Identifies suspicious behaviour patterns indicating potential stealing",
        enabled=True,
        confidence_threshold=0.75,
        severity="high",
        notify_enabled=True,
    ),
    "fire": DetectionTypeSettings(
        category="fire",
        display_name="Fire Detection",
        description="Early fire detection through visual flame and smoke analysis",
        enabled=True,
        confidence_threshold=0.60,
        severity="critical",
        notify_enabled=True,
    ),
    "person": DetectionTypeSettings(
        category="person",
        display_name="Person Detection",
        description="Detects human presence in monitored areas",
        enabled=True,
        confidence_threshold=0.70,
        severity="low",
        notify_enabled=False,
    ),
    "vehicle": DetectionTypeSettings(
        category="vehicle",
        display_name="Vehicle Detection",
        description="Identifies cars, lorries, and other vehicles",
        enabled=True,
        confidence_threshold=0.75,
        severity="low",
        notify_enabled=False,
    ),
    "intrusion": DetectionTypeSettings(
        category="intrusion",
        display_name="Intrusion Detection",
        description="Unauthorised access to restricted areas",
        enabled=True,
        confidence_threshold=0.85,
        severity="high",
        notify_enabled=True,
    ),
    "motion": DetectionTypeSettings(
        category="motion",
        display_name="Motion Detection",
        description="Movement in the camera's field of view",
        enabled=True,
        confidence_threshold=0.60,
        severity="low",
        notify_enabled=False,
    ),
    "object": DetectionTypeSettings(
        category="object",
        display_name="Object Detection",
        description="Unattended or notable objects",
        enabled=True,
        confidence_threshold=0.70,
        severity="low",
        notify_enabled=False,
    ),
}


def is_known_category(category: Optional[str]) -> bool:
    """Check whether a category exists in the registry."""
    return category in DEFAULT_DETECTION_TYPES


class DetectionConfigService:
    """
    Per-organization detection configuration with reload-on-write.

    Attributes:
        session_factory: Factory for database sessions
    """

    def __init__(self, session_factory: Optional[SessionFactory] = None):
        self.session_factory = session_factory
        self._cache: Dict[str, Dict[str, DetectionTypeSettings]] = {}
        # Reads come from the event loop, writes from the API threadpool
        self._lock = threading.Lock()

    def _load_org(self, organization_id: str) -> Dict[str, DetectionTypeSettings]:
        configs = dict(DEFAULT_DETECTION_TYPES)
        with get_db_session(self.session_factory) as db:
            rows = db.query(DetectionTypeConfig).filter(
                DetectionTypeConfig.organization_id == organization_id
            ).all()
            for row in rows:
                if row.category not in DEFAULT_DETECTION_TYPES:
                    logger.warning(
                        f"Ignoring stored config for unknown category '{row.category}'",
                        extra={"organization_id": organization_id, "category": row.category}
                    )
                    continue
                configs[row.category] = DetectionTypeSettings(
                    category=row.category,
                    display_name=row.display_name,
                    description=row.description or "",
                    enabled=row.enabled,
                    confidence_threshold=row.confidence_threshold,
                    severity=row.severity,
                    notify_enabled=row.notify_enabled,
                )
        return configs

    def _org_configs(self, organization_id: str) -> Dict[str, DetectionTypeSettings]:
        with self._lock:
            cached = self._cache.get(organization_id)
        if cached is not None:
            return cached

        configs = self._load_org(organization_id)
        with self._lock:
            self._cache.setdefault(organization_id, configs)
            return self._cache[organization_id]

    def get_config(self, organization_id: str, category: str) -> Optional[DetectionTypeSettings]:
        """
        Get the effective configuration for a category.

        Returns:
            Settings, or None if the category is not in the registry
        """
        if not is_known_category(category):
            return None
        return self._org_configs(organization_id)[category]

    def list_configs(self, organization_id: str) -> List[DetectionTypeSettings]:
        """All categories for an organization, in registry order."""
        configs = self._org_configs(organization_id)
        return [configs[category] for category in DEFAULT_DETECTION_TYPES]

    def reload(self, organization_id: Optional[str] = None) -> None:
        """Drop cached configuration for one organization, or all of them."""
        with self._lock:
            if organization_id is None:
                self._cache.clear()
            else:
                self._cache.pop(organization_id, None)

    def validate_changes(self, category: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate an edit to a category's configuration.

        Raises:
            ConfigValidationError: On unknown category, unknown field or bad value
        """
        if not is_known_category(category):
            raise ConfigValidationError(f"Unknown detection category '{category}'", field_name="category")

        cleaned: Dict[str, Any] = {}
        for key, value in changes.items():
            if value is None:
                continue
            if key not in EDITABLE_FIELDS:
                raise ConfigValidationError(f"Field '{key}' is not editable", field_name=key)
            cleaned[key] = value

        threshold = cleaned.get("confidence_threshold")
        if threshold is not None:
            if isinstance(threshold, bool) or not isinstance(threshold, (int, float)):
                raise ConfigValidationError("confidence_threshold must be a number", field_name="confidence_threshold")
            if threshold < MIN_EDITABLE_THRESHOLD or threshold > MAX_EDITABLE_THRESHOLD:
                raise ConfigValidationError(
                    f"confidence_threshold must be between {MIN_EDITABLE_THRESHOLD} and {MAX_EDITABLE_THRESHOLD}",
                    field_name="confidence_threshold"
                )
            cleaned["confidence_threshold"] = float(threshold)

        severity = cleaned.get("severity")
        if severity is not None and severity not in SEVERITY_LEVELS:
            raise ConfigValidationError(
                f"severity must be one of {', '.join(SEVERITY_LEVELS)}",
                field_name="severity"
            )

        for flag in ("enabled", "notify_enabled"):
            if flag in cleaned and not isinstance(cleaned[flag], bool):
                raise ConfigValidationError(f"{flag} must be a boolean", field_name=flag)

        return cleaned

    def update_config(
        self,
        organization_id: str,
        category: str,
        changes: Dict[str, Any],
        updated_by: Optional[str] = None,
    ) -> DetectionTypeSettings:
        """
        Persist an edit and reload the organization's cache.

        Args:
            organization_id: Organization to update
            category: Detection category
            changes: Subset of EDITABLE_FIELDS
            updated_by: Editor id for the audit column

        Returns:
            The new effective settings

        Raises:
            ConfigValidationError: If the edit is invalid
        """
        cleaned = self.validate_changes(category, changes)
        current = self.get_config(organization_id, category)
        updated = replace(current, **cleaned)

        with get_db_session(self.session_factory) as db:
            row = db.query(DetectionTypeConfig).filter(
                DetectionTypeConfig.organization_id == organization_id,
                DetectionTypeConfig.category == category,
            ).first()
            if row is None:
                row = DetectionTypeConfig(organization_id=organization_id, category=category)
                db.add(row)
            row.display_name = updated.display_name
            row.description = updated.description
            row.enabled = updated.enabled
            row.confidence_threshold = updated.confidence_threshold
            row.severity = updated.severity
            row.notify_enabled = updated.notify_enabled
            row.updated_by = updated_by
            db.commit()

        self.reload(organization_id)

        logger.info(
            f"Detection config updated for '{category}'",
            extra={
                "event_type": "detection_config_updated",
                "organization_id": organization_id,
                "category": category,
                "changes": cleaned,
                "updated_by": updated_by,
            }
        )
        return self.get_config(organization_id, category)
