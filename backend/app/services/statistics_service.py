"""
Organization statistics for the dashboard.

    - detection_statistics: detections by category and review status
    - incident_statistics: incidents per type, open vs resolved, mean time to resolve
    - dashboard_statistics: last 24h detections, active alerts, camera health
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.alert import SEVERITIES, Alert
from app.models.camera import Camera
from app.models.detection_event import DETECTION_STATUSES, DetectionEvent
from app.models.emergency import EmergencyIncident

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def detection_statistics(
    db: Session,
    organization_id: str,
    since: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Detection totals by category and review status."""
    query = db.query(DetectionEvent).filter(DetectionEvent.organization_id == organization_id)
    if since is not None:
        query = query.filter(DetectionEvent.detected_at >= since)

    by_category: Dict[str, int] = {}
    by_status = {status: 0 for status in DETECTION_STATUSES}
    rows = (
        query.with_entities(DetectionEvent.category, DetectionEvent.status, func.count(DetectionEvent.id))
        .group_by(DetectionEvent.category, DetectionEvent.status)
        .all()
    )
    for category, status, count in rows:
        by_category[category] = by_category.get(category, 0) + count
        by_status[status] = by_status.get(status, 0) + count

    return {
        "total": sum(by_category.values()),
        "by_category": by_category,
        "by_status": by_status,
    }


def incident_statistics(db: Session, organization_id: str) -> Dict[str, Any]:
    """Incidents per emergency type, open vs resolved, and mean time to resolve."""
    incidents = db.query(EmergencyIncident).filter(
        EmergencyIncident.organization_id == organization_id
    ).all()

    by_type: Dict[str, int] = {}
    resolved = 0
    resolve_seconds = []
    for incident in incidents:
        by_type[incident.emergency_type] = by_type.get(incident.emergency_type, 0) + 1
        if incident.status == "resolved":
            resolved += 1
            if incident.resolved_at is not None and incident.created_at is not None:
                elapsed = _as_utc(incident.resolved_at) - _as_utc(incident.created_at)
                resolve_seconds.append(elapsed.total_seconds())

    return {
        "total": len(incidents),
        "active": len(incidents) - resolved,
        "resolved": resolved,
        "by_type": by_type,
        "mean_time_to_resolve_seconds": (
            round(sum(resolve_seconds) / len(resolve_seconds), 2) if resolve_seconds else None
        ),
    }


def dashboard_statistics(db: Session, organization_id: str, window_hours: int = 24) -> Dict[str, Any]:
    """Live dashboard figures for an organization."""
    since = datetime.now(timezone.utc) - timedelta(hours=window_hours)

    recent_by_category = dict(
        db.query(DetectionEvent.category, func.count(DetectionEvent.id))
        .filter(
            DetectionEvent.organization_id == organization_id,
            DetectionEvent.detected_at >= since,
        )
        .group_by(DetectionEvent.category)
        .all()
    )

    active_by_severity = dict(
        db.query(Alert.severity, func.count(Alert.id))
        .filter(Alert.organization_id == organization_id, Alert.is_resolved == False)  # noqa: E712
        .group_by(Alert.severity)
        .all()
    )

    camera_status = dict(
        db.query(Camera.status, func.count(Camera.id))
        .filter(Camera.organization_id == organization_id, Camera.is_enabled == True)  # noqa: E712
        .group_by(Camera.status)
        .all()
    )

    active_incidents = db.query(EmergencyIncident).filter(
        EmergencyIncident.organization_id == organization_id,
        EmergencyIncident.status == "active",
    ).count()

    return {
        "window_hours": window_hours,
        "recent_detections": sum(recent_by_category.values()),
        "recent_detections_by_category": recent_by_category,
        "active_alerts": sum(active_by_severity.values()),
        "active_alerts_by_severity": {severity: active_by_severity.get(severity, 0) for severity in SEVERITIES},
        "active_incidents": active_incidents,
        "cameras_online": camera_status.get("online", 0),
        "cameras_offline": camera_status.get("offline", 0) + camera_status.get("error", 0),
    }
