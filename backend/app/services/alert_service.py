"""
Alert operations used by the API: listing filters, resolution and statistics.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Query, Session

from app.core.exceptions import AlertNotFound, AlreadyResolvedError
from app.models.alert import SEVERITIES, Alert

logger = logging.getLogger(__name__)


def filter_alerts(
    db: Session,
    organization_id: str,
    category: Optional[str] = None,
    severity: Optional[str] = None,
    is_resolved: Optional[bool] = None,
    camera_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> Query:
    """Build the alert query for an organization with optional filters, newest first."""
    query = db.query(Alert).filter(Alert.organization_id == organization_id)
    if category:
        query = query.filter(Alert.category == category)
    if severity:
        query = query.filter(Alert.severity == severity)
    if is_resolved is not None:
        query = query.filter(Alert.is_resolved == is_resolved)
    if camera_id:
        query = query.filter(Alert.camera_id == camera_id)
    if start_date:
        query = query.filter(Alert.created_at >= start_date)
    if end_date:
        query = query.filter(Alert.created_at <= end_date)
    return query.order_by(Alert.created_at.desc())


def resolve_alert(
    db: Session,
    organization_id: str,
    alert_id: str,
    resolved_by: str,
    notes: Optional[str] = None,
) -> Alert:
    """
    Mark an alert resolved.

    resolved_at is set once; resolving again raises instead of overwriting it.

    Raises:
        AlertNotFound: Unknown alert for this organization
        AlreadyResolvedError: Alert was already resolved
    """
    alert = db.query(Alert).filter(
        Alert.id == alert_id,
        Alert.organization_id == organization_id,
    ).first()
    if alert is None:
        raise AlertNotFound(f"Alert {alert_id} not found")
    if alert.is_resolved:
        raise AlreadyResolvedError(f"Alert {alert_id} is already resolved")

    alert.is_resolved = True
    alert.resolved_by = resolved_by
    alert.resolved_at = datetime.now(timezone.utc)
    alert.resolution_notes = notes
    db.commit()
    db.refresh(alert)

    logger.info(
        f"Alert {alert_id} resolved by {resolved_by}",
        extra={"event_type": "alert_resolved", "alert_id": alert_id, "resolved_by": resolved_by}
    )
    return alert


def alert_statistics(db: Session, organization_id: str) -> Dict[str, Any]:
    """Totals by category and severity, plus the resolution rate."""
    base = db.query(Alert).filter(Alert.organization_id == organization_id)
    total = base.count()
    resolved = base.filter(Alert.is_resolved == True).count()  # noqa: E712

    by_category = dict(
        db.query(Alert.category, func.count(Alert.id))
        .filter(Alert.organization_id == organization_id)
        .group_by(Alert.category)
        .all()
    )
    severity_counts = dict(
        db.query(Alert.severity, func.count(Alert.id))
        .filter(Alert.organization_id == organization_id)
        .group_by(Alert.severity)
        .all()
    )

    return {
        "total": total,
        "resolved": resolved,
        "unresolved": total - resolved,
        "resolution_rate": round(resolved / total, 4) if total else 0.0,
        "by_category": by_category,
        "by_severity": {severity: severity_counts.get(severity, 0) for severity in SEVERITIES},
    }
