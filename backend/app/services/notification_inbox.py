"""
Per-user notification inbox: read state and counts.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.notification import Notification


def mark_read(db: Session, user_id: str, notification_id: str) -> Optional[Notification]:
    """
    Mark one notification read. read_at keeps its first value.

    Returns:
        The notification, or None if it does not belong to the user
    """
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_id == user_id,
    ).first()
    if notification is None:
        return None

    if notification.read_at is None:
        notification.read_at = datetime.now(timezone.utc)
        db.commit()
        db.refresh(notification)
    return notification


def mark_all_read(db: Session, user_id: str) -> int:
    """Mark every unread notification of a user read. Returns the number updated."""
    updated = db.query(Notification).filter(
        Notification.user_id == user_id,
        Notification.read_at.is_(None),
    ).update({"read_at": datetime.now(timezone.utc)}, synchronize_session=False)
    db.commit()
    return updated


def notification_statistics(db: Session, user_id: str) -> Dict[str, Any]:
    base = db.query(Notification).filter(Notification.user_id == user_id)
    by_type = dict(
        db.query(Notification.type, func.count(Notification.id))
        .filter(Notification.user_id == user_id)
        .group_by(Notification.type)
        .all()
    )
    by_push_status = dict(
        db.query(Notification.push_status, func.count(Notification.id))
        .filter(Notification.user_id == user_id)
        .group_by(Notification.push_status)
        .all()
    )
    return {
        "total": base.count(),
        "unread": base.filter(Notification.read_at.is_(None)).count(),
        "by_type": by_type,
        "by_push_status": by_push_status,
    }
