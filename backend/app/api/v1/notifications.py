"""
Notification API Endpoints

Per-user inbox of in-app notifications created by the fan-out engine:
- Listing notifications with filtering and pagination
- Marking notifications as read (single or all)
- Inbox statistics
- Sending a system notification to an organization
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import desc
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.models.notification import Notification
from app.schemas.notification import (
    MarkReadResponse,
    NotificationListResponse,
    NotificationResponse,
    NotificationStatsResponse,
    SystemNotificationRequest,
)
from app.api.v1.detections import require_pipeline
from app.services.detection_pipeline import DetectionPipeline
from app.services.notification_inbox import mark_all_read, mark_read, notification_statistics

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    user_id: str = Query(..., description="Inbox owner"),
    read: Optional[bool] = Query(None, description="Filter by read status"),
    notification_type: Optional[str] = Query(None, alias="type", description="Filter by notification type"),
    limit: int = Query(20, ge=1, le=100, description="Number of notifications to return"),
    offset: int = Query(0, ge=0, description="Number of notifications to skip"),
    db: Session = Depends(get_db)
) -> NotificationListResponse:
    """
    Get a user's notifications, newest first.

    Args:
        user_id: Inbox owner
        read: Filter by read status (true/false/null for all)
        type: alert, emergency_alert or system
        limit: Maximum number of notifications to return
        offset: Number of notifications to skip for pagination

    Returns:
        List of notifications with total and unread counts
    """
    query = db.query(Notification).filter(Notification.user_id == user_id)

    if read is True:
        query = query.filter(Notification.read_at.isnot(None))
    elif read is False:
        query = query.filter(Notification.read_at.is_(None))
    if notification_type:
        query = query.filter(Notification.type == notification_type)

    total_count = query.count()

    # Unread count always covers the whole inbox
    unread_count = db.query(Notification).filter(
        Notification.user_id == user_id,
        Notification.read_at.is_(None),
    ).count()

    notifications = (
        query
        .order_by(desc(Notification.created_at))
        .offset(offset)
        .limit(limit)
        .all()
    )

    return NotificationListResponse(
        data=[NotificationResponse(**n.to_dict()) for n in notifications],
        total_count=total_count,
        unread_count=unread_count
    )


@router.get("/stats", response_model=NotificationStatsResponse)
async def get_notification_stats(
    user_id: str = Query(...),
    db: Session = Depends(get_db)
) -> NotificationStatsResponse:
    return NotificationStatsResponse(**notification_statistics(db, user_id))


@router.patch("/mark-all-read", response_model=MarkReadResponse)
async def mark_all_notifications_read(
    user_id: str = Query(...),
    db: Session = Depends(get_db)
) -> MarkReadResponse:
    """Mark every unread notification of a user as read."""
    updated = mark_all_read(db, user_id)
    return MarkReadResponse(success=True, updated_count=updated)


@router.patch("/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: str,
    user_id: str = Query(...),
    db: Session = Depends(get_db)
) -> NotificationResponse:
    """
    Mark a single notification as read.

    Raises:
        HTTPException: 404 if notification not found in the user's inbox
    """
    notification = mark_read(db, user_id, notification_id)
    if notification is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    return NotificationResponse(**notification.to_dict())


@router.post("/system")
async def send_system_notification(
    request: SystemNotificationRequest,
    pipeline: DetectionPipeline = Depends(require_pipeline),
):
    """Send a system notification to every active user of an organization."""
    summary = await pipeline.fanout.send_system_notification(
        organization_id=request.organization_id,
        title=request.title,
        body=request.body,
        severity=request.severity,
        push=request.push,
    )
    return summary.to_dict()
