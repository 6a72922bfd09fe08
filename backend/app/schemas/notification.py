"""Notification inbox schemas"""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel


class NotificationResponse(BaseModel):
    """Response schema for a single notification."""
    id: str
    user_id: str
    organization_id: str
    type: str
    title: str
    body: str
    severity: str
    ref_id: Optional[str] = None
    push_status: str
    read: bool
    read_at: Optional[datetime] = None
    created_at: datetime


class NotificationListResponse(BaseModel):
    """Response schema for notification list."""
    data: List[NotificationResponse]
    total_count: int
    unread_count: int


class MarkReadResponse(BaseModel):
    """Response for mark as read operations."""
    success: bool
    updated_count: int


class NotificationStatsResponse(BaseModel):
    total: int
    unread: int
    by_type: Dict[str, int]
    by_push_status: Dict[str, int]


class SystemNotificationRequest(BaseModel):
    organization_id: str
    title: str
    body: str
    severity: str = "low"
    push: bool = False
