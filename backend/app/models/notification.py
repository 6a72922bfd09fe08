"""Notification SQLAlchemy ORM model for per-user in-app notifications"""
from sqlalchemy import Column, String, Text, DateTime, Index, UniqueConstraint
from app.core.database import Base
import uuid
from datetime import datetime, timezone


NOTIFICATION_TYPES = ("alert", "detection_event", "emergency_alert", "system")


class Notification(Base):
    """
    In-app notification, one per (alert or incident, recipient).

    Attributes:
        id: UUID primary key
        user_id: Recipient
        organization_id: Recipient's organization
        type: alert, detection_event, emergency_alert or system
        title: Headline
        body: Message body
        severity: Severity of the source alert or incident
        ref_id: Id of the alert or incident this refers to (null for system)
        push_status: Push delivery outcome: not_required, pending, sent, failed
        push_error: Gateway error text when push_status is failed
        read_at: Null until the recipient marks it read; never set by the pipeline
        created_at: Notification creation timestamp (UTC)
    """

    __tablename__ = "notifications"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(100), nullable=False, index=True)
    organization_id = Column(String(100), nullable=False, index=True)
    type = Column(String(30), nullable=False)
    title = Column(String(200), nullable=False)
    body = Column(Text, nullable=False)
    severity = Column(String(20), nullable=False, default="low")
    ref_id = Column(String(36), nullable=True)
    push_status = Column(String(20), nullable=False, default="not_required")
    push_error = Column(String(500), nullable=True)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        # At most one record per recipient for a given alert/incident
        UniqueConstraint('ref_id', 'user_id', 'type', name='uq_notifications_ref_user_type'),
        Index('idx_notifications_user_created', 'user_id', 'created_at'),
        Index('idx_notifications_user_read', 'user_id', 'read_at'),
    )

    @property
    def is_read(self) -> bool:
        return self.read_at is not None

    def __repr__(self):
        return f"<Notification(id={self.id}, user={self.user_id}, type={self.type}, read={self.is_read})>"

    def to_dict(self):
        """Convert notification to dictionary for API responses."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "organization_id": self.organization_id,
            "type": self.type,
            "title": self.title,
            "body": self.body,
            "severity": self.severity,
            "ref_id": self.ref_id,
            "push_status": self.push_status,
            "read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
