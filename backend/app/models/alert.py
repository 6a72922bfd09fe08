"""Alert SQLAlchemy ORM model for severity-ranked operator alerts"""
from sqlalchemy import Column, String, Float, Text, DateTime, Boolean, Index
from app.core.database import Base
import json
import uuid
from datetime import datetime, timezone


SEVERITIES = ("low", "medium", "high", "critical")


class Alert(Base):
    """
    Alert derived from exactly one DetectionEvent.

    Attributes:
        id: UUID primary key
        organization_id: Owning organization
        camera_id: Source camera
        camera_name: Camera name (denormalized)
        category: Detection category that raised the alert
        severity: low, medium, high or critical
        title: Short headline used for notifications
        description: Templated description, never empty
        confidence: Detection confidence
        source_event_id: Weak reference to the DetectionEvent (no FK)
        tags: JSON array of tags (e.g. "poi_lookup_degraded")
        is_resolved: False until an operator resolves it
        resolved_by: User who resolved it
        resolved_at: Set iff is_resolved, immutable afterwards
        resolution_notes: Free text supplied on resolve
        notifications_dispatched: Fan-out has already run for this alert
        created_at: Record creation timestamp (UTC)
    """

    __tablename__ = "alerts"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(100), nullable=False, index=True)
    camera_id = Column(String(100), nullable=False, index=True)
    camera_name = Column(String(200), nullable=True)
    category = Column(String(50), nullable=False)
    severity = Column(String(20), nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    confidence = Column(Float, nullable=False)
    source_event_id = Column(String(36), nullable=False, index=True)
    tags = Column(Text, nullable=False, default='[]')

    is_resolved = Column(Boolean, nullable=False, default=False)
    resolved_by = Column(String(100), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    resolution_notes = Column(Text, nullable=True)

    notifications_dispatched = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index('idx_alerts_org_created', 'organization_id', 'created_at'),
        Index('idx_alerts_org_resolved', 'organization_id', 'is_resolved'),
        Index('idx_alerts_severity', 'severity'),
    )

    @property
    def tags_list(self) -> list:
        return json.loads(self.tags) if self.tags else []

    def __repr__(self):
        return f"<Alert(id={self.id}, category={self.category}, severity={self.severity}, resolved={self.is_resolved})>"

    def to_dict(self):
        """Convert alert to dictionary for API responses and broadcasts."""
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "camera_id": self.camera_id,
            "camera_name": self.camera_name,
            "category": self.category,
            "severity": self.severity,
            "title": self.title,
            "description": self.description,
            "confidence": self.confidence,
            "source_event_id": self.source_event_id,
            "tags": self.tags_list,
            "is_resolved": self.is_resolved,
            "resolved_by": self.resolved_by,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolution_notes": self.resolution_notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
