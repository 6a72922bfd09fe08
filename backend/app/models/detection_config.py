"""DetectionTypeConfig SQLAlchemy ORM model for per-organization category settings"""
from sqlalchemy import Column, String, Float, Text, DateTime, Boolean, UniqueConstraint, CheckConstraint
from app.core.database import Base
import uuid
from datetime import datetime, timezone


class DetectionTypeConfig(Base):
    """
    Per-organization override of a detection category's configuration.

    Categories without a row use the registry defaults.

    Attributes:
        id: UUID primary key
        organization_id: Owning organization
        category: Detection category
        display_name: Label shown in the dashboard
        description: What the category detects
        enabled: Whether detections of this category are accepted
        confidence_threshold: Minimum confidence to accept
        severity: Default severity when the detection carries none
        notify_enabled: Whether alerts of this category are fanned out
        updated_by: Last editor
        updated_at: Last edit timestamp (UTC)
    """

    __tablename__ = "detection_type_configs"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(100), nullable=False, index=True)
    category = Column(String(50), nullable=False)
    display_name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    enabled = Column(Boolean, nullable=False, default=True)
    confidence_threshold = Column(Float, nullable=False)
    severity = Column(String(20), nullable=False)
    notify_enabled = Column(Boolean, nullable=False, default=True)
    updated_by = Column(String(100), nullable=True)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        UniqueConstraint('organization_id', 'category', name='uq_detection_type_configs_org_category'),
        CheckConstraint(
            'confidence_threshold >= 0 AND confidence_threshold <= 1',
            name='check_detection_config_threshold'
        ),
    )

    def __repr__(self):
        return f"<DetectionTypeConfig(org={self.organization_id}, category={self.category}, threshold={self.confidence_threshold})>"
