"""DetectionEvent SQLAlchemy ORM model for accepted AI detections"""
from sqlalchemy import Column, String, Float, Text, DateTime, Index, CheckConstraint
from app.core.database import Base
import json
import uuid
from datetime import datetime, timezone


# Review states; the pipeline only ever writes 'pending'
DETECTION_STATUSES = ("pending", "confirmed", "false_positive", "ignored")


class DetectionEvent(Base):
    """
    Detection event model.

    One row per detection that passed the intake gate and the dedup window.
    Rows are never modified by the pipeline; only operator review changes
    `status`.

    Attributes:
        id: UUID primary key
        organization_id: Owning organization
        camera_id: Source camera
        camera_name: Camera name at detection time (denormalized)
        category: Detection category (fire, fall, theft, ...)
        confidence: Provider confidence in [0, 1]
        severity: Resolved severity (metadata override or category default)
        description: Provider description, if any
        bounding_areas: JSON array of {x, y, width, height}
        image_ref: Reference to the analysed frame
        status: Review state (pending, confirmed, false_positive, ignored)
        metadata_json: JSON object of provider metadata (people_count, identity, ...)
        detected_at: When the provider saw it (UTC)
        created_at: Record creation timestamp (UTC)
        reviewed_at: When an operator last changed status
    """

    __tablename__ = "detection_events"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(100), nullable=False, index=True)
    camera_id = Column(String(100), nullable=False, index=True)
    camera_name = Column(String(200), nullable=True)
    category = Column(String(50), nullable=False)
    confidence = Column(Float, nullable=False)
    severity = Column(String(20), nullable=False)
    description = Column(Text, nullable=True)
    bounding_areas = Column(Text, nullable=False, default='[]')
    image_ref = Column(String(500), nullable=True)
    status = Column(String(20), nullable=False, default="pending")
    metadata_json = Column(Text, nullable=False, default='{}')
    detected_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    reviewed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint('confidence >= 0 AND confidence <= 1', name='check_detection_confidence'),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'false_positive', 'ignored')",
            name='check_detection_status'
        ),
        Index('idx_detection_events_org_detected', 'organization_id', 'detected_at'),
        Index('idx_detection_events_camera_category', 'camera_id', 'category'),
    )

    @property
    def metadata_dict(self) -> dict:
        return json.loads(self.metadata_json) if self.metadata_json else {}

    @property
    def bounding_areas_list(self) -> list:
        return json.loads(self.bounding_areas) if self.bounding_areas else []

    def __repr__(self):
        return f"<DetectionEvent(id={self.id}, camera={self.camera_id}, category={self.category}, confidence={self.confidence})>"

    def to_dict(self):
        """Convert detection event to dictionary for API responses and broadcasts."""
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "camera_id": self.camera_id,
            "camera_name": self.camera_name,
            "category": self.category,
            "confidence": self.confidence,
            "severity": self.severity,
            "description": self.description,
            "bounding_areas": self.bounding_areas_list,
            "image_ref": self.image_ref,
            "status": self.status,
            "metadata": self.metadata_dict,
            "detected_at": self.detected_at.isoformat() if self.detected_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
        }
