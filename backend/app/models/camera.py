"""Camera SQLAlchemy ORM model"""
from sqlalchemy import Column, String, DateTime, Boolean, Index, CheckConstraint
from app.core.database import Base
import uuid
from datetime import datetime, timezone


CAMERA_STATUSES = ("online", "offline", "error")


class Camera(Base):
    """
    Camera as the pipeline sees it: identity, location and status.

    Stream acquisition is handled outside this service.

    Attributes:
        id: UUID primary key
        organization_id: Owning organization
        name: User-friendly camera name (e.g., "Loading Dock")
        location: Where it is mounted (e.g., "Warehouse B")
        status: online, offline or error
        is_enabled: Whether the camera is in use
        last_seen_at: Last status heartbeat
        created_at: Record creation timestamp (UTC)
        updated_at: Last modification timestamp (UTC)
    """

    __tablename__ = "cameras"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(100), nullable=False)
    name = Column(String(100), nullable=False)
    location = Column(String(200), nullable=True)
    status = Column(String(20), nullable=False, default="offline")
    is_enabled = Column(Boolean, nullable=False, default=True)
    last_seen_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        CheckConstraint("status IN ('online', 'offline', 'error')", name='check_camera_status'),
        Index('idx_cameras_org', 'organization_id'),
    )

    def __repr__(self):
        return f"<Camera(id={self.id}, name={self.name}, status={self.status})>"

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "location": self.location,
            "status": self.status,
            "is_enabled": self.is_enabled,
            "last_seen_at": self.last_seen_at.isoformat() if self.last_seen_at else None,
        }
