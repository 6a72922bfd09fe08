"""UserProfile SQLAlchemy ORM model (read-only directory of notification recipients)"""
from sqlalchemy import Column, String, DateTime, Boolean, Index
from app.core.database import Base
import uuid
from datetime import datetime, timezone


class UserProfile(Base):
    """
    User profile as seen by the notification pipeline.

    Account management lives elsewhere; the pipeline only reads active
    profiles for an organization.

    Attributes:
        id: UUID primary key
        organization_id: Organization the user belongs to
        display_name: Name shown in the dashboard
        email: Contact address
        phone: Contact number for SMS
        role: admin, operator or viewer
        is_active: Inactive users receive nothing
        created_at: Record creation timestamp (UTC)
    """

    __tablename__ = "user_profiles"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(100), nullable=False)
    display_name = Column(String(200), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    role = Column(String(20), nullable=False, default="operator")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index('idx_user_profiles_org_active', 'organization_id', 'is_active'),
    )

    def __repr__(self):
        return f"<UserProfile(id={self.id}, org={self.organization_id}, active={self.is_active})>"
