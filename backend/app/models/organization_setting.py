"""Per-organization settings model for key-value storage"""
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime

from app.core.database import Base


class OrganizationSetting(Base):
    """
    Organization settings stored as key-value pairs.

    Used for:
    - people_count_threshold (crowd alert threshold)
    """
    __tablename__ = "organization_settings"

    organization_id = Column(String(100), primary_key=True, nullable=False)
    key = Column(String(100), primary_key=True, nullable=False)
    value = Column(String(2000), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self):
        return f"<OrganizationSetting(org='{self.organization_id}', key='{self.key}')>"
