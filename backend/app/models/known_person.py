"""KnownPerson SQLAlchemy ORM model for face-match identities"""
from sqlalchemy import Column, String, Text, DateTime, Boolean, Index
from app.core.database import Base
import uuid
from datetime import datetime, timezone


class KnownPerson(Base):
    """
    Identity a face detection can be matched against.

    Attributes:
        id: UUID primary key
        organization_id: Owning organization
        name: Person name
        notes: Operator notes
        is_person_of_interest: Face matches raise high-severity alerts
        created_at: Record creation timestamp (UTC)
    """

    __tablename__ = "known_persons"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(100), nullable=False)
    name = Column(String(200), nullable=False)
    notes = Column(Text, nullable=True)
    is_person_of_interest = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index('idx_known_persons_org', 'organization_id'),
    )

    def __repr__(self):
        return f"<KnownPerson(id={self.id}, name={self.name}, poi={self.is_person_of_interest})>"
