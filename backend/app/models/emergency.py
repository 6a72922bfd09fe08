"""Emergency incident and response log SQLAlchemy ORM models"""
from sqlalchemy import Column, String, Integer, Float, Text, DateTime, Index, ForeignKey
from sqlalchemy.orm import relationship
from app.core.database import Base
import json
import uuid
from datetime import datetime, timezone


EMERGENCY_TYPES = ("fire", "fall", "medical", "security", "intrusion")

# Pipeline-owned progress; 'resolved' lives in `status` and is only set by an operator
RESPONSE_STATES = ("created", "evidence_captured", "actions_executing", "actions_complete")


class EmergencyIncident(Base):
    """
    Emergency incident opened for a critical-category detection.

    One incident per source detection event, enforced by the unique
    constraint on source_event_id.

    Attributes:
        id: UUID primary key
        organization_id: Owning organization
        source_event_id: DetectionEvent that opened the incident (unique)
        emergency_type: fire, fall, medical, security or intrusion
        response_level: critical or high
        camera_id: Source camera
        camera_name: Camera name (denormalized)
        location: Camera location
        confidence: Detection confidence
        response_state: created, evidence_captured, actions_executing, actions_complete
        status: active or resolved
        evidence: JSON array of {kind, ref, captured_at}
        detected_at: Detection timestamp
        created_at: Record creation timestamp (UTC)
        resolved_by: Operator who closed it
        resolved_at: When it was closed
        resolution_notes: Free text supplied on resolve
    """

    __tablename__ = "emergency_incidents"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(100), nullable=False, index=True)
    source_event_id = Column(String(36), nullable=False, unique=True)
    emergency_type = Column(String(20), nullable=False)
    response_level = Column(String(20), nullable=False)
    camera_id = Column(String(100), nullable=False)
    camera_name = Column(String(200), nullable=True)
    location = Column(String(200), nullable=True)
    confidence = Column(Float, nullable=False, default=0.0)
    response_state = Column(String(30), nullable=False, default="created")
    status = Column(String(20), nullable=False, default="active")
    evidence = Column(Text, nullable=False, default='[]')
    detected_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    resolved_by = Column(String(100), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    resolution_notes = Column(Text, nullable=True)

    logs = relationship(
        "EmergencyResponseLog",
        back_populates="incident",
        order_by="EmergencyResponseLog.sequence",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index('idx_emergency_incidents_org_status', 'organization_id', 'status'),
        Index('idx_emergency_incidents_created', 'created_at'),
    )

    @property
    def evidence_list(self) -> list:
        return json.loads(self.evidence) if self.evidence else []

    def __repr__(self):
        return f"<EmergencyIncident(id={self.id}, type={self.emergency_type}, state={self.response_state}, status={self.status})>"

    def to_dict(self, include_logs: bool = False):
        """Convert incident to dictionary for API responses and broadcasts."""
        data = {
            "id": self.id,
            "organization_id": self.organization_id,
            "source_event_id": self.source_event_id,
            "emergency_type": self.emergency_type,
            "response_level": self.response_level,
            "camera_id": self.camera_id,
            "camera_name": self.camera_name,
            "location": self.location,
            "confidence": self.confidence,
            "response_state": self.response_state,
            "status": self.status,
            "evidence": self.evidence_list,
            "detected_at": self.detected_at.isoformat() if self.detected_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "resolved_by": self.resolved_by,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolution_notes": self.resolution_notes,
        }
        if include_logs:
            data["logs"] = [log.to_dict() for log in self.logs]
        return data


class EmergencyResponseLog(Base):
    """
    Append-only audit entry for one executed emergency action.

    Attributes:
        id: Autoincrement primary key
        incident_id: FK to emergency_incidents
        sequence: 1-based execution order within the incident
        action_type: e.g. contact_fire_brigade, building_systems, notify_stakeholders
        status: success, simulated, failed, timeout or skipped
        payload: JSON object sent to the executor
        result: JSON object returned by the executor
        error_message: Failure detail
        duration_ms: Time the action took
        timestamp: When the entry was appended (UTC)
    """

    __tablename__ = "emergency_response_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    incident_id = Column(
        String,
        ForeignKey("emergency_incidents.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    sequence = Column(Integer, nullable=False)
    action_type = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False)
    payload = Column(Text, nullable=False, default='{}')
    result = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    duration_ms = Column(Integer, nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    incident = relationship("EmergencyIncident", back_populates="logs")

    __table_args__ = (
        Index('idx_emergency_logs_incident_sequence', 'incident_id', 'sequence', unique=True),
    )

    def __repr__(self):
        return f"<EmergencyResponseLog(incident={self.incident_id}, seq={self.sequence}, action={self.action_type}, status={self.status})>"

    def to_dict(self):
        return {
            "id": self.id,
            "incident_id": self.incident_id,
            "sequence": self.sequence,
            "action_type": self.action_type,
            "status": self.status,
            "payload": json.loads(self.payload) if self.payload else {},
            "result": json.loads(self.result) if self.result else None,
            "error_message": self.error_message,
            "duration_ms": self.duration_ms,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }
