"""Emergency incident schemas"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ResponseLogEntry(BaseModel):
    """One executed (or skipped) response action"""
    id: int
    incident_id: str
    sequence: int
    action_type: str
    status: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    duration_ms: Optional[int] = None
    timestamp: datetime


class IncidentResponse(BaseModel):
    id: str
    organization_id: str
    source_event_id: str
    emergency_type: str
    response_level: str
    camera_id: str
    camera_name: Optional[str] = None
    location: Optional[str] = None
    confidence: float
    response_state: str
    status: str
    evidence: List[Dict[str, Any]] = Field(default_factory=list)
    detected_at: datetime
    created_at: datetime
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None


class IncidentDetailResponse(IncidentResponse):
    """Incident with its ordered response log"""
    logs: List[ResponseLogEntry] = Field(default_factory=list)


class IncidentListResponse(BaseModel):
    data: List[IncidentResponse]
    total_count: int


class IncidentResolveRequest(BaseModel):
    resolved_by: str = Field(..., min_length=1, max_length=100)
    notes: Optional[str] = Field(None, max_length=2000)


class IncidentStatsResponse(BaseModel):
    total: int
    active: int
    resolved: int
    by_type: Dict[str, int]
    mean_time_to_resolve_seconds: Optional[float] = None
