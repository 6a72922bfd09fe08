"""Alert API schemas"""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class AlertResponse(BaseModel):
    """Alert raised by a detection event"""
    id: str
    organization_id: str
    camera_id: str
    camera_name: Optional[str] = None
    category: str
    severity: str
    title: str
    description: str
    confidence: float
    source_event_id: str
    tags: List[str] = Field(default_factory=list)
    is_resolved: bool
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None
    created_at: datetime


class AlertListResponse(BaseModel):
    data: List[AlertResponse]
    total_count: int


class AlertResolveRequest(BaseModel):
    resolved_by: str = Field(..., min_length=1, max_length=100, description="User resolving the alert")
    notes: Optional[str] = Field(None, max_length=2000)


class AlertStatsResponse(BaseModel):
    total: int
    resolved: int
    unresolved: int
    resolution_rate: float = Field(..., description="Resolved / total (0.0-1.0)")
    by_category: Dict[str, int]
    by_severity: Dict[str, int]
