"""Detection intake and detection event schemas"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from app.services.intake_gate import RawDetection


class BoundingArea(BaseModel):
    """Normalized bounding rectangle of a detected object"""
    x: float
    y: float
    width: float = Field(..., ge=0)
    height: float = Field(..., ge=0)


class DetectionSubmit(BaseModel):
    """Inbound detection from the AI vision provider"""
    organization_id: str = Field(..., min_length=1, max_length=100)
    camera_id: str = Field(..., min_length=1, max_length=100)
    camera_name: Optional[str] = Field(None, max_length=200)
    category: str = Field(..., min_length=1, max_length=50, description="Detection category, e.g. fire, theft, face")
    # Range is checked by the intake gate so out-of-range values come back as rejections
    confidence: float = Field(..., description="Classifier confidence (0.0-1.0)")
    bounding_areas: List[BoundingArea] = Field(default_factory=list)
    image_ref: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    detected_at: Optional[datetime] = Field(None, description="Capture time; defaults to receipt time")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "organization_id": "org-1",
                    "camera_id": "cam-lobby",
                    "camera_name": "Lobby",
                    "category": "fire",
                    "confidence": 0.82,
                    "bounding_areas": [{"x": 0.1, "y": 0.2, "width": 0.3, "height": 0.25}],
                    "image_ref": "snapshots/cam-lobby/1700000000.jpg",
                    "metadata": {},
                }
            ]
        }
    }

    def to_raw(self) -> RawDetection:
        kwargs = {}
        if self.detected_at is not None:
            kwargs["detected_at"] = self.detected_at
        return RawDetection(
            organization_id=self.organization_id,
            camera_id=self.camera_id,
            camera_name=self.camera_name,
            category=self.category,
            confidence=self.confidence,
            bounding_areas=[area.model_dump() for area in self.bounding_areas],
            image_ref=self.image_ref,
            description=self.description,
            metadata=dict(self.metadata),
            **kwargs,
        )


class DetectionEventResponse(BaseModel):
    """Persisted detection event"""
    id: str
    organization_id: str
    camera_id: str
    camera_name: Optional[str] = None
    category: str
    confidence: float
    severity: str
    description: Optional[str] = None
    bounding_areas: List[Dict[str, Any]] = Field(default_factory=list)
    image_ref: Optional[str] = None
    status: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    detected_at: datetime
    created_at: datetime
    reviewed_at: Optional[datetime] = None


class DetectionEventListResponse(BaseModel):
    data: List[DetectionEventResponse]
    total_count: int


class DetectionStatusUpdate(BaseModel):
    """Operator review of a detection event"""
    status: Literal["pending", "confirmed", "false_positive", "ignored"]


class DetectionStatsResponse(BaseModel):
    total: int
    by_category: Dict[str, int]
    by_status: Dict[str, int]


class DetectionSubmitResponse(BaseModel):
    """Outcome of one submitted detection"""
    trace_id: str
    accepted: bool
    rejection: Optional[Dict[str, Any]] = None
    event: Optional[Dict[str, Any]] = None
    alert: Optional[Dict[str, Any]] = None
    fanout: Optional[Dict[str, Any]] = None
    incident: Optional[Dict[str, Any]] = None
    errors: List[str] = Field(default_factory=list)
    duration_ms: float

    @field_validator("errors", mode="before")
    @classmethod
    def default_errors(cls, v):
        return v or []
