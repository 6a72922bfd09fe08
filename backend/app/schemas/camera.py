"""Camera schemas"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class CameraCreate(BaseModel):
    organization_id: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=100)
    location: Optional[str] = Field(None, max_length=200)
    is_enabled: bool = True


class CameraResponse(BaseModel):
    id: str
    organization_id: str
    name: str
    location: Optional[str] = None
    status: str
    is_enabled: bool
    last_seen_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class CameraListResponse(BaseModel):
    data: List[CameraResponse]
    total_count: int


class CameraStatusUpdate(BaseModel):
    status: Literal["online", "offline", "error"]
