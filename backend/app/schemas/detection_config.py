"""Detection type configuration schemas"""
from typing import List, Optional

from pydantic import BaseModel, Field


class DetectionTypeConfigResponse(BaseModel):
    """Effective configuration of one detection category"""
    category: str
    display_name: str
    description: str
    enabled: bool
    confidence_threshold: float
    severity: str
    notify_enabled: bool


class DetectionTypeConfigListResponse(BaseModel):
    organization_id: str
    data: List[DetectionTypeConfigResponse]


class DetectionTypeConfigUpdate(BaseModel):
    """
    Partial update of one category.

    Range and value checks happen in DetectionConfigService so every caller
    gets the same validation.
    """
    enabled: Optional[bool] = None
    confidence_threshold: Optional[float] = None
    severity: Optional[str] = None
    notify_enabled: Optional[bool] = None
    display_name: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = None
    updated_by: Optional[str] = Field(None, max_length=100)
