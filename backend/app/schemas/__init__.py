"""Pydantic schemas for request/response validation"""
from app.schemas.camera import (
    CameraCreate,
    CameraListResponse,
    CameraResponse,
    CameraStatusUpdate,
)
from app.schemas.detection import (
    BoundingArea,
    DetectionEventListResponse,
    DetectionEventResponse,
    DetectionStatsResponse,
    DetectionStatusUpdate,
    DetectionSubmit,
    DetectionSubmitResponse,
)
from app.schemas.alert import (
    AlertListResponse,
    AlertResolveRequest,
    AlertResponse,
    AlertStatsResponse,
)
from app.schemas.notification import (
    MarkReadResponse,
    NotificationListResponse,
    NotificationResponse,
    NotificationStatsResponse,
    SystemNotificationRequest,
)
from app.schemas.emergency import (
    IncidentDetailResponse,
    IncidentListResponse,
    IncidentResolveRequest,
    IncidentResponse,
    IncidentStatsResponse,
    ResponseLogEntry,
)
from app.schemas.detection_config import (
    DetectionTypeConfigListResponse,
    DetectionTypeConfigResponse,
    DetectionTypeConfigUpdate,
)

__all__ = [
    "CameraCreate",
    "CameraListResponse",
    "CameraResponse",
    "CameraStatusUpdate",
    "BoundingArea",
    "DetectionEventListResponse",
    "DetectionEventResponse",
    "DetectionStatsResponse",
    "DetectionStatusUpdate",
    "DetectionSubmit",
    "DetectionSubmitResponse",
    "AlertListResponse",
    "AlertResolveRequest",
    "AlertResponse",
    "AlertStatsResponse",
    "MarkReadResponse",
    "NotificationListResponse",
    "NotificationResponse",
    "NotificationStatsResponse",
    "SystemNotificationRequest",
    "IncidentDetailResponse",
    "IncidentListResponse",
    "IncidentResolveRequest",
    "IncidentResponse",
    "IncidentStatsResponse",
    "ResponseLogEntry",
    "DetectionTypeConfigListResponse",
    "DetectionTypeConfigResponse",
    "DetectionTypeConfigUpdate",
]
