"""SQLAlchemy ORM models"""
from app.models.camera import Camera
from app.models.detection_event import DetectionEvent
from app.models.alert import Alert
from app.models.notification import Notification
from app.models.emergency import EmergencyIncident, EmergencyResponseLog
from app.models.detection_config import DetectionTypeConfig
from app.models.user_profile import UserProfile
from app.models.known_person import KnownPerson
from app.models.organization_setting import OrganizationSetting

__all__ = [
    "Camera",
    "DetectionEvent",
    "Alert",
    "Notification",
    "EmergencyIncident",
    "EmergencyResponseLog",
    "DetectionTypeConfig",
    "UserProfile",
    "KnownPerson",
    "OrganizationSetting",
]
