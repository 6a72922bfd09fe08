"""Pytest fixtures and configuration for test suite

This module provides:
1. Database fixtures (session factory and session) for test isolation
2. Factory functions for creating test objects with sensible defaults
3. Pipeline fixtures wired to the test database

Factory Functions:
    - make_raw_detection(**overrides) -> RawDetection
    - make_user(db_session, **overrides) -> UserProfile
    - make_camera(db_session, **overrides) -> Camera
    - make_detection_event(db_session, **overrides) -> DetectionEvent
    - make_alert(db_session, **overrides) -> Alert
    - make_known_person(db_session, **overrides) -> KnownPerson

Each model factory accepts an optional db_session parameter to persist objects.
"""
import json
import os
import tempfile
import uuid
from datetime import datetime, timezone
from typing import List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.database import Base
from app.core.retry import RetryConfig
from app.models.alert import Alert
from app.models.camera import Camera
from app.models.detection_event import DetectionEvent
from app.models.known_person import KnownPerson
from app.models.user_profile import UserProfile
from app.services.detection_pipeline import build_detection_pipeline
from app.services.intake_gate import RawDetection
from app.services.messaging_gateway import GatewayResult, LoggingMessagingGateway
from app.services.realtime_broadcaster import RealtimeBroadcaster

ORG_ID = "org-test"


# =============================================================================
# Factory Functions for Test Objects
# =============================================================================

def make_raw_detection(
    category: str = "person",
    confidence: float = 0.9,
    organization_id: str = ORG_ID,
    camera_id: str = "cam-001",
    camera_name: str = "Lobby Camera",
    detected_at: Optional[datetime] = None,
    **overrides
) -> RawDetection:
    """
    Factory function to create RawDetection instances for testing.

    Example:
        detection = make_raw_detection(category="fire", confidence=0.75)
    """
    if detected_at is None:
        detected_at = datetime.now(timezone.utc)
    overrides.setdefault("image_ref", f"snapshots/{camera_id}/{uuid.uuid4().hex}.jpg")
    return RawDetection(
        organization_id=organization_id,
        camera_id=camera_id,
        camera_name=camera_name,
        category=category,
        confidence=confidence,
        detected_at=detected_at,
        **overrides
    )


def make_user(
    db_session=None,
    organization_id: str = ORG_ID,
    display_name: str = "Test Operator",
    is_active: bool = True,
    **overrides
) -> UserProfile:
    """Factory function to create UserProfile instances for testing."""
    user = UserProfile(
        id=overrides.pop("id", str(uuid.uuid4())),
        organization_id=organization_id,
        display_name=display_name,
        is_active=is_active,
        **overrides
    )
    if db_session:
        db_session.add(user)
        db_session.commit()
    return user


def make_camera(
    db_session=None,
    organization_id: str = ORG_ID,
    name: str = "Lobby Camera",
    location: Optional[str] = "Main Building",
    status: str = "online",
    **overrides
) -> Camera:
    """Factory function to create Camera instances for testing."""
    camera = Camera(
        id=overrides.pop("id", str(uuid.uuid4())),
        organization_id=organization_id,
        name=name,
        location=location,
        status=status,
        **overrides
    )
    if db_session:
        db_session.add(camera)
        db_session.commit()
    return camera


def make_detection_event(
    db_session=None,
    organization_id: str = ORG_ID,
    camera_id: str = "cam-001",
    category: str = "person",
    confidence: float = 0.9,
    severity: str = "low",
    metadata: Optional[dict] = None,
    **overrides
) -> DetectionEvent:
    """Factory function to create DetectionEvent instances for testing."""
    event = DetectionEvent(
        id=overrides.pop("id", str(uuid.uuid4())),
        organization_id=organization_id,
        camera_id=camera_id,
        camera_name=overrides.pop("camera_name", "Lobby Camera"),
        category=category,
        confidence=confidence,
        severity=severity,
        metadata_json=json.dumps(metadata or {}),
        detected_at=overrides.pop("detected_at", datetime.now(timezone.utc)),
        **overrides
    )
    if db_session:
        db_session.add(event)
        db_session.commit()
    return event


def make_alert(
    db_session=None,
    organization_id: str = ORG_ID,
    category: str = "theft",
    severity: str = "high",
    **overrides
) -> Alert:
    """Factory function to create Alert instances for testing."""
    alert = Alert(
        id=overrides.pop("id", str(uuid.uuid4())),
        organization_id=organization_id,
        camera_id=overrides.pop("camera_id", "cam-001"),
        camera_name=overrides.pop("camera_name", "Lobby Camera"),
        category=category,
        severity=severity,
        title=overrides.pop("title", "Theft Alert"),
        description=overrides.pop("description", "Potential theft activity detected at Lobby Camera, 85% confidence"),
        confidence=overrides.pop("confidence", 0.85),
        source_event_id=overrides.pop("source_event_id", str(uuid.uuid4())),
        **overrides
    )
    if db_session:
        db_session.add(alert)
        db_session.commit()
    return alert


def make_known_person(
    db_session=None,
    organization_id: str = ORG_ID,
    name: str = "Jordan Reed",
    is_person_of_interest: bool = False,
    **overrides
) -> KnownPerson:
    """Factory function to create KnownPerson instances for testing."""
    person = KnownPerson(
        id=overrides.pop("id", str(uuid.uuid4())),
        organization_id=organization_id,
        name=name,
        is_person_of_interest=is_person_of_interest,
        **overrides
    )
    if db_session:
        db_session.add(person)
        db_session.commit()
    return person


class FlakyGateway(LoggingMessagingGateway):
    """Logging gateway whose push sends fail for selected users."""

    def __init__(self, failing_user_ids: Optional[List[str]] = None):
        super().__init__()
        self.failing_user_ids = set(failing_user_ids or [])
        self.push_attempts: List[str] = []

    async def send_push(self, title, body, target_user_ids, data=None) -> GatewayResult:
        self.push_attempts.extend(target_user_ids)
        if self.failing_user_ids.intersection(target_user_ids):
            return GatewayResult(success=False, channel="push", targets=list(target_user_ids), status_code=503, error="HTTP 503")
        return await super().send_push(title, body, target_user_ids, data)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture(scope="session", autouse=True)
def clear_app_overrides():
    """
    Session-scoped fixture to ensure app.dependency_overrides is cleared
    at the start and end of the test session.
    """
    from main import app

    app.dependency_overrides.clear()
    yield
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def session_factory():
    """
    Temporary SQLite database for one test.

    File-backed so the pipeline's per-stage sessions and the API's
    request sessions all see the same data.

    Yields:
        sessionmaker bound to the test database
    """
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    engine = create_engine(f"sqlite:///{path}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    try:
        yield factory
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()
        if os.path.exists(path):
            os.remove(path)


@pytest.fixture(scope="function")
def db_session(session_factory):
    """Session on the test database"""
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def gateway():
    return FlakyGateway()


@pytest.fixture
def broadcaster():
    """Broadcaster with fast redelivery backoff"""
    return RealtimeBroadcaster(
        retry_config=RetryConfig(max_attempts=3, base_delay=0.01, max_delay=0.05, jitter=False),
        recent_limit=50,
    )


@pytest.fixture
def pipeline(session_factory, gateway, broadcaster):
    """Detection pipeline wired to the test database with simulated integrations"""
    return build_detection_pipeline(
        session_factory=session_factory,
        gateway=gateway,
        broadcaster=broadcaster,
        action_timeout=2.0,
    )
