"""
Detections API endpoints

- POST /detections - Submit a detection from the AI vision provider
- GET /detections - List detection events with filtering and pagination
- GET /detections/stats - Detection totals by category and review status
- GET /detections/{id} - Get one detection event
- PATCH /detections/{id}/status - Operator review (confirm, false positive, ignore)
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy import desc
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.exceptions import DetectionPersistenceError
from app.models.detection_event import DetectionEvent
from app.schemas.detection import (
    DetectionEventListResponse,
    DetectionEventResponse,
    DetectionStatsResponse,
    DetectionStatusUpdate,
    DetectionSubmit,
    DetectionSubmitResponse,
)
from app.services.detection_pipeline import DetectionPipeline, PipelineShuttingDown, get_detection_pipeline
from app.services.statistics_service import detection_statistics

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/detections", tags=["detections"])

PERSISTENCE_RETRY_AFTER_SECONDS = 5


def require_pipeline() -> DetectionPipeline:
    """Dependency: the running detection pipeline (503 until startup completes)."""
    pipeline = get_detection_pipeline()
    if pipeline is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Detection pipeline is not running"
        )
    return pipeline


@router.post("", response_model=DetectionSubmitResponse)
async def submit_detection(
    detection: DetectionSubmit,
    response: Response,
    pipeline: DetectionPipeline = Depends(require_pipeline),
) -> DetectionSubmitResponse:
    """
    Run a detection through the pipeline.

    Returns 201 when the detection was accepted and recorded, 200 with a
    rejection when it was filtered out (unknown or disabled type, below
    threshold, duplicate). A 503 means the event could not be stored and
    the detection should be resubmitted.
    """
    try:
        result = await pipeline.submit(detection.to_raw())
    except DetectionPersistenceError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Detection could not be recorded, resubmit: {e}",
            headers={"Retry-After": str(PERSISTENCE_RETRY_AFTER_SECONDS)},
        )
    except PipelineShuttingDown as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    if result.accepted:
        response.status_code = status.HTTP_201_CREATED
    return DetectionSubmitResponse(**result.to_dict())


@router.get("", response_model=DetectionEventListResponse)
async def list_detections(
    organization_id: str = Query(..., description="Organization to list"),
    category: Optional[str] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    camera_id: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> DetectionEventListResponse:
    """List detection events, newest first."""
    query = db.query(DetectionEvent).filter(DetectionEvent.organization_id == organization_id)
    if category:
        query = query.filter(DetectionEvent.category == category.lower())
    if status_filter:
        query = query.filter(DetectionEvent.status == status_filter)
    if camera_id:
        query = query.filter(DetectionEvent.camera_id == camera_id)

    total_count = query.count()
    events = query.order_by(desc(DetectionEvent.detected_at)).offset(offset).limit(limit).all()

    return DetectionEventListResponse(
        data=[DetectionEventResponse(**event.to_dict()) for event in events],
        total_count=total_count,
    )


@router.get("/stats", response_model=DetectionStatsResponse)
async def get_detection_stats(
    organization_id: str = Query(...),
    since: Optional[datetime] = Query(None, description="Only count detections at or after this time"),
    db: Session = Depends(get_db),
) -> DetectionStatsResponse:
    return DetectionStatsResponse(**detection_statistics(db, organization_id, since=since))


def _get_event(db: Session, event_id: str, organization_id: str) -> DetectionEvent:
    event = db.query(DetectionEvent).filter(
        DetectionEvent.id == event_id,
        DetectionEvent.organization_id == organization_id,
    ).first()
    if event is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Detection event not found")
    return event


@router.get("/{event_id}", response_model=DetectionEventResponse)
async def get_detection(
    event_id: str,
    organization_id: str = Query(...),
    db: Session = Depends(get_db),
) -> DetectionEventResponse:
    return DetectionEventResponse(**_get_event(db, event_id, organization_id).to_dict())


@router.patch("/{event_id}/status", response_model=DetectionEventResponse)
async def update_detection_status(
    event_id: str,
    update: DetectionStatusUpdate,
    organization_id: str = Query(...),
    db: Session = Depends(get_db),
) -> DetectionEventResponse:
    """
    Record an operator's review of a detection.

    The review status is the only field of a detection event that changes
    after it is recorded.
    """
    event = _get_event(db, event_id, organization_id)
    event.status = update.status
    event.reviewed_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(event)

    logger.info(
        f"Detection {event_id} marked {update.status}",
        extra={"event_type": "detection_reviewed", "detection_event_id": event_id, "status": update.status}
    )
    return DetectionEventResponse(**event.to_dict())
