"""
Camera API endpoints

Cameras carry the location used in alert descriptions and the online/offline
status shown on the dashboard.

- POST /cameras - Register a camera
- GET /cameras - List an organization's cameras
- PATCH /cameras/{id}/status - Report a status change (broadcast as camera_status)
"""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.models.camera import Camera
from app.schemas.camera import CameraCreate, CameraListResponse, CameraResponse, CameraStatusUpdate
from app.services.realtime_broadcaster import get_realtime_broadcaster

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cameras", tags=["cameras"])


@router.post("", response_model=CameraResponse, status_code=status.HTTP_201_CREATED)
async def create_camera(camera: CameraCreate, db: Session = Depends(get_db)) -> CameraResponse:
    db_camera = Camera(**camera.model_dump())
    db.add(db_camera)
    db.commit()
    db.refresh(db_camera)

    logger.info(
        f"Camera registered: {db_camera.name}",
        extra={"camera_id": db_camera.id, "organization_id": db_camera.organization_id}
    )
    return CameraResponse.model_validate(db_camera)


@router.get("", response_model=CameraListResponse)
async def list_cameras(
    organization_id: str = Query(...),
    db: Session = Depends(get_db),
) -> CameraListResponse:
    cameras = db.query(Camera).filter(Camera.organization_id == organization_id).order_by(Camera.name).all()
    return CameraListResponse(
        data=[CameraResponse.model_validate(camera) for camera in cameras],
        total_count=len(cameras),
    )


@router.patch("/{camera_id}/status", response_model=CameraResponse)
async def update_camera_status(
    camera_id: str,
    update: CameraStatusUpdate,
    db: Session = Depends(get_db),
) -> CameraResponse:
    """
    Record a camera status change and publish it to the organization's dashboards.

    Raises:
        HTTPException: 404 if camera not found
    """
    camera = db.query(Camera).filter(Camera.id == camera_id).first()
    if camera is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Camera not found")

    previous = camera.status
    camera.status = update.status
    if update.status == "online":
        camera.last_seen_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(camera)

    if previous != camera.status:
        logger.info(
            f"Camera {camera.name} status {previous} -> {camera.status}",
            extra={"camera_id": camera.id, "organization_id": camera.organization_id, "status": camera.status}
        )
        await get_realtime_broadcaster().publish(camera.organization_id, "camera_status", {
            **camera.to_dict(),
            "previous_status": previous,
        })

    return CameraResponse.model_validate(camera)
