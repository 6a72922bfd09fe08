"""
Alerts API endpoints

- GET /alerts - List alerts (category, severity, resolved, camera, date range)
- GET /alerts/stats - Alert totals by type and severity, resolution rate
- GET /alerts/{id} - Get one alert
- POST /alerts/{id}/resolve - Resolve an alert
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.exceptions import AlertNotFound, AlreadyResolvedError
from app.models.alert import Alert
from app.schemas.alert import AlertListResponse, AlertResolveRequest, AlertResponse, AlertStatsResponse
from app.services.alert_service import alert_statistics, filter_alerts, resolve_alert

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/alerts", tags=["alerts"])


@router.get("", response_model=AlertListResponse)
async def list_alerts(
    organization_id: str = Query(...),
    category: Optional[str] = Query(None),
    severity: Optional[str] = Query(None),
    is_resolved: Optional[bool] = Query(None),
    camera_id: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> AlertListResponse:
    """List alerts with optional filters, newest first."""
    query = filter_alerts(
        db,
        organization_id,
        category=category,
        severity=severity,
        is_resolved=is_resolved,
        camera_id=camera_id,
        start_date=start_date,
        end_date=end_date,
    )
    total_count = query.count()
    alerts = query.offset(offset).limit(limit).all()
    return AlertListResponse(
        data=[AlertResponse(**alert.to_dict()) for alert in alerts],
        total_count=total_count,
    )


@router.get("/stats", response_model=AlertStatsResponse)
async def get_alert_stats(
    organization_id: str = Query(...),
    db: Session = Depends(get_db),
) -> AlertStatsResponse:
    return AlertStatsResponse(**alert_statistics(db, organization_id))


@router.get("/{alert_id}", response_model=AlertResponse)
async def get_alert(
    alert_id: str,
    organization_id: str = Query(...),
    db: Session = Depends(get_db),
) -> AlertResponse:
    alert = db.query(Alert).filter(Alert.id == alert_id, Alert.organization_id == organization_id).first()
    if alert is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Alert not found")
    return AlertResponse(**alert.to_dict())


@router.post("/{alert_id}/resolve", response_model=AlertResponse)
async def resolve(
    alert_id: str,
    request: AlertResolveRequest,
    organization_id: str = Query(...),
    db: Session = Depends(get_db),
) -> AlertResponse:
    """
    Resolve an alert.

    Raises:
        HTTPException: 404 if not found, 409 if already resolved
    """
    try:
        alert = resolve_alert(db, organization_id, alert_id, request.resolved_by, request.notes)
    except AlertNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Alert not found")
    except AlreadyResolvedError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Alert is already resolved")
    return AlertResponse(**alert.to_dict())
