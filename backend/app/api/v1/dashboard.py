"""
Dashboard API endpoints

- GET /dashboard/stats - Live figures: last 24h detections, active alerts, cameras
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.services.statistics_service import dashboard_statistics

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/stats")
async def get_dashboard_stats(
    organization_id: str = Query(...),
    window_hours: int = Query(24, ge=1, le=168),
    db: Session = Depends(get_db),
):
    return dashboard_statistics(db, organization_id, window_hours=window_hours)
