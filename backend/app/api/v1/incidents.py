"""
Emergency incident API endpoints

- GET /incidents - List incidents (status, emergency type)
- GET /incidents/stats - Totals per type, open vs resolved, mean time to resolve
- GET /incidents/{id} - Incident detail with the ordered response log
- POST /incidents/{id}/resolve - Close an incident
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import desc
from sqlalchemy.orm import Session, selectinload

from app.core.database import get_db
from app.core.exceptions import AlreadyResolvedError, IncidentNotFound
from app.models.emergency import EmergencyIncident
from app.schemas.emergency import (
    IncidentDetailResponse,
    IncidentListResponse,
    IncidentResolveRequest,
    IncidentResponse,
    IncidentStatsResponse,
)
from app.services.emergency_orchestrator import resolve_incident
from app.services.realtime_broadcaster import get_realtime_broadcaster
from app.services.statistics_service import incident_statistics

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/incidents", tags=["incidents"])


@router.get("", response_model=IncidentListResponse)
async def list_incidents(
    organization_id: str = Query(...),
    status_filter: Optional[str] = Query(None, alias="status", description="active or resolved"),
    emergency_type: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> IncidentListResponse:
    query = db.query(EmergencyIncident).filter(EmergencyIncident.organization_id == organization_id)
    if status_filter:
        query = query.filter(EmergencyIncident.status == status_filter)
    if emergency_type:
        query = query.filter(EmergencyIncident.emergency_type == emergency_type)

    total_count = query.count()
    incidents = query.order_by(desc(EmergencyIncident.created_at)).offset(offset).limit(limit).all()
    return IncidentListResponse(
        data=[IncidentResponse(**incident.to_dict()) for incident in incidents],
        total_count=total_count,
    )


@router.get("/stats", response_model=IncidentStatsResponse)
async def get_incident_stats(
    organization_id: str = Query(...),
    db: Session = Depends(get_db),
) -> IncidentStatsResponse:
    return IncidentStatsResponse(**incident_statistics(db, organization_id))


@router.get("/{incident_id}", response_model=IncidentDetailResponse)
async def get_incident(
    incident_id: str,
    organization_id: str = Query(...),
    db: Session = Depends(get_db),
) -> IncidentDetailResponse:
    incident = db.query(EmergencyIncident).options(
        selectinload(EmergencyIncident.logs)
    ).filter(
        EmergencyIncident.id == incident_id,
        EmergencyIncident.organization_id == organization_id,
    ).first()
    if incident is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Incident not found")
    return IncidentDetailResponse(**incident.to_dict(include_logs=True))


@router.post("/{incident_id}/resolve", response_model=IncidentResponse)
async def resolve(
    incident_id: str,
    request: IncidentResolveRequest,
    organization_id: str = Query(...),
    db: Session = Depends(get_db),
) -> IncidentResponse:
    """
    Close an incident and publish the change to dashboards.

    Raises:
        HTTPException: 404 if not found, 409 if already resolved
    """
    try:
        incident = resolve_incident(db, organization_id, incident_id, request.resolved_by, request.notes)
    except IncidentNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Incident not found")
    except AlreadyResolvedError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Incident is already resolved")

    data = incident.to_dict()
    await get_realtime_broadcaster().publish(organization_id, "incident", data)
    return IncidentResponse(**data)
