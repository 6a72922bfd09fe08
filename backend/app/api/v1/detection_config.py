"""
Detection configuration API endpoints

Per-organization, per-category thresholds and switches. Edits are
validated, persisted and take effect on the next detection.

- GET /detection-config/{organization_id} - Effective config for every category
- GET /detection-config/{organization_id}/{category} - One category
- PATCH /detection-config/{organization_id}/{category} - Edit one category
"""
from fastapi import APIRouter, Depends, HTTPException, status

from app.api.v1.detections import require_pipeline
from app.core.exceptions import ConfigValidationError
from app.schemas.detection_config import (
    DetectionTypeConfigListResponse,
    DetectionTypeConfigResponse,
    DetectionTypeConfigUpdate,
)
from app.services.detection_pipeline import DetectionPipeline

router = APIRouter(prefix="/detection-config", tags=["detection-config"])


@router.get("/{organization_id}", response_model=DetectionTypeConfigListResponse)
async def list_detection_configs(
    organization_id: str,
    pipeline: DetectionPipeline = Depends(require_pipeline),
) -> DetectionTypeConfigListResponse:
    configs = pipeline.config_service.list_configs(organization_id)
    return DetectionTypeConfigListResponse(
        organization_id=organization_id,
        data=[DetectionTypeConfigResponse(**config.to_dict()) for config in configs],
    )


@router.get("/{organization_id}/{category}", response_model=DetectionTypeConfigResponse)
async def get_detection_config(
    organization_id: str,
    category: str,
    pipeline: DetectionPipeline = Depends(require_pipeline),
) -> DetectionTypeConfigResponse:
    config = pipeline.config_service.get_config(organization_id, category.lower())
    if config is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown detection category '{category}'")
    return DetectionTypeConfigResponse(**config.to_dict())


@router.patch("/{organization_id}/{category}", response_model=DetectionTypeConfigResponse)
async def update_detection_config(
    organization_id: str,
    category: str,
    update: DetectionTypeConfigUpdate,
    pipeline: DetectionPipeline = Depends(require_pipeline),
) -> DetectionTypeConfigResponse:
    """
    Edit one category's configuration.

    Raises:
        HTTPException: 422 on an invalid edit (e.g. threshold outside 0.5-0.99)
    """
    changes = update.model_dump(exclude_unset=True, exclude={"updated_by"})
    try:
        config = pipeline.config_service.update_config(
            organization_id, category.lower(), changes, updated_by=update.updated_by
        )
    except ConfigValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": str(e), "field": e.field_name},
        )
    return DetectionTypeConfigResponse(**config.to_dict())
