"""
FastAPI application entry point for Sentryline

Initializes the FastAPI app, registers routers, and wires the detection
pipeline into the startup/shutdown lifecycle.
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.database import engine, Base
from app.core.exceptions import AlertNotFound, AlreadyResolvedError, ConfigValidationError, IncidentNotFound
from app.core.logging_config import setup_logging, get_logger
from app.core.metrics import init_metrics, get_metrics, get_content_type, update_system_metrics
from app.middleware.logging_middleware import RequestLoggingMiddleware
from app.api.v1.alerts import router as alerts_router
from app.api.v1.cameras import router as cameras_router
from app.api.v1.dashboard import router as dashboard_router
from app.api.v1.detection_config import router as detection_config_router
from app.api.v1.detections import router as detections_router
from app.api.v1.incidents import router as incidents_router
from app.api.v1.notifications import router as notifications_router
from app.api.v1.websocket import router as websocket_router
from app.services.detection_pipeline import (
    get_detection_pipeline,
    initialize_detection_pipeline,
    shutdown_detection_pipeline,
)
from app.services.realtime_broadcaster import get_realtime_broadcaster

# Application version
APP_VERSION = "1.0.0"

# Initialize structured JSON logging
setup_logging(app_version=APP_VERSION)
logger = get_logger(__name__)

# Initialize Prometheus metrics
init_metrics(version=APP_VERSION)

# Global scheduler instance
scheduler: AsyncIOScheduler = None


async def prune_dedup_windows_job():
    """Drop dedup window state that can no longer suppress a detection."""
    pipeline = get_detection_pipeline()
    if pipeline is None:
        return
    try:
        pipeline.deduplicator.prune_expired(datetime.now(timezone.utc))
    except Exception as e:
        logger.error(f"Dedup window pruning failed: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler for startup and shutdown events.

    - Startup: creates database tables, builds the detection pipeline, starts the scheduler
    - Shutdown: drains in-flight detections, closes realtime subscriptions and the HTTP client
    """
    global scheduler

    logger.info(
        "Application starting",
        extra={
            "event_type": "app_startup",
            "version": APP_VERSION,
            "log_level": settings.LOG_LEVEL,
            "debug_mode": settings.DEBUG,
        }
    )

    # Create database tables
    Base.metadata.create_all(bind=engine)
    logger.info(
        "Database initialized",
        extra={"event_type": "database_init", "status": "success"}
    )

    # Shared client for the messaging gateway and emergency integrations
    http_client = httpx.AsyncClient(timeout=settings.MESSAGING_GATEWAY_TIMEOUT_SECONDS)
    broadcaster = get_realtime_broadcaster()

    await initialize_detection_pipeline(http_client=http_client, broadcaster=broadcaster)
    logger.info(
        "Detection pipeline started",
        extra={"event_type": "pipeline_init", "status": "running"}
    )

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        update_system_metrics,
        trigger=CronTrigger(minute="*"),  # Every minute
        id="system_metrics_update",
        name="Update system resource metrics",
        replace_existing=True
    )
    scheduler.add_job(
        prune_dedup_windows_job,
        trigger=IntervalTrigger(minutes=10),
        id="dedup_window_prune",
        name="Prune expired dedup windows",
        replace_existing=True
    )
    scheduler.start()
    logger.info(
        "Scheduler started",
        extra={"event_type": "scheduler_init", "jobs": len(scheduler.get_jobs())}
    )

    logger.info(
        "Application startup complete",
        extra={"event_type": "app_startup_complete", "version": APP_VERSION}
    )

    yield  # Application runs here

    logger.info(
        "Application shutting down",
        extra={"event_type": "app_shutdown_start", "version": APP_VERSION}
    )

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped", extra={"event_type": "scheduler_shutdown"})

    # In-flight detections finish their current step before the integrations go away
    await shutdown_detection_pipeline(timeout=settings.SHUTDOWN_DRAIN_TIMEOUT_SECONDS)
    logger.info(
        "Detection pipeline stopped",
        extra={"event_type": "pipeline_shutdown"}
    )

    await broadcaster.shutdown()
    await http_client.aclose()

    logger.info(
        "Application shutdown complete",
        extra={"event_type": "app_shutdown_complete", "version": APP_VERSION}
    )


# Create FastAPI app
app = FastAPI(
    title="Sentryline API",
    description="Multi-tenant CCTV detection intake, alerting and emergency response",
    version=APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _cors_headers(request: Request) -> dict:
    """CORS headers for error responses, which bypass the CORS middleware."""
    origin = request.headers.get("origin", "")
    origins = settings.cors_origins_list
    if origin and (origin in origins or "*" in origins):
        return {
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Credentials": "true",
        }
    return {}


@app.exception_handler(HTTPException)
async def cors_http_exception_handler(request: Request, exc: HTTPException):
    """HTTPException handler that keeps CORS and any headers set by the endpoint."""
    headers = dict(exc.headers or {})
    headers.update(_cors_headers(request))
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=headers,
    )


@app.exception_handler(ConfigValidationError)
async def config_validation_exception_handler(request: Request, exc: ConfigValidationError):
    return JSONResponse(
        status_code=422,
        content={"detail": {"message": str(exc), "field": exc.field_name}},
        headers=_cors_headers(request),
    )


@app.exception_handler(AlertNotFound)
@app.exception_handler(IncidentNotFound)
async def not_found_exception_handler(request: Request, exc: Exception):
    return JSONResponse(status_code=404, content={"detail": str(exc)}, headers=_cors_headers(request))


@app.exception_handler(AlreadyResolvedError)
async def already_resolved_exception_handler(request: Request, exc: AlreadyResolvedError):
    return JSONResponse(status_code=409, content={"detail": str(exc)}, headers=_cors_headers(request))


# Add request logging middleware
app.add_middleware(RequestLoggingMiddleware)

# Register API routers
app.include_router(detections_router, prefix=settings.API_V1_PREFIX)
app.include_router(alerts_router, prefix=settings.API_V1_PREFIX)
app.include_router(notifications_router, prefix=settings.API_V1_PREFIX)
app.include_router(incidents_router, prefix=settings.API_V1_PREFIX)
app.include_router(detection_config_router, prefix=settings.API_V1_PREFIX)
app.include_router(cameras_router, prefix=settings.API_V1_PREFIX)
app.include_router(dashboard_router, prefix=settings.API_V1_PREFIX)
app.include_router(websocket_router)  # WebSocket at /ws/{organization_id}, recent updates under API_V1_PREFIX


@app.get("/")
async def root():
    """Root endpoint - API status check"""
    return {
        "name": "Sentryline API",
        "version": APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    pipeline = get_detection_pipeline()
    return {
        "status": "healthy" if pipeline is not None and pipeline.accepting else "degraded",
        "pipeline_running": pipeline is not None,
        "in_flight_detections": pipeline.in_flight if pipeline is not None else 0,
        "realtime_subscriptions": get_realtime_broadcaster().subscription_count(),
    }


@app.get("/metrics")
async def prometheus_metrics():
    """Prometheus metrics endpoint"""
    return Response(
        content=get_metrics(),
        media_type=get_content_type()
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
