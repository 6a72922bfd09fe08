"""
Realtime API Endpoints

WebSocket feed of an organization's pipeline updates, plus the recent-updates
buffer for dashboards that just connected.

Features:
- Auto-accept connections and subscribe to the organization's updates
- Heartbeat/ping-pong to keep connections alive
- Graceful disconnect handling
"""
import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from app.core.config import settings
from app.services.realtime_broadcaster import get_realtime_broadcaster

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

# Heartbeat interval in seconds
HEARTBEAT_INTERVAL = 30


@router.websocket("/ws/{organization_id}")
async def websocket_endpoint(websocket: WebSocket, organization_id: str):
    """
    WebSocket endpoint for an organization's realtime updates.

    Protocol:
    - Server sends ping every 30 seconds to keep connection alive
    - Client may send "ping" and receives "pong"
    - Server pushes updates as JSON:
      {"type": "alert", "organization_id": ..., "sequence": n, "data": {...}, "timestamp": ...}
    """
    broadcaster = get_realtime_broadcaster()
    await websocket.accept()
    subscription = await broadcaster.subscribe_websocket(organization_id, websocket)

    try:
        heartbeat_task = asyncio.create_task(send_heartbeat(websocket))

        try:
            while True:
                data = await websocket.receive_text()

                if data == "pong":
                    logger.debug("Received pong from client")
                elif data == "ping":
                    await websocket.send_text("pong")
                else:
                    logger.debug(f"Received WebSocket message: {data[:100]}")

        except WebSocketDisconnect:
            logger.info(
                "WebSocket client disconnected",
                extra={"organization_id": organization_id, "subscription_id": subscription.id}
            )
        finally:
            heartbeat_task.cancel()
            try:
                await heartbeat_task
            except asyncio.CancelledError:
                pass

    except Exception as e:
        logger.error(f"WebSocket error: {e}", exc_info=True)
    finally:
        await broadcaster.unsubscribe(subscription)


async def send_heartbeat(websocket: WebSocket):
    """
    Send periodic heartbeat pings to keep connection alive.

    Args:
        websocket: Active WebSocket connection
    """
    try:
        while True:
            await asyncio.sleep(HEARTBEAT_INTERVAL)
            try:
                await websocket.send_text("ping")
                logger.debug("Sent heartbeat ping")
            except Exception as e:
                logger.debug(f"Heartbeat failed: {e}")
                break
    except asyncio.CancelledError:
        pass


@router.get(f"{settings.API_V1_PREFIX}/realtime/{{organization_id}}/recent")
async def get_recent_updates(
    organization_id: str,
    limit: Optional[int] = Query(None, ge=0, le=500),
):
    """Most recent updates for an organization, oldest first."""
    broadcaster = get_realtime_broadcaster()
    return {
        "organization_id": organization_id,
        "subscriptions": broadcaster.subscription_count(organization_id),
        "data": broadcaster.get_recent(organization_id, limit=limit),
    }
