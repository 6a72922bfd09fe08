"""
Realtime Broadcast Layer

Republishes pipeline state changes to dashboard sessions, keyed by
organization.

Event types:
    detection_event, alert, notification, camera_status, incident,
    critical_alert (attention signal sent in addition to a critical alert)

Each subscription has its own queue and delivery task, so messages reach a
subscriber in publish order and a slow subscriber never delays others.
A failed delivery is retried with exponential backoff; after
REALTIME_MAX_RECONNECT_ATTEMPTS failures the subscription is closed and the
caller has to subscribe again. A subscription whose queue reaches
REALTIME_MAX_PENDING_MESSAGES is closed with reason "overflow".

The last REALTIME_RECENT_UPDATES messages per organization are kept for
dashboards that just connected.

Usage:
    broadcaster = get_realtime_broadcaster()
    sub = await broadcaster.subscribe("org-1", {"alert": on_alert})
    await broadcaster.publish("org-1", "alert", alert.to_dict())
    await broadcaster.unsubscribe(sub)
"""
import asyncio
import itertools
import json
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Union

from fastapi import WebSocket

from app.core.config import settings
from app.core.metrics import record_realtime_message, update_realtime_subscriptions
from app.core.retry import RETRY_REALTIME, RetryConfig, calculate_delay

logger = logging.getLogger(__name__)

EVENT_TYPES = (
    "detection_event",
    "alert",
    "notification",
    "camera_status",
    "critical_alert",
    "incident",
)

Handler = Callable[[Dict[str, Any]], Awaitable[None]]
Handlers = Union[Handler, Dict[str, Handler]]


@dataclass
class RealtimeMessage:
    """One published state change."""

    event_type: str
    organization_id: str
    data: Dict[str, Any]
    sequence: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.event_type,
            "organization_id": self.organization_id,
            "sequence": self.sequence,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


class Subscription:
    """
    A dashboard session's subscription to one organization.

    Attributes:
        id: Subscription id
        organization_id: Organization subscribed to
        handlers: Single handler for every event type, or a per-type mapping
        active: False once unsubscribed or closed after failed deliveries
        close_reason: Why the subscription closed
        delivered: Messages delivered successfully
        max_pending: Queue bound (0 = unbounded); a full queue closes the subscription
    """

    def __init__(
        self,
        organization_id: str,
        handlers: Handlers,
        retry_config: RetryConfig,
        on_closed: Optional[Callable[["Subscription"], Awaitable[None]]] = None,
        max_pending: int = 0,
    ):
        self.id = str(uuid.uuid4())
        self.organization_id = organization_id
        self.handlers = handlers
        self.retry_config = retry_config
        self.on_closed = on_closed
        self.active = True
        self.close_reason: Optional[str] = None
        self.delivered = 0
        self.max_pending = max_pending
        self._queue: "asyncio.Queue[RealtimeMessage]" = asyncio.Queue(maxsize=max_pending)
        self._task: Optional[asyncio.Task] = None
        self._close_task: Optional[asyncio.Task] = None

    def start(self) -> None:
        self._task = asyncio.create_task(self._run(), name=f"realtime-sub-{self.id[:8]}")

    def _handler_for(self, event_type: str) -> Optional[Handler]:
        if isinstance(self.handlers, dict):
            return self.handlers.get(event_type)
        return self.handlers

    def enqueue(self, message: RealtimeMessage) -> bool:
        if not self.active or self._close_task is not None or self._handler_for(message.event_type) is None:
            return False
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(
                f"Realtime subscription {self.id} has {self._queue.qsize()} undelivered messages, closing",
                extra={
                    "subscription_id": self.id,
                    "organization_id": self.organization_id,
                    "message_type": message.event_type,
                    "sequence": message.sequence,
                }
            )
            self._close_task = asyncio.create_task(self.close("overflow"))
            return False
        return True

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def _deliver(self, message: RealtimeMessage) -> bool:
        handler = self._handler_for(message.event_type)
        payload = message.to_dict()

        for attempt in range(self.retry_config.max_attempts):
            try:
                await handler(payload)
                self.delivered += 1
                return True
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if attempt < self.retry_config.max_attempts - 1:
                    delay = calculate_delay(attempt, self.retry_config)
                    logger.warning(
                        f"Realtime delivery failed (attempt {attempt + 1}/{self.retry_config.max_attempts}), "
                        f"retrying in {delay:.1f}s: {e}",
                        extra={
                            "subscription_id": self.id,
                            "organization_id": self.organization_id,
                            "message_type": message.event_type,
                            "sequence": message.sequence,
                        }
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(
                        f"Realtime delivery failed after {self.retry_config.max_attempts} attempts, "
                        f"closing subscription: {e}",
                        extra={
                            "subscription_id": self.id,
                            "organization_id": self.organization_id,
                            "message_type": message.event_type,
                            "sequence": message.sequence,
                        }
                    )
        return False

    async def _run(self) -> None:
        while self.active:
            message = await self._queue.get()
            delivered = await self._deliver(message)
            if not delivered:
                await self.close("delivery_failed")
                return

    async def close(self, reason: str = "unsubscribed") -> None:
        if not self.active:
            return
        self.active = False
        self.close_reason = reason
        current = asyncio.current_task()
        if self._task is not None and self._task is not current and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        if self.on_closed is not None:
            try:
                await self.on_closed(self)
            except Exception as e:
                logger.debug(f"Subscription close callback failed: {e}")


class RealtimeBroadcaster:
    """
    Per-organization publish/subscribe hub.

    Attributes:
        retry_config: Redelivery backoff for subscriptions
        recent_limit: Messages kept per organization for late joiners
        max_pending: Undelivered messages a subscription may hold before it is closed
    """

    def __init__(
        self,
        retry_config: Optional[RetryConfig] = None,
        recent_limit: Optional[int] = None,
        max_pending: Optional[int] = None,
    ):
        self.retry_config = retry_config or RETRY_REALTIME
        self.recent_limit = recent_limit or settings.REALTIME_RECENT_UPDATES
        self.max_pending = max_pending or settings.REALTIME_MAX_PENDING_MESSAGES
        self._subscriptions: Dict[str, Dict[str, Subscription]] = {}
        self._recent: Dict[str, Deque[RealtimeMessage]] = {}
        self._sequence = itertools.count(1)
        self._lock = asyncio.Lock()

    async def subscribe(
        self,
        organization_id: str,
        handlers: Handlers,
        on_closed: Optional[Callable[[Subscription], Awaitable[None]]] = None,
    ) -> Subscription:
        """
        Subscribe to an organization's updates.

        Args:
            organization_id: Organization to follow
            handlers: Async callable for every event, or {event_type: callable}
            on_closed: Called once when the subscription closes

        Returns:
            Subscription handle (pass to unsubscribe)
        """
        if isinstance(handlers, dict):
            unknown = set(handlers) - set(EVENT_TYPES)
            if unknown:
                raise ValueError(f"Unknown realtime event types: {sorted(unknown)}")

        subscription = Subscription(
            organization_id,
            handlers,
            self.retry_config,
            on_closed=self._wrap_on_closed(on_closed),
            max_pending=self.max_pending,
        )
        async with self._lock:
            self._subscriptions.setdefault(organization_id, {})[subscription.id] = subscription
        subscription.start()
        update_realtime_subscriptions(self.subscription_count())

        logger.info(
            f"Realtime subscription opened for organization {organization_id}",
            extra={"subscription_id": subscription.id, "organization_id": organization_id}
        )
        return subscription

    def _wrap_on_closed(self, on_closed):
        async def _closed(subscription: Subscription) -> None:
            await self._remove(subscription)
            if on_closed is not None:
                await on_closed(subscription)
        return _closed

    async def _remove(self, subscription: Subscription) -> None:
        async with self._lock:
            org_subs = self._subscriptions.get(subscription.organization_id, {})
            org_subs.pop(subscription.id, None)
            if not org_subs:
                self._subscriptions.pop(subscription.organization_id, None)
        update_realtime_subscriptions(self.subscription_count())
        logger.info(
            f"Realtime subscription closed ({subscription.close_reason})",
            extra={
                "subscription_id": subscription.id,
                "organization_id": subscription.organization_id,
                "reason": subscription.close_reason,
            }
        )

    async def unsubscribe(self, subscription: Subscription) -> None:
        await subscription.close("unsubscribed")

    async def publish(self, organization_id: str, event_type: str, data: Dict[str, Any]) -> int:
        """
        Publish a state change to an organization's subscribers.

        Critical alerts are followed by a critical_alert attention event.

        Returns:
            Number of subscriptions the message was queued for
        """
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown realtime event type '{event_type}'")

        queued = self._publish_one(organization_id, event_type, data)
        if event_type == "alert" and data.get("severity") == "critical":
            queued += self._publish_one(organization_id, "critical_alert", {
                "alert_id": data.get("id"),
                "category": data.get("category"),
                "camera_id": data.get("camera_id"),
                "camera_name": data.get("camera_name"),
                "title": data.get("title"),
                "description": data.get("description"),
            })
        return queued

    def _publish_one(self, organization_id: str, event_type: str, data: Dict[str, Any]) -> int:
        # No awaits here: sequence order equals queue order
        message = RealtimeMessage(
            event_type=event_type,
            organization_id=organization_id,
            data=data,
            sequence=next(self._sequence),
        )
        recent = self._recent.get(organization_id)
        if recent is None:
            recent = self._recent[organization_id] = deque(maxlen=self.recent_limit)
        recent.append(message)

        queued = 0
        for subscription in list(self._subscriptions.get(organization_id, {}).values()):
            if subscription.enqueue(message):
                queued += 1

        record_realtime_message(event_type)
        logger.debug(
            f"Published {event_type} to {queued} subscription(s)",
            extra={"organization_id": organization_id, "message_type": event_type, "sequence": message.sequence}
        )
        return queued

    def get_recent(self, organization_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Most recent updates for an organization, oldest first."""
        messages = list(self._recent.get(organization_id, ()))
        if limit is not None:
            messages = messages[-limit:] if limit > 0 else []
        return [message.to_dict() for message in messages]

    def subscription_count(self, organization_id: Optional[str] = None) -> int:
        if organization_id is not None:
            return len(self._subscriptions.get(organization_id, {}))
        return sum(len(subs) for subs in self._subscriptions.values())

    async def subscribe_websocket(self, organization_id: str, websocket: WebSocket) -> Subscription:
        """
        Subscribe an accepted WebSocket to every event type.

        The socket is closed (1011) if the subscription is closed for failed
        deliveries or overflow.
        """
        async def send(message: Dict[str, Any]) -> None:
            await websocket.send_text(json.dumps(message, default=str))

        async def closed(subscription: Subscription) -> None:
            if subscription.close_reason in ("delivery_failed", "overflow"):
                try:
                    await websocket.close(code=1011)
                except Exception as e:
                    logger.debug(f"WebSocket close failed: {e}")

        return await self.subscribe(organization_id, send, on_closed=closed)

    async def shutdown(self) -> None:
        """Close every subscription."""
        async with self._lock:
            subscriptions = [sub for subs in self._subscriptions.values() for sub in subs.values()]
        for subscription in subscriptions:
            await subscription.close("shutdown")
        logger.info(
            f"Realtime broadcaster stopped, closed {len(subscriptions)} subscription(s)",
            extra={"closed_count": len(subscriptions)}
        )


# Global singleton instance
_broadcaster: Optional[RealtimeBroadcaster] = None


def get_realtime_broadcaster() -> RealtimeBroadcaster:
    """Get the global realtime broadcaster instance."""
    global _broadcaster
    if _broadcaster is None:
        _broadcaster = RealtimeBroadcaster()
    return _broadcaster
