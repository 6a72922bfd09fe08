"""
Notification Fan-out Engine.

Distributes one alert or incident to every active user in its organization:
    - one in-app Notification per recipient, always, committed first
    - one push send per recipient when severity is high or critical

Recipients are dispatched concurrently, bounded by a semaphore. A failed
push is recorded on the notification (push_status=failed) and counted in the
FanOutSummary; it never removes the in-app record and is not retried here.

Alert fan-out runs at most once per alert: the alert's
notifications_dispatched flag is claimed with a conditional UPDATE, and the
(ref_id, user_id, type) unique constraint backs that up per recipient.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from app.core.config import settings
from app.core.database import SessionFactory, get_db_session
from app.core.exceptions import AlertNotFound
from app.core.metrics import record_notification
from app.models.alert import Alert
from app.models.notification import Notification
from app.services.messaging_gateway import MessagingGateway
from app.services.user_directory import UserDirectory

logger = logging.getLogger(__name__)

PUSH_SEVERITIES = ("high", "critical")


@dataclass
class NotificationResult:
    """
    Per-recipient delivery outcome.

    Attributes:
        user_id: Recipient
        notification_id: In-app notification id (None if creation failed)
        in_app_created: In-app record exists
        push_attempted: A push send was made
        push_success: Push outcome (None when not attempted)
        error: Failure detail
    """

    user_id: str
    notification_id: Optional[str] = None
    in_app_created: bool = False
    push_attempted: bool = False
    push_success: Optional[bool] = None
    error: Optional[str] = None


@dataclass
class FanOutSummary:
    """Aggregate result of one fan-out."""

    ref_id: Optional[str]
    notification_type: str
    organization_id: str
    skipped: bool = False
    skip_reason: Optional[str] = None
    results: List[NotificationResult] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def recipients(self) -> int:
        return len(self.results)

    @property
    def in_app_created(self) -> int:
        return sum(1 for r in self.results if r.in_app_created)

    @property
    def push_attempted(self) -> int:
        return sum(1 for r in self.results if r.push_attempted)

    @property
    def push_succeeded(self) -> int:
        return sum(1 for r in self.results if r.push_success is True)

    @property
    def push_failed(self) -> int:
        return sum(1 for r in self.results if r.push_success is False)

    @property
    def failure_count(self) -> int:
        return self.push_failed + sum(1 for r in self.results if not r.in_app_created)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ref_id": self.ref_id,
            "notification_type": self.notification_type,
            "organization_id": self.organization_id,
            "skipped": self.skipped,
            "skip_reason": self.skip_reason,
            "recipients": self.recipients,
            "in_app_created": self.in_app_created,
            "push_attempted": self.push_attempted,
            "push_succeeded": self.push_succeeded,
            "push_failed": self.push_failed,
            "failure_count": self.failure_count,
            "duration_ms": round(self.duration_ms, 2),
        }


class NotificationFanOut:
    """
    Fan alerts, incidents and system messages out to an organization's users.

    Attributes:
        session_factory: Factory for database sessions (one per recipient)
        gateway: Messaging gateway for push sends
        user_directory: Recipient lookup
        concurrency: Max recipients dispatched at once
        broadcaster: Optional realtime broadcaster; each created notification is published
    """

    def __init__(
        self,
        gateway: MessagingGateway,
        session_factory: Optional[SessionFactory] = None,
        user_directory: Optional[UserDirectory] = None,
        concurrency: Optional[int] = None,
        broadcaster=None,
    ):
        self.gateway = gateway
        self.session_factory = session_factory
        self.user_directory = user_directory or UserDirectory()
        self.concurrency = concurrency or settings.FANOUT_CONCURRENCY
        self.broadcaster = broadcaster

    def _recipients(self, organization_id: str) -> List[str]:
        with get_db_session(self.session_factory) as db:
            return self.user_directory.list_active_users(db, organization_id)

    def _create_in_app(
        self,
        user_id: str,
        organization_id: str,
        notification_type: str,
        title: str,
        body: str,
        severity: str,
        ref_id: Optional[str],
        push_required: bool,
    ) -> Optional[Notification]:
        """Create and commit the in-app record. Returns None if one already exists for this ref."""
        with get_db_session(self.session_factory) as db:
            notification = Notification(
                user_id=user_id,
                organization_id=organization_id,
                type=notification_type,
                title=title,
                body=body,
                severity=severity,
                ref_id=ref_id,
                push_status="pending" if push_required else "not_required",
            )
            db.add(notification)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.debug(
                    f"Notification already exists for user {user_id}",
                    extra={"user_id": user_id, "ref_id": ref_id, "notification_type": notification_type}
                )
                return None
            db.refresh(notification)
            db.expunge(notification)
            return notification

    def _set_push_status(self, notification_id: str, status: str, error: Optional[str] = None) -> None:
        try:
            with get_db_session(self.session_factory) as db:
                db.query(Notification).filter(Notification.id == notification_id).update(
                    {"push_status": status, "push_error": error[:500] if error else None}
                )
                db.commit()
        except Exception as e:
            logger.warning(
                f"Failed to record push status for notification {notification_id}: {e}",
                extra={"notification_id": notification_id}
            )

    async def _deliver(
        self,
        semaphore: asyncio.Semaphore,
        user_id: str,
        organization_id: str,
        notification_type: str,
        title: str,
        body: str,
        severity: str,
        ref_id: Optional[str],
        push: bool,
        push_data: Dict[str, Any],
    ) -> NotificationResult:
        result = NotificationResult(user_id=user_id)

        async with semaphore:
            try:
                notification = self._create_in_app(
                    user_id, organization_id, notification_type, title, body, severity, ref_id, push
                )
            except Exception as e:
                result.error = f"in-app record failed: {e}"
                record_notification("in_app", False)
                logger.error(
                    f"Failed to create in-app notification for user {user_id}: {e}",
                    extra={"user_id": user_id, "ref_id": ref_id, "organization_id": organization_id},
                    exc_info=True
                )
                return result

            if notification is None:
                # Already delivered on an earlier run
                result.in_app_created = True
                return result

            result.in_app_created = True
            result.notification_id = notification.id
            record_notification("in_app", True)

            if self.broadcaster is not None:
                await self.broadcaster.publish(organization_id, "notification", notification.to_dict())

            if not push:
                return result

            result.push_attempted = True
            try:
                gateway_result = await self.gateway.send_push(title, body, [user_id], data=push_data)
                result.push_success = gateway_result.success
                result.error = gateway_result.error
            except Exception as e:
                result.push_success = False
                result.error = str(e)

            record_notification("push", bool(result.push_success))
            self._set_push_status(
                notification.id,
                "sent" if result.push_success else "failed",
                None if result.push_success else result.error,
            )
            if not result.push_success:
                logger.warning(
                    f"Push send failed for user {user_id}: {result.error}",
                    extra={
                        "event_type": "push_failed",
                        "user_id": user_id,
                        "ref_id": ref_id,
                        "notification_id": notification.id,
                    }
                )

        return result

    async def _fan_out(
        self,
        organization_id: str,
        notification_type: str,
        title: str,
        body: str,
        severity: str,
        ref_id: Optional[str],
        push: bool,
        push_data: Optional[Dict[str, Any]] = None,
    ) -> FanOutSummary:
        start_time = time.time()
        summary = FanOutSummary(ref_id=ref_id, notification_type=notification_type, organization_id=organization_id)

        user_ids = self._recipients(organization_id)
        if not user_ids:
            logger.info(
                "No active users to notify",
                extra={"organization_id": organization_id, "ref_id": ref_id}
            )
            return summary

        semaphore = asyncio.Semaphore(self.concurrency)
        tasks = [
            self._deliver(
                semaphore, user_id, organization_id, notification_type,
                title, body, severity, ref_id, push, push_data or {}
            )
            for user_id in user_ids
        ]
        summary.results = list(await asyncio.gather(*tasks))
        summary.duration_ms = (time.time() - start_time) * 1000

        logger.info(
            f"Fan-out complete: {summary.in_app_created}/{summary.recipients} in-app, "
            f"{summary.push_succeeded}/{summary.push_attempted} push",
            extra={"event_type": "fanout_complete", **summary.to_dict()}
        )
        return summary

    async def fan_out_alert(self, alert_id: str) -> FanOutSummary:
        """
        Notify every active user of an alert's organization.

        Runs at most once per alert; later calls return a skipped summary.
        """
        with get_db_session(self.session_factory) as db:
            alert = db.query(Alert).filter(Alert.id == alert_id).first()
            if alert is None:
                raise AlertNotFound(f"Alert {alert_id} not found")

            claimed = db.execute(
                update(Alert)
                .where(Alert.id == alert_id, Alert.notifications_dispatched == False)  # noqa: E712
                .values(notifications_dispatched=True)
            ).rowcount
            db.commit()

            organization_id = alert.organization_id
            title = alert.title
            body = alert.description
            severity = alert.severity
            push_data = {
                "alert_id": alert.id,
                "camera_id": alert.camera_id,
                "category": alert.category,
                "severity": alert.severity,
            }

        if not claimed:
            logger.debug(
                f"Alert {alert_id} already fanned out, skipping",
                extra={"alert_id": alert_id}
            )
            return FanOutSummary(
                ref_id=alert_id,
                notification_type="alert",
                organization_id=organization_id,
                skipped=True,
                skip_reason="already_dispatched",
            )

        return await self._fan_out(
            organization_id=organization_id,
            notification_type="alert",
            title=title,
            body=body,
            severity=severity,
            ref_id=alert_id,
            push=severity in PUSH_SEVERITIES,
            push_data=push_data,
        )

    async def fan_out_incident(
        self,
        organization_id: str,
        incident_id: str,
        title: str,
        body: str,
        severity: str = "critical",
    ) -> FanOutSummary:
        """Emergency mass notification: emergency_alert records for every active user."""
        return await self._fan_out(
            organization_id=organization_id,
            notification_type="emergency_alert",
            title=title,
            body=body,
            severity=severity,
            ref_id=incident_id,
            push=severity in PUSH_SEVERITIES,
            push_data={"incident_id": incident_id, "severity": severity},
        )

    async def send_system_notification(
        self,
        organization_id: str,
        title: str,
        body: str,
        severity: str = "low",
        push: bool = False,
    ) -> FanOutSummary:
        """Send a system notification (type 'system') to every active user."""
        return await self._fan_out(
            organization_id=organization_id,
            notification_type="system",
            title=title,
            body=body,
            severity=severity,
            ref_id=None,
            push=push,
        )
