"""
Messaging gateway client (push, email, SMS).

Delivery itself belongs to an external gateway. HttpMessagingGateway posts
`{title, body, targets}` to it; LoggingMessagingGateway is used when no
gateway URL is configured and only logs what would have been sent.

Sends are fire-and-forget with a success/failure result. The gateway owns
retry policy, so only connection failures are retried here.
"""
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional

import httpx

from app.core.config import settings
from app.core.retry import RETRY_GATEWAY, retry_async

logger = logging.getLogger(__name__)

USER_AGENT = "Sentryline-Messaging/1.0"
MAX_ERROR_LENGTH = 500
# Messages kept by LoggingMessagingGateway for inspection
RECENT_MESSAGE_LIMIT = 100


@dataclass
class GatewayResult:
    """
    Result of one gateway send.

    Attributes:
        success: Gateway accepted the message
        channel: push, email or sms
        targets: Recipient ids, addresses or numbers
        status_code: HTTP status (0 when no response)
        error: Failure detail
        response_time_ms: Round trip time
    """

    success: bool
    channel: str
    targets: List[str] = field(default_factory=list)
    status_code: int = 0
    error: Optional[str] = None
    response_time_ms: int = 0


class MessagingGateway:
    """Interface for the external messaging gateway."""

    async def send_push(
        self,
        title: str,
        body: str,
        target_user_ids: List[str],
        data: Optional[Dict[str, Any]] = None,
    ) -> GatewayResult:
        raise NotImplementedError

    async def send_email(self, subject: str, body: str, recipients: List[str]) -> GatewayResult:
        raise NotImplementedError

    async def send_sms(self, message: str, phone_numbers: List[str]) -> GatewayResult:
        raise NotImplementedError


class LoggingMessagingGateway(MessagingGateway):
    """
    Gateway used when none is configured: logs the message and reports success.

    The most recent RECENT_MESSAGE_LIMIT messages are kept in `sent`.
    """

    def __init__(self):
        self.sent: Deque[Dict[str, Any]] = deque(maxlen=RECENT_MESSAGE_LIMIT)

    def _log(self, channel: str, title: str, targets: List[str]) -> GatewayResult:
        self.sent.append({"channel": channel, "title": title, "targets": list(targets)})
        logger.info(
            f"[{channel}] {title} -> {len(targets)} target(s) (no gateway configured)",
            extra={"event_type": "message_logged", "channel": channel, "target_count": len(targets)}
        )
        return GatewayResult(success=True, channel=channel, targets=list(targets))

    async def send_push(self, title, body, target_user_ids, data=None) -> GatewayResult:
        return self._log("push", title, target_user_ids)

    async def send_email(self, subject, body, recipients) -> GatewayResult:
        return self._log("email", subject, recipients)

    async def send_sms(self, message, phone_numbers) -> GatewayResult:
        return self._log("sms", message[:60], phone_numbers)


class HttpMessagingGateway(MessagingGateway):
    """
    HTTP client for the messaging gateway.

    Posts JSON to `{base_url}/push`, `{base_url}/email` and `{base_url}/sms`.

    Attributes:
        base_url: Gateway base URL
        token: Bearer token, if the gateway requires one
        http_client: Shared httpx AsyncClient (created per call if not provided)
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.http_client = http_client
        self.timeout = timeout or settings.MESSAGING_GATEWAY_TIMEOUT_SECONDS

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _post(self, channel: str, payload: Dict[str, Any], targets: List[str]) -> GatewayResult:
        url = f"{self.base_url}/{channel}"
        client = self.http_client or httpx.AsyncClient()
        should_close_client = self.http_client is None
        start_time = time.time()

        try:
            response = await retry_async(
                client.post,
                url,
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
                config=RETRY_GATEWAY,
                operation_name=f"messaging_{channel}",
            )
            response_time_ms = int((time.time() - start_time) * 1000)
            success = 200 <= response.status_code < 300
            error = None if success else f"HTTP {response.status_code}: {response.text[:MAX_ERROR_LENGTH]}"
            return GatewayResult(
                success=success,
                channel=channel,
                targets=list(targets),
                status_code=response.status_code,
                error=error,
                response_time_ms=response_time_ms,
            )

        except httpx.TimeoutException:
            return GatewayResult(
                success=False,
                channel=channel,
                targets=list(targets),
                error="Request timeout",
                response_time_ms=int((time.time() - start_time) * 1000),
            )

        except httpx.RequestError as e:
            return GatewayResult(
                success=False,
                channel=channel,
                targets=list(targets),
                error=f"Request error: {str(e)[:MAX_ERROR_LENGTH]}",
                response_time_ms=int((time.time() - start_time) * 1000),
            )

        finally:
            if should_close_client:
                await client.aclose()

    async def send_push(self, title, body, target_user_ids, data=None) -> GatewayResult:
        return await self._post(
            "push",
            {"title": title, "body": body, "targets": list(target_user_ids), "data": data or {}},
            target_user_ids,
        )

    async def send_email(self, subject, body, recipients) -> GatewayResult:
        return await self._post(
            "email",
            {"title": subject, "body": body, "targets": list(recipients)},
            recipients,
        )

    async def send_sms(self, message, phone_numbers) -> GatewayResult:
        return await self._post(
            "sms",
            {"title": "", "body": message, "targets": list(phone_numbers)},
            phone_numbers,
        )


def create_messaging_gateway(http_client: Optional[httpx.AsyncClient] = None) -> MessagingGateway:
    """Build the gateway from settings."""
    if settings.MESSAGING_GATEWAY_URL:
        return HttpMessagingGateway(
            base_url=settings.MESSAGING_GATEWAY_URL,
            token=settings.MESSAGING_GATEWAY_TOKEN,
            http_client=http_client,
        )
    return LoggingMessagingGateway()
