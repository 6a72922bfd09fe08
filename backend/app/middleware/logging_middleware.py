"""
Request Logging Middleware

Middleware that:
- Reuses the caller's X-Request-ID (camera gateways send one) or generates one
- Logs request start and end with timing and the organization being addressed
- Propagates request_id to all logs via contextvars
- Records HTTP metrics for Prometheus
"""
import re
import time
import uuid
import logging
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.core.logging_config import set_request_id, clear_request_id, get_request_id
from app.core.metrics import record_request_metrics

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def _inbound_request_id(request: Request) -> Optional[str]:
    value = request.headers.get(REQUEST_ID_HEADER)
    if value and _REQUEST_ID_PATTERN.match(value):
        return value
    return None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs every HTTP request with timing and a correlation id.

    The request id is returned in the X-Request-ID response header so a
    resubmitted detection can be matched to the failed attempt in the logs.
    """

    # Paths to exclude from detailed logging (health checks, etc.)
    EXCLUDED_PATHS = {'/health', '/metrics', '/docs', '/redoc', '/openapi.json'}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = _inbound_request_id(request) or str(uuid.uuid4())
        token = set_request_id(request_id)
        request.state.request_id = request_id

        start_time = time.perf_counter()
        method = request.method
        path = request.url.path
        client_host = request.client.host if request.client else "unknown"
        organization_id = request.query_params.get("organization_id")
        should_log = path not in self.EXCLUDED_PATHS

        if should_log:
            logger.info(
                f"{method} {path}",
                extra={
                    "event_type": "request_start",
                    "method": method,
                    "path": path,
                    "client_ip": client_host,
                    "organization_id": organization_id,
                }
            )

        try:
            response = await call_next(request)
        except Exception as e:
            response_time_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                f"{method} {path} failed: {type(e).__name__}",
                extra={
                    "event_type": "request_error",
                    "method": method,
                    "path": path,
                    "response_time_ms": round(response_time_ms, 2),
                    "organization_id": organization_id,
                    "error_type": type(e).__name__,
                },
                exc_info=True
            )
            record_request_metrics(method, path, 500, response_time_ms / 1000)
            clear_request_id(token)
            raise

        response_time_ms = (time.perf_counter() - start_time) * 1000
        response.headers[REQUEST_ID_HEADER] = request_id

        if should_log:
            log_level = logging.INFO
            if response.status_code >= 500:
                log_level = logging.ERROR
            elif response.status_code >= 400:
                log_level = logging.WARNING
            logger.log(
                log_level,
                f"{method} {path} -> {response.status_code}",
                extra={
                    "event_type": "request_complete",
                    "method": method,
                    "path": path,
                    "status_code": response.status_code,
                    "response_time_ms": round(response_time_ms, 2),
                    "organization_id": organization_id,
                }
            )

        record_request_metrics(method, path, response.status_code, response_time_ms / 1000)
        clear_request_id(token)
        return response


def get_current_request_id() -> str:
    """Current request ID, or "no-request" outside a request."""
    return get_request_id() or "no-request"
