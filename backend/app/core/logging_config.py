"""
Structured JSON Logging Configuration

Provides centralized logging configuration with:
- JSON formatted output for machine parsing
- Request ID and detection trace ID tracking via contextvars
- File rotation (app.log and error.log)
- Configurable log levels via environment
"""
import logging
import logging.handlers
import os
import contextvars
import re
from datetime import datetime, timezone
from typing import Optional
from pythonjsonlogger import jsonlogger

from app.core.config import settings

# Context variable for request ID propagation (set by RequestLoggingMiddleware)
request_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'request_id', default=None
)

# Context variable correlating every log line emitted while one detection
# moves through the pipeline (gate -> dedup -> record -> fan-out -> orchestrate)
trace_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'trace_id', default=None
)

APP_VERSION = "1.0.0"

LOG_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(__file__))), 'data', 'logs')


class ContextFilter(logging.Filter):
    """
    Logging filter that adds request_id and trace_id to all log records.

    Uses contextvars so logs from a single request or a single detection
    can be correlated even when many detections run concurrently.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get() or "-"
        record.trace_id = trace_id_var.get() or "-"
        return True


class SanitizingFilter(logging.Filter):
    """
    Filter that sanitizes log messages to prevent log injection attacks.

    Camera names, descriptions and other operator-supplied strings end up
    in log messages, so CR/LF are flattened before formatting.
    """

    DANGEROUS_PATTERNS = [
        (r'\r\n', ' '),
        (r'\n', ' '),
        (r'\r', ' '),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            for pattern, replacement in self.DANGEROUS_PATTERNS:
                record.msg = re.sub(pattern, replacement, record.msg)

        if record.args:
            sanitized_args = []
            for arg in record.args:
                if isinstance(arg, str):
                    sanitized = arg
                    for pattern, replacement in self.DANGEROUS_PATTERNS:
                        sanitized = re.sub(pattern, replacement, sanitized)
                    sanitized_args.append(sanitized)
                else:
                    sanitized_args.append(arg)
            record.args = tuple(sanitized_args)

        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter that adds standard fields to all log entries.

    Output format:
    {
        "timestamp": "2026-01-12T10:30:00.000000+00:00",
        "level": "INFO",
        "message": "Alert created",
        "module": "alert_recorder",
        "request_id": "uuid-here",
        "trace_id": "uuid-here",
        "logger": "app.services.alert_recorder",
        ...extra fields...
    }
    """

    def add_fields(
        self,
        log_record: dict,
        record: logging.LogRecord,
        message_dict: dict
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        if not log_record.get('timestamp'):
            log_record['timestamp'] = datetime.now(timezone.utc).isoformat()

        log_record['level'] = record.levelname
        log_record['module'] = record.module
        log_record['logger'] = record.name
        log_record['request_id'] = getattr(record, 'request_id', '-')
        log_record['trace_id'] = getattr(record, 'trace_id', '-')

        if record.funcName:
            log_record['function'] = record.funcName
        if record.lineno:
            log_record['line'] = record.lineno

        if 'message' not in log_record:
            log_record['message'] = record.getMessage()


def _build_handler(handler: logging.Handler, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(ContextFilter())
    handler.addFilter(SanitizingFilter())
    return handler


def setup_logging(
    log_level: Optional[str] = None,
    log_dir: Optional[str] = None,
    app_version: Optional[str] = None,
    enable_file_logging: bool = True,
) -> logging.Logger:
    """
    Configure application-wide logging with JSON format and rotation.

    Args:
        log_level: Override log level (default from settings.LOG_LEVEL)
        log_dir: Override log directory (default: backend/data/logs)
        app_version: Application version to include in startup logs
        enable_file_logging: Write rotating app.log/error.log files

    Returns:
        Root logger configured for the application
    """
    global APP_VERSION

    level = getattr(logging, (log_level or settings.LOG_LEVEL).upper(), logging.INFO)
    directory = log_dir or LOG_DIR
    if app_version:
        APP_VERSION = app_version

    json_formatter = CustomJsonFormatter(
        '%(timestamp)s %(level)s %(name)s %(message)s'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    root_logger.addHandler(_build_handler(logging.StreamHandler(), level, json_formatter))

    if enable_file_logging:
        os.makedirs(directory, exist_ok=True)

        # Max 100MB per file, keep 7 backups
        root_logger.addHandler(_build_handler(
            logging.handlers.RotatingFileHandler(
                os.path.join(directory, 'app.log'),
                maxBytes=100 * 1024 * 1024,
                backupCount=7,
                encoding='utf-8'
            ),
            level,
            json_formatter,
        ))

        # Error-only file for emergency action failures and persistence errors
        root_logger.addHandler(_build_handler(
            logging.handlers.RotatingFileHandler(
                os.path.join(directory, 'error.log'),
                maxBytes=50 * 1024 * 1024,
                backupCount=5,
                encoding='utf-8'
            ),
            logging.ERROR,
            json_formatter,
        ))

    # Suppress noisy third-party loggers
    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('httpcore').setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the application's configuration.

    Args:
        name: Logger name (typically __name__ from the calling module)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


def set_request_id(request_id: str) -> contextvars.Token:
    """Set the request ID for the current context."""
    return request_id_var.set(request_id)


def get_request_id() -> Optional[str]:
    """Get the current request ID from context."""
    return request_id_var.get()


def clear_request_id(token: contextvars.Token) -> None:
    """Clear the request ID context using the token from set_request_id."""
    request_id_var.reset(token)


def set_trace_id(trace_id: str) -> contextvars.Token:
    """Set the detection trace ID for the current context."""
    return trace_id_var.set(trace_id)


def clear_trace_id(token: contextvars.Token) -> None:
    """Reset the detection trace ID using the token from set_trace_id."""
    trace_id_var.reset(token)


def sanitize_log_value(value: str) -> str:
    """
    Sanitize a value for safe logging, preventing log injection.

    Args:
        value: String value to sanitize

    Returns:
        Sanitized string safe for logging
    """
    if not isinstance(value, str):
        return str(value)

    sanitized = value.replace('\r\n', ' ').replace('\n', ' ').replace('\r', ' ')

    max_length = 10000
    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length] + '...[truncated]'

    return sanitized
