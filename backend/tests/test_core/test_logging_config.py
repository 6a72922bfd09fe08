"""
Unit tests for logging configuration
"""
import json
import logging
import os
import uuid

from app.core.logging_config import (
    setup_logging,
    get_logger,
    set_request_id,
    get_request_id,
    clear_request_id,
    set_trace_id,
    clear_trace_id,
    trace_id_var,
    sanitize_log_value,
    CustomJsonFormatter,
    ContextFilter,
    SanitizingFilter,
)


def _record(msg="Test message", args=(), name="test"):
    return logging.LogRecord(
        name=name,
        level=logging.INFO,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=args,
        exc_info=None
    )


class TestRequestIdContext:
    """Test request ID context variable functionality"""

    def test_set_and_get_request_id(self):
        test_id = str(uuid.uuid4())
        token = set_request_id(test_id)

        assert get_request_id() == test_id

        clear_request_id(token)

    def test_clear_request_id_resets_context(self):
        """clear_request_id should reset to previous value"""
        original_id = str(uuid.uuid4())
        token1 = set_request_id(original_id)

        new_id = str(uuid.uuid4())
        token2 = set_request_id(new_id)
        assert get_request_id() == new_id

        clear_request_id(token2)
        assert get_request_id() == original_id

        clear_request_id(token1)


class TestTraceIdContext:
    """Detection trace ids are independent of request ids"""

    def test_set_and_clear_trace_id(self):
        token = set_trace_id("trace-1")
        assert trace_id_var.get() == "trace-1"

        clear_trace_id(token)
        assert trace_id_var.get() is None


class TestContextFilter:
    """Test the request/trace id logging filter"""

    def test_filter_adds_ids_to_record(self):
        request_token = set_request_id("req-1")
        trace_token = set_trace_id("trace-1")
        record = _record()

        try:
            assert ContextFilter().filter(record) is True
            assert record.request_id == "req-1"
            assert record.trace_id == "trace-1"
        finally:
            clear_trace_id(trace_token)
            clear_request_id(request_token)

    def test_filter_uses_dash_when_unset(self):
        record = _record()

        ContextFilter().filter(record)

        assert record.request_id == "-"
        assert record.trace_id == "-"


class TestSanitizingFilter:
    """Test log sanitization filter"""

    def test_filter_removes_newlines(self):
        record = _record("Line 1\nLine 2\nLine 3")

        SanitizingFilter().filter(record)

        assert record.msg == "Line 1 Line 2 Line 3"

    def test_filter_removes_crlf(self):
        record = _record("Line 1\r\nLine 2")

        SanitizingFilter().filter(record)

        assert record.msg == "Line 1 Line 2"

    def test_filter_sanitizes_args(self):
        """Camera names arrive as args and must not split log lines"""
        record = _record("Camera: %s", args=("Lobby\nFAKE ENTRY",))

        SanitizingFilter().filter(record)

        assert "\n" not in record.args[0]


class TestSanitizeLogValue:
    """Test sanitize_log_value helper function"""

    def test_sanitize_removes_newlines(self):
        assert sanitize_log_value("hello\nworld") == "hello world"

    def test_sanitize_truncates_long_strings(self):
        long_string = "a" * 20000
        result = sanitize_log_value(long_string)

        assert len(result) < len(long_string)
        assert "[truncated]" in result

    def test_sanitize_handles_non_strings(self):
        assert sanitize_log_value(12345) == "12345"


class TestCustomJsonFormatter:
    """Test custom JSON log formatter"""

    def test_formatter_produces_valid_json(self):
        formatter = CustomJsonFormatter()
        record = _record(name="app.services.alert_recorder")
        record.request_id = "req-uuid"
        record.trace_id = "trace-uuid"

        parsed = json.loads(formatter.format(record))

        assert "timestamp" in parsed
        assert parsed["level"] == "INFO"
        assert parsed["message"] == "Test message"
        assert parsed["logger"] == "app.services.alert_recorder"
        assert parsed["request_id"] == "req-uuid"
        assert parsed["trace_id"] == "trace-uuid"

    def test_formatter_includes_extra_fields(self):
        formatter = CustomJsonFormatter()
        record = _record("Detection recorded")
        record.detection_event_id = "event-456"
        record.confidence = 0.82

        parsed = json.loads(formatter.format(record))

        assert parsed.get("detection_event_id") == "event-456"
        assert parsed.get("confidence") == 0.82

    def test_formatter_defaults_ids_to_dash(self):
        parsed = json.loads(CustomJsonFormatter().format(_record()))

        assert parsed["request_id"] == "-"
        assert parsed["trace_id"] == "-"


class TestSetupLogging:
    """Test logging setup function"""

    def test_setup_logging_returns_logger(self):
        logger = setup_logging(log_level="INFO", enable_file_logging=False)

        assert isinstance(logger, logging.Logger)

    def test_setup_logging_respects_log_level(self):
        setup_logging(log_level="WARNING", enable_file_logging=False)

        assert logging.getLogger().level == logging.WARNING

        # Reset to INFO for other tests
        setup_logging(log_level="INFO", enable_file_logging=False)

    def test_setup_logging_writes_rotating_files(self, tmp_path):
        log_dir = str(tmp_path / "logs")

        setup_logging(log_level="INFO", log_dir=log_dir)
        logging.getLogger("app.test").error("emergency action failed")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert os.path.exists(os.path.join(log_dir, "app.log"))
        with open(os.path.join(log_dir, "error.log"), encoding="utf-8") as f:
            assert "emergency action failed" in f.read()

        setup_logging(log_level="INFO", enable_file_logging=False)


class TestGetLogger:
    """Test get_logger helper function"""

    def test_get_logger_returns_logger_instance(self):
        logger = get_logger("test.module")

        assert isinstance(logger, logging.Logger)
        assert logger.name == "test.module"
