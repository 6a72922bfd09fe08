"""
Tests for the request logging middleware
"""
import uuid

from app.middleware.logging_middleware import RequestLoggingMiddleware, _inbound_request_id


class TestRequestId:
    def test_generated_when_absent(self, api_client):
        response = api_client.get("/")

        uuid.UUID(response.headers["X-Request-ID"])

    def test_valid_inbound_id_reused(self, api_client):
        response = api_client.get("/", headers={"X-Request-ID": "cam-gw.7_abc"})

        assert response.headers["X-Request-ID"] == "cam-gw.7_abc"

    def test_invalid_inbound_id_replaced(self, api_client):
        response = api_client.get("/", headers={"X-Request-ID": "bad id; drop table"})

        assert response.headers["X-Request-ID"] != "bad id; drop table"
        uuid.UUID(response.headers["X-Request-ID"])

    def test_health_excluded_from_request_logs(self):
        assert "/health" in RequestLoggingMiddleware.EXCLUDED_PATHS


class TestInboundRequestId:
    def test_length_limit(self):
        class FakeRequest:
            headers = {"X-Request-ID": "a" * 65}

        assert _inbound_request_id(FakeRequest()) is None
