"""Tests for settings validation, JSON logging and the inbound rate-limit key."""

import json
import logging

import pytest
from starlette.requests import Request

from docsense.core.config import settings, validate_settings_for_production
from docsense.core.logging import EventTextFormatter, JSONFormatter
from docsense.core.rate_limit import client_key
from docsense.gateway.types import GatewayConfig, QueueConfig, RetryPolicy


def make_request(headers: dict[str, str], client_host: str = "10.0.0.5") -> Request:
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/api/v1/process",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
        "client": (client_host, 12345),
    }
    return Request(scope)


class TestSettings:
    def test_development_defaults_pass(self):
        validate_settings_for_production()

    def test_production_requires_key_and_origins(self, monkeypatch):
        monkeypatch.setattr(settings, "app_env", "production")
        monkeypatch.setattr(settings, "llm_api_key", "")
        monkeypatch.setattr(settings, "allowed_origins", "*")
        with pytest.raises(SystemExit) as exc_info:
            validate_settings_for_production()
        assert "LLM_API_KEY" in str(exc_info.value)
        assert "ALLOWED_ORIGINS" in str(exc_info.value)

    def test_queue_limits_validated(self, monkeypatch):
        monkeypatch.setattr(settings, "queue_concurrency", 0)
        with pytest.raises(SystemExit, match="QUEUE_CONCURRENCY"):
            validate_settings_for_production()

    def test_gateway_types_from_settings(self):
        assert GatewayConfig.from_settings(settings).model == settings.llm_model
        assert RetryPolicy.from_settings(settings).max_attempts == settings.retry_max_attempts
        queue = QueueConfig.from_settings(settings)
        assert queue.interval_ms == settings.queue_interval_ms
        assert queue.hold_slot_during_backoff == settings.queue_hold_slot_during_backoff


class TestJSONFormatter:
    def test_extra_fields_included(self):
        record = logging.makeLogRecord(
            {
                "name": "docsense.gateway.retry",
                "levelno": logging.WARNING,
                "levelname": "WARNING",
                "msg": "Retrying request %s",
                "args": ("abc",),
                "event": "retry_wait",
                "request_id": "abc",
                "wait_ms": 250,
            }
        )
        data = json.loads(JSONFormatter().format(record))
        assert data["message"] == "Retrying request abc"
        assert data["level"] == "WARNING"
        assert data["event"] == "retry_wait"
        assert data["request_id"] == "abc"
        assert data["wait_ms"] == 250
        assert "args" not in data
        assert "msg" not in data


class TestClientKey:
    def test_forwarded_for_first_hop(self):
        assert client_key(make_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})) == "203.0.113.7"

    def test_falls_back_to_remote_address(self):
        assert client_key(make_request({})) == "10.0.0.5"


class TestEventTextFormatter:
    def test_appends_event_and_request_id(self):
        record = logging.makeLogRecord({"msg": "Enqueued", "event": "enqueue", "request_id": "abc123"})
        assert EventTextFormatter("%(message)s").format(record) == "Enqueued [enqueue abc123]"

    def test_plain_record_untouched(self):
        record = logging.makeLogRecord({"msg": "Starting"})
        assert EventTextFormatter("%(message)s").format(record) == "Starting"
