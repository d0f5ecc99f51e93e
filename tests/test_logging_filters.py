"""Tests for sensitive data filtering in logs."""

from __future__ import annotations

import json
import logging
from io import StringIO

import pytest

from anonchat.core.logging import (
    JsonFormatter,
    RequestContextFilter,
    SensitiveDataFilter,
    clear_request_context,
    fingerprint,
    set_client_ip_hash,
    set_request_id,
)


@pytest.fixture
def log_stream():
    logger = logging.getLogger("test_redaction")
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    logger.propagate = False

    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(RequestContextFilter())
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)

    yield logger, stream

    logger.handlers.clear()
    clear_request_context()


def test_sensitive_filter_redacts_api_keys(log_stream):
    logger, stream = log_stream

    logger.info(
        "test_event",
        extra={
            "api_key": "sk-secret-123",
            "x-api-key": "another-secret",
            "safe_field": "visible",
        },
    )

    output = stream.getvalue()
    assert "sk-secret-123" not in output
    assert "another-secret" not in output
    assert "[REDACTED]" in output
    assert "visible" in output


def test_sensitive_filter_redacts_client_identity(log_stream):
    """Raw addresses, user agents and cookies never reach the log."""
    logger, stream = log_stream

    logger.info(
        "session.created",
        extra={
            "ip": "203.0.113.7",
            "user_agent": "Mozilla/5.0 (X11; Linux x86_64)",
            "headers": {"cookie": "anon_session_id=anon_abc", "x-forwarded-for": "203.0.113.7"},
            "trust_level": "NEW",
        },
    )

    output = stream.getvalue()
    assert "203.0.113.7" not in output
    assert "Mozilla" not in output
    assert "anon_abc" not in output
    assert "NEW" in output


def test_sensitive_filter_allows_safe_fields(log_stream):
    logger, stream = log_stream

    logger.info(
        "safe_event",
        extra={
            "route": "/v1/session",
            "status": 200,
            "duration_ms": 150.5,
            "window": "anti_spam",
        },
    )

    payload = json.loads(stream.getvalue())
    assert payload["route"] == "/v1/session"
    assert payload["status"] == 200
    assert payload["window"] == "anti_spam"
    assert "[REDACTED]" not in stream.getvalue()


def test_request_context_is_attached(log_stream):
    logger, stream = log_stream
    set_request_id("req-123")
    set_client_ip_hash("a1b2c3")

    logger.info("rate_limit.exceeded")

    payload = json.loads(stream.getvalue())
    assert payload["request_id"] == "req-123"
    assert payload["ip_hash"] == "a1b2c3"
    assert payload["message"] == "rate_limit.exceeded"


def test_fingerprint_is_short_and_stable():
    first = fingerprint("anon_0123456789")

    assert first == fingerprint("anon_0123456789")
    assert len(first) == 16
    assert "anon_" not in first
    assert fingerprint("") is None
    assert fingerprint(None) is None
