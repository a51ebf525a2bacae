"""Tests for sensitive data filtering in logs."""

from __future__ import annotations

import json
import logging
from io import StringIO

import pytest

from reqthrottle.core.logging import (
    JsonFormatter,
    RequestIdFilter,
    SensitiveDataFilter,
    clear_request_id,
    get_or_create_request_id,
    set_request_id,
)


@pytest.fixture
def capture():
    """Yield a logger wired to a JSON handler and a function returning its output."""

    logger = logging.getLogger("test_redaction")
    logger.setLevel(logging.INFO)
    logger.propagate = False
    logger.handlers.clear()

    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)

    yield logger, stream.getvalue

    logger.handlers.clear()
    clear_request_id()


def test_sensitive_filter_redacts_api_keys(capture):
    logger, output = capture

    logger.info(
        "auth.invalid_key",
        extra={
            "api_key": "sk-secret-123",
            "x-api-key": "another-secret",
            "Authorization": "Bearer abc",
            "safe_field": "visible",
        },
    )

    text = output()
    assert "sk-secret-123" not in text
    assert "another-secret" not in text
    assert "Bearer abc" not in text
    assert "[REDACTED]" in text
    assert "visible" in text


def test_throttle_fields_pass_through(capture):
    """Block events keep the scope fields operators need."""
    logger, output = capture

    logger.warning(
        "throttle.blocked",
        extra={
            "client_ip": "203.0.113.9",
            "endpoint": "/api/values",
            "limit": 5,
            "period": "minute",
            "retry_after_s": 42,
        },
    )

    document = json.loads(output())
    assert document["message"] == "throttle.blocked"
    assert document["level"] == "warning"
    assert document["client_ip"] == "203.0.113.9"
    assert document["limit"] == 5
    assert document["retry_after_s"] == 42
    assert "[REDACTED]" not in output()


def test_sensitive_filter_redacts_nested_dicts(capture):
    logger, output = capture

    logger.info(
        "nested_event",
        extra={
            "headers": {
                "x-api-key": "secret-key",
                "cookie": "session=abc",
                "user-agent": "pytest",
            },
        },
    )

    text = output()
    assert "secret-key" not in text
    assert "session=abc" not in text
    assert "pytest" in text


def test_request_id_from_context(capture):
    logger, output = capture
    set_request_id("req-123")

    logger.info("throttle.configured")

    assert json.loads(output())["request_id"] == "req-123"


def test_exception_is_formatted(capture):
    logger, output = capture

    try:
        raise RuntimeError("sink down")
    except RuntimeError:
        logger.exception("throttle.log_sink_failed")

    document = json.loads(output())
    assert "RuntimeError: sink down" in document["exc_info"]


def test_get_or_create_request_id():
    clear_request_id()
    generated = get_or_create_request_id()

    assert generated
    assert get_or_create_request_id() != generated

    set_request_id("req-abc")
    assert get_or_create_request_id() == "req-abc"
    clear_request_id()
