"""
Unit tests for structured logging helpers.
"""

import logging

import pytest
import structlog

from shared.logging import (
    add_correlation_context,
    add_service_context,
    clear_context,
    configure_logging,
    get_logger,
    redact,
    set_request_id,
    set_user_context,
)


@pytest.fixture(autouse=True)
def reset_context():
    clear_context()
    structlog.contextvars.clear_contextvars()
    yield
    clear_context()
    structlog.contextvars.clear_contextvars()


class TestLoggingHelpers:

    def test_redact_keeps_prefix_only(self):
        assert redact("abcdefghijkl") == "abcdef..."
        assert redact("") == ""
        assert redact(None) == ""

    def test_correlation_context_redacts_session(self):
        request_id = set_request_id()
        set_user_context(user_id="u1", session_id="session-secret-value")

        event = add_correlation_context(None, "info", {"event": "x"})

        assert event["request_id"] == request_id
        assert event["user_id"] == "u1"
        assert event["session"] == "sessio..."
        assert "session-secret-value" not in event.values()

    def test_cleared_context_adds_nothing(self):
        event = add_correlation_context(None, "info", {"event": "x"})

        assert event == {"event": "x"}

    def test_service_falls_back_to_logger_name(self):
        event = add_service_context(None, "info", {"event": "x", "logger": "identity.cache"})

        assert event["service"] == "identity"

    def test_service_taken_from_bound_context(self):
        structlog.contextvars.bind_contextvars(service="session")

        event = add_service_context(None, "info", {"event": "x", "logger": "identity.cache"})

        assert event["service"] == "session"

    def test_configured_logger_emits_json(self, caplog):
        configure_logging("identity-test", "debug")
        caplog.set_level(logging.DEBUG)

        get_logger("identity.test").info("Configured", key="value")

        assert '"key": "value"' in caplog.text
        assert '"service": "identity-test"' in caplog.text
