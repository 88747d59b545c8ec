"""Tests for logging helpers."""

from __future__ import annotations

import logging

import pytest

from notesauth.config import LogSettings
from notesauth.log import (
    configure_from_settings,
    enable_debug,
    get_logger,
    redact_sensitive_data,
    set_level,
)


class TestRedaction:
    """redact_sensitive_data()."""

    def test_sensitive_keys_redacted(self) -> None:
        """OTPs, tokens and credentials never reach the log."""
        data = {"email": "a@x.com", "otp": "123456", "token": "jwt", "google_credential": "raw"}
        assert redact_sensitive_data(data) == {
            "email": "a@x.com",
            "otp": "[REDACTED]",
            "token": "[REDACTED]",
            "google_credential": "[REDACTED]",
        }

    def test_nested(self) -> None:
        """Redaction reaches into nested dicts and lists."""
        data = {"items": [{"Authorization": "Bearer x", "name": "n"}]}
        assert redact_sensitive_data(data) == {
            "items": [{"Authorization": "[REDACTED]", "name": "n"}]
        }

    def test_passthrough(self) -> None:
        """Scalars and None pass through unchanged."""
        assert redact_sensitive_data(None) is None
        assert redact_sensitive_data("plain") == "plain"

    def test_bearer_in_string(self) -> None:
        """Bearer tokens embedded in messages are masked."""
        assert redact_sensitive_data("sent Bearer abc.def to /me") == "sent Bearer [REDACTED] to /me"

    def test_depth_limit(self) -> None:
        """Deep structures are cut off."""
        assert redact_sensitive_data({"a": {"b": 1}}, max_depth=1) == {"a": "[MAX_DEPTH]"}


class TestLevels:
    """set_level(), enable_debug() and configure_from_settings()."""

    def test_levels(self) -> None:
        """The package logger level can be changed by name or number."""
        logger = get_logger()
        previous = logger.level
        try:
            set_level("info")
            assert logger.level == logging.INFO
            enable_debug()
            assert logger.level == logging.DEBUG
            set_level(logging.ERROR)
            assert logger.level == logging.ERROR
        finally:
            logger.setLevel(previous)

    def test_configure_from_settings(self) -> None:
        """The log section sets level and format."""
        logger = get_logger()
        previous = logger.level
        try:
            configured = configure_from_settings(LogSettings(level="INFO", format="%(message)s"))
            assert configured is logger
            assert logger.name == "notesauth"
            assert logger.level == logging.INFO
            assert all(h.formatter._fmt == "%(message)s" for h in logger.handlers)  # pylint: disable=protected-access
        finally:
            logger.setLevel(previous)
            configure_from_settings(LogSettings())

    def test_unknown_level_rejected(self) -> None:
        """A misspelled level name names itself in the error."""
        with pytest.raises(ValueError, match="Unknown log level: 'bogus'"):
            set_level("bogus")


class TestHandler:
    """The package stderr handler."""

    def test_writes_to_current_stderr(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Records reach this test's stderr even after earlier tests logged."""
        get_logger().warning("session %s restored", "alice")
        assert "notesauth - WARNING - session alice restored" in capsys.readouterr().err
