"""Logging for notesauth.

Every module logs through a child of the ``notesauth`` logger
(``notesauth.auth``, ``notesauth.session``, ``notesauth.bridge``,
``notesauth.api``). The package logger owns a single stderr handler;
:func:`configure_from_settings` applies the ``log`` settings section.

OTPs, bearer tokens and federated credentials must never reach a log
record: request bodies and decoded claims go through
:func:`redact_sensitive_data` first.
"""

from __future__ import annotations

import logging
import re
import sys

from functools import lru_cache
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from .config import LogSettings


PACKAGE_LOGGER = "notesauth"
DEFAULT_FORMAT = "%(name)s - %(levelname)s - %(message)s"
REDACTED = "[REDACTED]"

_SENSITIVE_KEY = re.compile(r"otp|token|credential|secret|password|authorization", re.IGNORECASE)
_BEARER = re.compile(r"\bBearer\s+\S+", re.IGNORECASE)


@lru_cache(maxsize=1)
def get_logger() -> logging.Logger:
    """Return the ``notesauth`` package logger.

    The first call sets the level to WARNING and attaches a stderr
    handler; later calls return the same logger.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(logging.WARNING)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
    logger.addHandler(handler)
    return logger


def set_level(level: int | str) -> None:
    """Set the package log level (``logging.INFO`` or ``"info"``)."""
    if isinstance(level, str):
        name = level
        level = getattr(logging, name.upper(), None)
        if not isinstance(level, int):
            msg = f"Unknown log level: {name!r}"
            raise ValueError(msg)
    get_logger().setLevel(level)


def enable_debug() -> None:
    """Log API calls, storage access and bridge activity."""
    set_level(logging.DEBUG)


def configure_from_settings(settings: LogSettings) -> logging.Logger:
    """Apply the ``log`` settings section to the package logger.

    Parameters
    ----------
    settings : LogSettings
        Level and record format.

    Returns
    -------
    logging.Logger
        The configured package logger.
    """
    logger = get_logger()
    logger.setLevel(settings.level)
    formatter = logging.Formatter(settings.format)
    for handler in logger.handlers:
        handler.setFormatter(formatter)
    return logger


def redact_sensitive_data(data: Any, max_depth: int = 5) -> Any:
    """Return a copy of ``data`` that is safe to log.

    Values under keys naming an OTP, token, credential, secret, password
    or authorization header become ``[REDACTED]``, and bearer tokens
    inside strings are masked. Anything nested deeper than ``max_depth``
    becomes ``[MAX_DEPTH]``.

    Parameters
    ----------
    data : Any
        A request body, decoded claims, or any JSON-like value.
    max_depth : int
        Maximum nesting depth to traverse (default 5).
    """
    if max_depth <= 0:
        return "[MAX_DEPTH]"
    if isinstance(data, dict):
        return {
            key: REDACTED
            if _SENSITIVE_KEY.search(str(key))
            else redact_sensitive_data(value, max_depth - 1)
            for key, value in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [redact_sensitive_data(item, max_depth - 1) for item in data]
    if isinstance(data, str):
        return _BEARER.sub(f"Bearer {REDACTED}", data)
    return data
