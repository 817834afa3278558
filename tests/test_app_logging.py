"""Tests for logging configuration."""

import logging

from facial_attendance.app_logging import configure_logging


def test_configure_logging_idempotent() -> None:
    logger = logging.getLogger("facial_attendance")
    logger.handlers.clear()

    configure_logging()
    first_count = len(logger.handlers)

    configure_logging()
    second_count = len(logger.handlers)

    assert first_count == 1
    assert second_count == 1
    assert logger.propagate is False


def test_configure_logging_applies_level() -> None:
    logger = logging.getLogger("facial_attendance")
    logger.handlers.clear()

    configure_logging("DEBUG")

    assert logger.level == logging.DEBUG
    assert logging.getLogger("websockets").level == logging.WARNING

    configure_logging()
    assert logger.level == logging.INFO
    assert len(logger.handlers) == 1
