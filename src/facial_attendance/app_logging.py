"""Logging configuration helpers."""

import logging

_PACKAGE_LOGGER = "facial_attendance"
# websockets logs every frame at DEBUG
_NOISY_LOGGERS = ("websockets",)


def configure_logging(level: int | str = logging.INFO) -> None:
    """Configure client logging with a single stream handler."""
    logger = logging.getLogger(_PACKAGE_LOGGER)
    logger.setLevel(level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    if logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(levelname)s: %(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.propagate = False
