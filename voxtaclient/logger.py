"""Shows warnings and errors of the package in an on-screen display."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

LOGGER_NAME = "voxtaclient"
DISPLAY_SECONDS = 10.0
WARNING_COLOR = "orange"
ERROR_COLOR = "red"

Display = Callable[[str, str, float], None]

_VERBOSITY_NAMES = {
    logging.WARNING: "Warning",
    logging.ERROR: "Error",
    logging.CRITICAL: "Fatal",
}


def _belongs_to_package(name: str) -> bool:
    return name == LOGGER_NAME or name.startswith(LOGGER_NAME + ".")


class OnScreenLogHandler(logging.Handler):
    """Passes warnings and errors of the package's log to a display callback.

    The display receives the formatted text, a colour name and how many
    seconds the text should stay visible.
    """

    def __init__(self, display: Display) -> None:
        super().__init__()
        self.display = display

    def emit(self, record: logging.LogRecord) -> None:
        if not _belongs_to_package(record.name) or record.levelno < logging.WARNING:
            return
        color = WARNING_COLOR if record.levelno < logging.ERROR else ERROR_COLOR
        verbosity = _VERBOSITY_NAMES.get(record.levelno, record.levelname.capitalize())
        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")
        try:
            text = f"[{verbosity}]: {timestamp} -> {record.getMessage()}"
            self.display(text, color, DISPLAY_SECONDS)
        except Exception:
            self.handleError(record)


def register_logger(display: Display) -> OnScreenLogHandler:
    """Attach an on-screen handler to the package's logger and return it."""
    handler = OnScreenLogHandler(display)
    logging.getLogger(LOGGER_NAME).addHandler(handler)
    return handler


def unregister_logger(handler: OnScreenLogHandler) -> None:
    """Detach a handler added by register_logger."""
    logging.getLogger(LOGGER_NAME).removeHandler(handler)