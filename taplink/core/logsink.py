"""Route every taplink log record to one host-provided callback."""

from __future__ import annotations

import logging
from collections.abc import Callable

ROOT_LOGGER_NAME = "taplink"


class CallbackHandler(logging.Handler):
    def __init__(self, callback: Callable[[str], None], level: int = logging.INFO) -> None:
        super().__init__(level=level)
        self.callback = callback
        self.setFormatter(logging.Formatter("%(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.callback(self.format(record))
        except Exception:
            self.handleError(record)


def attach(callback: Callable[[str], None], level: int = logging.INFO) -> CallbackHandler:
    handler = CallbackHandler(callback, level=level)
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.addHandler(handler)
    if logger.level == logging.NOTSET or logger.level > level:
        logger.setLevel(level)
    return handler


def detach(handler: CallbackHandler) -> None:
    logging.getLogger(ROOT_LOGGER_NAME).removeHandler(handler)
