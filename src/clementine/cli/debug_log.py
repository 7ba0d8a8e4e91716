"""Logging setup for the CLI and the rolling buffer behind the --verbose debug panel."""

from __future__ import annotations

import logging
from collections import deque

DEFAULT_CAPACITY = 10


class RollingLogHandler(logging.Handler):
    """Keeps the last ``capacity`` formatted records in memory."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY, level: int = logging.DEBUG) -> None:
        super().__init__(level)
        self._lines: deque[str] = deque(maxlen=max(1, capacity))
        self.setFormatter(logging.Formatter("[%(asctime)s] %(message)s", datefmt="%H:%M:%S"))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._lines.append(self.format(record))
        except Exception:
            self.handleError(record)

    def lines(self) -> list[str]:
        return list(self._lines)


def configure_logging(verbose: bool, capacity: int = DEFAULT_CAPACITY) -> RollingLogHandler | None:
    """Warnings go to stderr. With ``verbose`` the package logs DEBUG into a rolling buffer."""
    root = logging.getLogger()
    stderr_handler = logging.StreamHandler()
    stderr_handler.setLevel(logging.WARNING)
    stderr_handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    root.addHandler(stderr_handler)
    root.setLevel(logging.WARNING)

    if not verbose:
        return None

    handler = RollingLogHandler(capacity)
    package_logger = logging.getLogger("clementine")
    package_logger.setLevel(logging.DEBUG)
    package_logger.addHandler(handler)
    package_logger.info("Clementine app initialized")
    return handler
