"""Process-wide logging with a small, swappable line logger."""

from __future__ import annotations

import sys
import threading
import time
from typing import Any, Dict, Mapping, Optional, Protocol, TextIO


class LineLogger(Protocol):
    """Anything that can print formatted log lines."""

    def printf(self, fmt: str, *args: Any) -> None: ...


class StderrLogger:
    """Writes log lines to a text stream, standard error by default."""

    def __init__(self, stream: Optional[TextIO] = None, timestamps: bool = True) -> None:
        self._stream = stream
        self._timestamps = timestamps
        self._lock = threading.Lock()
        self.config: Dict[str, Any] = {}

    def name(self) -> str:
        """Return the provider name."""
        return "stderr"

    def configure(self, config: Optional[Mapping[str, Any]]) -> None:
        """Keep the configuration; this logger has no settings that change its output."""
        self.config = dict(config or {})

    def printf(self, fmt: str, *args: Any) -> None:
        """Format a line with %-style arguments and write it."""
        message = fmt % args if args else fmt
        if self._timestamps:
            message = time.strftime("%Y/%m/%d %H:%M:%S ") + message
        stream = self._stream if self._stream is not None else sys.stderr
        with self._lock:
            stream.write(message + "\n")
            stream.flush()


_logger: LineLogger = StderrLogger()


def get_logger() -> LineLogger:
    """Return the logger currently in use."""
    return _logger


def set_logger(logger: LineLogger) -> LineLogger:
    """Replace the logger in use and return the previous one."""
    global _logger
    previous, _logger = _logger, logger
    return previous


def log_error(context: str, action: str, err: BaseException) -> None:
    """Log an error raised while performing an action."""
    _logger.printf("[%s] error during %s (%s)", context, action, str(err))


def log_action(context: str, action: str) -> None:
    """Log an action under a context tag."""
    _logger.printf("[%s] %s", context, action)


def log_target(context: str, action: str, target: Any) -> None:
    """Log an action together with the object it concerns."""
    _logger.printf("[%s] %s (%s)", context, action, target)