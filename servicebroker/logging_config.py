from __future__ import annotations

import logging
import os
import sys
from typing import IO, Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Attributes handed over through ``extra=`` on failed-request log entries.
CONTEXT_FIELDS = ("request", "error")

_ANSI = {
    logging.DEBUG: "36",
    logging.INFO: "32",
    logging.WARNING: "33",
    logging.ERROR: "31",
    logging.CRITICAL: "1;31",
}


class BrokerLogFormatter(logging.Formatter):
    """Line formatter that renders any request/error context after the message."""

    def __init__(self, *, use_color: bool = False, fmt: str = LOG_FORMAT, datefmt: str = DATE_FORMAT) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.use_color = use_color

    def _level_label(self, record: logging.LogRecord) -> str:
        code = _ANSI.get(record.levelno)
        if not (self.use_color and code):
            return record.levelname
        return f"\x1b[{code}m{record.levelname}\x1b[0m"

    @staticmethod
    def context_suffix(record: logging.LogRecord) -> str:
        pairs = [f"{name}={getattr(record, name)!r}" for name in CONTEXT_FIELDS if hasattr(record, name)]
        return f" | {' '.join(pairs)}" if pairs else ""

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        record.levelname = self._level_label(record)
        try:
            line = super().format(record)
        finally:
            record.levelname = levelname
        return line + self.context_suffix(record)


def _colors_enabled(stream: IO[str]) -> bool:
    return not os.getenv("NO_COLOR") and hasattr(stream, "isatty") and stream.isatty()


def resolve_level(level: str | int | None = None) -> int:
    """Level from the argument, else ``BROKER_LOG_LEVEL``; unknown names fall back to INFO."""
    if isinstance(level, int):
        return level
    name = (level or os.getenv("BROKER_LOG_LEVEL") or "INFO").upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(
    *, level: str | int | None = None, force: bool = False, stream: Optional[IO[str]] = None
) -> logging.Handler:
    """Install the broker's stream handler on the root logger and return it.

    Without ``force`` an already configured root logger keeps its handlers and
    only has their level adjusted.
    """
    root = logging.getLogger()
    resolved = resolve_level(level)
    root.setLevel(resolved)

    if root.handlers and not force:
        for existing in root.handlers:
            existing.setLevel(resolved)
        return root.handlers[0]

    stream = stream or sys.stderr
    handler = logging.StreamHandler(stream)
    handler.setLevel(resolved)
    handler.setFormatter(BrokerLogFormatter(use_color=_colors_enabled(stream)))
    root.handlers.clear()
    root.addHandler(handler)
    return handler
