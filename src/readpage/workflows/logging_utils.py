"""Logging setup and in-memory capture for readpage."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from .reader_config import ENV_LOG_FORMAT, ENV_LOG_LEVEL

PACKAGE_LOGGER = "readpage"

_LOGGING_FIELDS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "message",
    "asctime",
}


class StructuredFormatter(logging.Formatter):
    """Render log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _LOGGING_FIELDS or key.startswith("_"):
                continue
            payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = record.stack_info

        return json.dumps(payload, ensure_ascii=False, default=str)


def _level_from(value: Union[str, int, None], default: int = logging.INFO) -> int:
    if isinstance(value, int):
        return value
    level = logging.getLevelName(str(value or "").strip().upper())
    return level if isinstance(level, int) else default


def configure_logging(level: Union[str, int, None] = None, fmt: Optional[str] = None) -> None:
    """Install one stream handler on the root logger.

    ``level`` and ``fmt`` default to ``READPAGE_LOG_LEVEL`` (INFO) and
    ``READPAGE_LOG_FORMAT`` (``plain`` or ``json``).
    """

    resolved_level = _level_from(level if level is not None else os.getenv(ENV_LOG_LEVEL, "INFO"))
    fmt = (fmt or os.getenv(ENV_LOG_FORMAT, "plain")).lower()

    handler = logging.StreamHandler()
    if fmt in {"json", "structured"}:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))

    root_logger = logging.getLogger()
    root_logger.setLevel(resolved_level)
    root_logger.handlers = [handler]


class RecordingHandler(logging.Handler):
    """Keep every handled record in memory, also grouped by level name."""

    def __init__(self, level: int = logging.DEBUG) -> None:
        super().__init__(level)
        self.records: List[logging.LogRecord] = []
        self.records_by_level: Dict[str, List[logging.LogRecord]] = {}

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)
        self.records_by_level.setdefault(record.levelname, []).append(record)

    def has_records(self, level: Union[str, int]) -> bool:
        name = logging.getLevelName(level) if isinstance(level, int) else str(level).upper()
        return bool(self.records_by_level.get(name))

    def messages(self, level: Union[str, int, None] = None) -> List[str]:
        if level is None:
            records = self.records
        else:
            name = logging.getLevelName(level) if isinstance(level, int) else str(level).upper()
            records = self.records_by_level.get(name, [])
        return [record.getMessage() for record in records]

    def clear(self) -> None:
        self.records = []
        self.records_by_level = {}


def attach_recording_handler(level: Union[str, int] = logging.INFO, logger_name: str = PACKAGE_LOGGER) -> RecordingHandler:
    """Attach a :class:`RecordingHandler` to the package logger tree."""

    resolved = _level_from(level)
    handler = RecordingHandler(resolved)
    logger = logging.getLogger(logger_name)
    logger.addHandler(handler)
    if logger.level == logging.NOTSET or logger.level > resolved:
        logger.setLevel(resolved)
    return handler


def detach_recording_handler(handler: RecordingHandler, logger_name: str = PACKAGE_LOGGER) -> None:
    logging.getLogger(logger_name).removeHandler(handler)


__all__ = [
    "configure_logging",
    "StructuredFormatter",
    "RecordingHandler",
    "attach_recording_handler",
    "detach_recording_handler",
]
