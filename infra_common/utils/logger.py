"""
Structured Logging Configuration Module for infra-common

This module provides logging utilities with JSON-formatted output and context
enrichment via LoggerAdapter. Library modules only call
``logging.getLogger(__name__)`` and pass structured fields through ``extra``;
applications call ``setup_logging`` once at startup to decide how those records
are rendered.

Usage:
    from infra_common.utils.logger import get_logger, setup_logging, add_log_context

    setup_logging(log_level="INFO", json_logs=True)

    logger = get_logger(__name__)
    logger.info("Bucket created", extra={"bucket": "uploads"})

    ctx_logger = add_log_context(logger, request_id="abc123")
    ctx_logger.info("Processing request")
"""

import json
import logging
import os
import sys
import traceback

from datetime import UTC, datetime
from typing import Any


LOG_LEVEL_MAP: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Client libraries whose INFO/DEBUG output drowns application logs
THIRD_PARTY_LOGGERS: list[str] = [
    "boto3",
    "botocore",
    "s3transfer",
    "urllib3",
    "redis",
    "cassandra",
    "asyncio",
    "uvicorn",
    "fastapi",
]


class LogJSONEncoder(json.JSONEncoder):
    """JSON encoder that falls back to ``str`` for values json cannot encode."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, bytes):
            return obj.decode("utf-8", errors="replace")
        if isinstance(obj, (set, frozenset)):
            return list(obj)
        return str(obj)


class JSONFormatter(logging.Formatter):
    """
    Logging formatter that outputs log records as JSON strings.

    Example output:
        {
            "timestamp": "2025-01-15T10:30:45.123456+00:00",
            "level": "INFO",
            "logger": "infra_common.core.storage",
            "message": "Bucket created successfully",
            "extra": {"bucket": "uploads"}
        }
    """

    # Standard LogRecord attributes to exclude from extra fields
    RESERVED_ATTRS: frozenset[str] = frozenset(
        {
            "args",
            "asctime",
            "created",
            "exc_info",
            "exc_text",
            "filename",
            "funcName",
            "levelname",
            "levelno",
            "lineno",
            "message",
            "module",
            "msecs",
            "msg",
            "name",
            "pathname",
            "process",
            "processName",
            "relativeCreated",
            "stack_info",
            "thread",
            "threadName",
            "taskName",
        }
    )

    def __init__(
        self,
        include_extra_fields: bool = True,
        include_source_location: bool = False,
    ) -> None:
        super().__init__()
        self.include_extra_fields = include_extra_fields
        self.include_source_location = include_source_location

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(
                timespec="microseconds"
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_source_location:
            log_entry["source"] = {
                "filename": record.filename,
                "lineno": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            log_entry["exception"] = {
                "type": exc_type.__name__ if exc_type else "Unknown",
                "message": str(exc_value) if exc_value else "",
                "traceback": "".join(traceback.format_exception(*record.exc_info)),
            }

        if record.stack_info:
            log_entry["stack_info"] = record.stack_info

        if self.include_extra_fields:
            extra_fields = {
                key: value
                for key, value in record.__dict__.items()
                if not key.startswith("_") and key not in self.RESERVED_ATTRS
            }
            if extra_fields:
                log_entry["extra"] = extra_fields

        return json.dumps(log_entry, cls=LogJSONEncoder, ensure_ascii=False, separators=(",", ":"))


class StandardFormatter(logging.Formatter):
    """Human-readable formatter for local development."""

    DEFAULT_FORMAT: str = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
    DEFAULT_DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"

    def __init__(self, fmt: str | None = None, datefmt: str | None = None) -> None:
        super().__init__(
            fmt=fmt or self.DEFAULT_FORMAT,
            datefmt=datefmt or self.DEFAULT_DATE_FORMAT,
        )


def _build_formatter(json_logs: bool, level: int) -> logging.Formatter:
    if json_logs:
        return JSONFormatter(include_source_location=level <= logging.DEBUG)
    return StandardFormatter()


def get_logger(name: str, level: str | None = None, json_logs: bool = True) -> logging.Logger:
    """
    Create a logger with its own stdout handler.

    Intended for scripts and test harnesses that do not call ``setup_logging``.
    Handlers are added only once per logger name.

    Args:
        name: Logger name, typically ``__name__``
        level: Log level name; defaults to the LOG_LEVEL environment variable or INFO
        json_logs: Use JSONFormatter when True, StandardFormatter otherwise
    """
    logger = logging.getLogger(name)
    level_name = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    log_level = LOG_LEVEL_MAP.get(level_name, logging.INFO)
    logger.setLevel(log_level)

    if logger.handlers:
        return logger

    logger.propagate = False
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(_build_formatter(json_logs, log_level))
    logger.addHandler(handler)
    return logger


def setup_logging(
    log_level: str = "INFO",
    json_logs: bool = True,
    third_party_level: str = "WARNING",
) -> None:
    """
    Configure application-wide logging on the root logger.

    Call once at application startup. Existing root handlers are replaced and
    the client libraries listed in THIRD_PARTY_LOGGERS are set to
    ``third_party_level``.

    Args:
        log_level: Application log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: If True, output JSON; if False, output standard text
        third_party_level: Log level for third-party libraries
    """
    level_name = log_level.upper()
    level = LOG_LEVEL_MAP.get(level_name, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(_build_formatter(json_logs, level))
    root_logger.addHandler(console_handler)

    third_party_log_level = LOG_LEVEL_MAP.get(third_party_level.upper(), logging.WARNING)
    for logger_name in THIRD_PARTY_LOGGERS:
        logging.getLogger(logger_name).setLevel(third_party_log_level)

    logging.getLogger(__name__).info(
        "Logging configured: level=%s, json=%s", level_name, json_logs
    )


class ContextLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter that merges its context into per-call ``extra`` without overwriting it."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        extra = dict(kwargs.get("extra") or {})
        for key, value in (self.extra or {}).items():
            extra.setdefault(key, value)
        kwargs["extra"] = extra
        return msg, kwargs


def add_log_context(logger: logging.Logger, **kwargs: Any) -> ContextLoggerAdapter:
    """
    Wrap a logger so every record carries the given context fields.

    Example:
        ctx_logger = add_log_context(logger, bucket="uploads", operation="upload_object")
        ctx_logger.error("Upload failed", extra={"length": 1024})
    """
    return ContextLoggerAdapter(logger, kwargs)


__all__ = [
    "ContextLoggerAdapter",
    "JSONFormatter",
    "StandardFormatter",
    "add_log_context",
    "get_logger",
    "setup_logging",
]
