"""Logging configuration for the Markdown Embed service.

Records carry the current request id (an HTTP request or a queue batch) and
any structured fields passed as ``extra={"extra_fields": {...}}``. Production
emits one JSON object per line; other environments emit readable lines with
the fields appended as ``key=value`` pairs.
"""

import json
import logging
import sys
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from markdown_embed.config import Settings

# Request id for the HTTP request or queue batch being handled
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

_ROOT_LOGGER_NAME = "markdown_embed"
_logger: Optional[logging.Logger] = None

# Attributes every LogRecord has; anything else arrived through ``extra``
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {
    "message",
    "asctime",
    "taskName",
    "extra_fields",
    "request_id",
}

_QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "aio_pika", "aiormq", "azure")


def _structured_fields(record: logging.LogRecord) -> Dict[str, Any]:
    fields: Dict[str, Any] = dict(getattr(record, "extra_fields", None) or {})
    for key, value in record.__dict__.items():
        if key not in _RECORD_ATTRS:
            fields.setdefault(key, value)
    return fields


class RequestIdFilter(logging.Filter):
    """Stamp each record with the current request id."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get() or "-"
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "request_id": getattr(record, "request_id", "-"),
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update(_structured_fields(record))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Readable single-line output with structured fields appended."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s %(levelname)-7s %(name)s [%(request_id)s] %(message)s",
            datefmt="%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "request_id"):
            record.request_id = "-"
        line = super().format(record)
        fields = _structured_fields(record)
        if fields:
            pairs = " ".join(f"{k}={json.dumps(v, default=str)}" for k, v in fields.items())
            line = f"{line} | {pairs}"
        return line


def setup_logging(settings: Optional["Settings"] = None) -> logging.Logger:
    """Configure the ``markdown_embed`` logger once per process."""
    global _logger

    if _logger is not None:
        return _logger

    if settings is None:
        from markdown_embed.config import get_settings

        settings = get_settings()

    level = getattr(logging, settings.log_level)
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(RequestIdFilter())
    handler.setFormatter(JSONFormatter() if settings.is_production else ConsoleFormatter())

    logger = logging.getLogger(_ROOT_LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.propagate = False

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database.echo else logging.WARNING
    )

    _logger = logger
    logger.info(
        "Logging configured",
        extra={
            "extra_fields": {
                "level": settings.log_level,
                "environment": settings.environment.value,
                "format": "json" if settings.is_production else "console",
            }
        },
    )
    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return ``markdown_embed.<name>`` (or the service root logger)."""
    if name:
        return logging.getLogger(f"{_ROOT_LOGGER_NAME}.{name}")
    return logging.getLogger(_ROOT_LOGGER_NAME)


def set_request_id(request_id: str) -> None:
    request_id_var.set(request_id)


def log_request(method: str, path: str, status_code: int, duration_ms: float, **fields: Any) -> None:
    """Log one completed HTTP request."""
    get_logger("http").info(
        f"{method} {path} {status_code} ({duration_ms:.1f}ms)",
        extra={
            "extra_fields": {
                "method": method,
                "path": path,
                "status_code": status_code,
                "duration_ms": round(duration_ms, 2),
                **fields,
            }
        },
    )


def log_error(error: Exception, context: Optional[Dict[str, Any]] = None, **fields: Any) -> None:
    """Log an exception with its request context."""
    get_logger("error").error(
        f"{type(error).__name__}: {error}",
        exc_info=error,
        extra={
            "extra_fields": {
                "error_type": type(error).__name__,
                "context": context or {},
                **fields,
            }
        },
    )
