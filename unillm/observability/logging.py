"""
unillm - Structured JSON Logging

Structured logging with automatic context injection.

Features:
- JSON-formatted logs for easy parsing
- Correlation fields (request_id, provider, model) from a context variable
- Log level and format configurable via environment
- Nothing is configured until the application calls setup_logging()
- Sensitive data redaction

Usage:
    from unillm.observability.logging import get_logger, setup_logging, LogContext

    setup_logging()  # once, in the application
    LogContext.set_current(LogContext(request_id="req_123", provider="openai"))

    logger = get_logger(__name__)
    logger.info("Stream opened", dialect="openai")

Output:
    {"timestamp": "2024-01-15T10:30:00+00:00", "level": "INFO",
     "logger": "unillm.streaming.pipeline", "message": "Stream opened",
     "request_id": "req_123", "provider": "openai", "dialect": "openai"}
"""

import json
import logging
import sys
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from ..config import get_settings

# Context variable for correlation IDs
_log_context: ContextVar[Optional["LogContext"]] = ContextVar("unillm_log_context", default=None)


@dataclass
class LogContext:
    """
    Logging context with correlation IDs.

    Task-safe using contextvars.
    """
    request_id: str = ""
    trace_id: str = ""
    span_id: str = ""
    provider: str = ""
    model: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def get_current(cls) -> Optional["LogContext"]:
        """Get current log context."""
        return _log_context.get()

    @classmethod
    def set_current(cls, ctx: "LogContext"):
        """Set current log context."""
        _log_context.set(ctx)

    @classmethod
    def clear(cls):
        """Clear current log context."""
        _log_context.set(None)

    def update(self, **kwargs):
        """Update context fields."""
        for key, value in kwargs.items():
            if key != "extra" and hasattr(self, key):
                setattr(self, key, value)
            else:
                self.extra[key] = value

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ("request_id", "trace_id", "span_id", "provider", "model"):
            value = getattr(self, key)
            if value:
                result[key] = value
        result.update(self.extra)
        return result


# Attributes every LogRecord has; anything else came in through `extra`.
_RECORD_ATTRS = {
    "name", "msg", "args", "created", "filename",
    "funcName", "levelname", "levelno", "lineno",
    "module", "msecs", "pathname", "process",
    "processName", "relativeCreated", "stack_info",
    "exc_info", "exc_text", "thread", "threadName",
    "message", "taskName",
}


class JSONFormatter(logging.Formatter):
    """JSON log formatter with automatic context injection."""

    # Fields to redact from logs
    SENSITIVE_FIELDS = {
        "password", "secret", "token", "api_key", "apikey",
        "authorization", "auth", "credential", "private_key",
    }

    # Counters such as prompt_tokens are not secrets.
    SAFE_FIELDS = {
        "prompt_tokens", "completion_tokens", "total_tokens",
        "reasoning_tokens", "cached_tokens",
    }

    def __init__(
        self,
        include_location: bool = False,
        redact_sensitive: bool = True,
    ):
        super().__init__()
        self.include_location = include_location
        self.redact_sensitive = redact_sensitive

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_location:
            log_data["location"] = f"{record.filename}:{record.lineno}"

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        ctx = LogContext.get_current()
        if ctx:
            log_data.update(ctx.to_dict())

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS:
                continue
            if self.redact_sensitive and self._is_sensitive(key):
                value = "[REDACTED]"
            log_data[key] = value

        return json.dumps(log_data, default=str, ensure_ascii=False)

    def _is_sensitive(self, field_name: str) -> bool:
        """Check if field name indicates sensitive data."""
        field_lower = field_name.lower()
        if field_lower in self.SAFE_FIELDS:
            return False
        return any(sensitive in field_lower for sensitive in self.SENSITIVE_FIELDS)


class StructuredLogger:
    """
    Structured logger wrapper.

    Keyword arguments other than the logging module's own become
    structured fields on the record.
    """

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def isEnabledFor(self, level: int) -> bool:
        return self._logger.isEnabledFor(level)

    def _log(self, level: int, msg: str, *args, **kwargs):
        if not self._logger.isEnabledFor(level):
            return
        extra = dict(kwargs.pop("extra", {}))
        for key in list(kwargs):
            if key not in {"exc_info", "stack_info", "stacklevel"}:
                extra[key] = kwargs.pop(key)
        kwargs["extra"] = extra
        self._logger.log(level, msg, *args, **kwargs)

    def debug(self, msg: str, *args, **kwargs):
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        """Log exception with traceback."""
        kwargs["exc_info"] = True
        self._log(logging.ERROR, msg, *args, **kwargs)


def setup_logging(
    level: Optional[Union[str, int]] = None,
    json_output: Optional[bool] = None,
    include_location: bool = False,
    redact_sensitive: bool = True,
) -> None:
    """
    Setup structured logging for the `unillm` logger hierarchy.

    Only called by the application. Level and format default to the
    LOG_LEVEL and LOG_FORMAT settings. The root logger and third-party
    loggers are left alone so that applications embedding the library
    keep their own configuration.
    """
    settings = get_settings()
    if level is None:
        level = settings.log_level
    if json_output is None:
        json_output = settings.log_format == "json"
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    package_logger = logging.getLogger("unillm")
    package_logger.setLevel(level)

    for handler in package_logger.handlers[:]:
        package_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if json_output:
        formatter: logging.Formatter = JSONFormatter(
            include_location=include_location,
            redact_sensitive=redact_sensitive,
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    handler.setFormatter(formatter)
    package_logger.addHandler(handler)
    package_logger.propagate = False


def get_logger(name: str) -> StructuredLogger:
    """
    Get a structured logger.

    Does not configure handlers; records go wherever the application's
    logging sends them until `setup_logging()` is called.

    Args:
        name: Logger name (typically __name__)

    Returns:
        StructuredLogger instance
    """
    return StructuredLogger(logging.getLogger(name))


# Silent unless the application configures logging
logging.getLogger("unillm").addHandler(logging.NullHandler())
