"""
Structured Logging Module

JSON logs for the MindScan backend, one object per line, to stdout and/or a
size-rotated file.

Every entry carries the service, environment and host. Request tracing ids
set by the middleware (and patient/visit ids passed through `extra`) are
lifted to the top level so log queries can filter on them directly; any
other `extra` key lands under "extra". Credential-like keys are masked.

Usage:
    from structured_logging import get_logger, LogContext

    logger = get_logger(__name__)

    with LogContext(request_id="abc123", user_id=42):
        logger.info("Visit saved", extra={"visit_id": "...", "patient_id": "..."})

Configuration (environment variables):
    LOG_FORMAT: "json" or "text" (default: "json")
    LOG_OUTPUT: "stdout", "file" or "all" (default: "stdout")
    LOG_LEVEL: DEBUG, INFO, WARNING, ERROR, CRITICAL (default: "INFO")
    LOG_FILE: path of the file output
"""

import json
import logging
import logging.handlers
import os
import socket
import sys
import traceback
import uuid
from contextvars import ContextVar
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

SERVICE_NAME = "mindscan"

_log_context: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})


class LogContext:
    """Adds key/values to every log entry emitted inside the block."""

    def __init__(self, **fields):
        self.fields = fields
        self._token = None

    def __enter__(self):
        merged = {**_log_context.get(), **self.fields}
        self._token = _log_context.set(merged)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._token is not None:
            _log_context.reset(self._token)
        return False


def get_context() -> Dict[str, Any]:
    return dict(_log_context.get())


# =============================================================================
# JSON FORMATTER
# =============================================================================

class JSONFormatter(logging.Formatter):
    """
    Renders a LogRecord as one JSON object:

        {"timestamp": "2025-06-21T10:30:45.123+00:00", "level": "INFO",
         "logger": "visit_ingestion", "message": "Visit saved",
         "service": "mindscan", "environment": "production", "host": "api-1",
         "request_id": "5f0c2a9e1b7d", "patient_id": "...", "extra": {...}}
    """

    TOP_LEVEL_KEYS = ("request_id", "correlation_id", "user_id", "patient_id", "visit_id")

    MASKED_KEYS = ("password", "token", "secret", "authorization", "api_key")

    # Attributes every LogRecord has; anything else arrived through `extra`
    _RECORD_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

    def __init__(self, service_name: str = SERVICE_NAME, environment: Optional[str] = None):
        super().__init__()
        self.service_name = service_name
        self.environment = environment or os.getenv("ENVIRONMENT", "development")
        self.hostname = socket.gethostname()

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "environment": self.environment,
            "host": self.hostname,
        }

        fields = get_context()
        fields.update(
            (key, value) for key, value in vars(record).items()
            if key not in self._RECORD_ATTRS and not key.startswith("_")
        )

        extra = {}
        for key, value in fields.items():
            if self._masked(key):
                value = "***MASKED***"
            else:
                value = _plain(value)
            if key in self.TOP_LEVEL_KEYS:
                entry[key] = value
            else:
                extra[key] = value
        if extra:
            entry["extra"] = extra

        if record.levelno >= logging.ERROR:
            entry["source"] = {"file": record.pathname, "line": record.lineno, "function": record.funcName}

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "stacktrace": "".join(traceback.format_exception(*record.exc_info)),
            }

        return json.dumps(entry, default=str, ensure_ascii=False)

    def _masked(self, key: str) -> bool:
        key = key.lower()
        return any(word in key for word in self.MASKED_KEYS)


def _plain(value: Any) -> Any:
    """JSON-friendly copy of a logged value."""
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_plain(v) for v in value]
    return str(value)


# =============================================================================
# SETUP
# =============================================================================

_configured = False


def configure_logging(
    level: Optional[str] = None,
    format: Optional[str] = None,
    output: Optional[str] = None,
    service_name: str = SERVICE_NAME,
    log_file: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
):
    """
    Install handlers on the root logger. Safe to call again; previous
    handlers are replaced.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        format: "json" or "text"
        output: comma-separated destinations, "stdout", "file" or "all"
        service_name: value of the "service" field
        log_file: file used by the "file" destination
        max_bytes, backup_count: rotation of the file destination
    """
    global _configured

    level = level or os.getenv("LOG_LEVEL", "INFO")
    format = (format or os.getenv("LOG_FORMAT", "json")).lower()
    output = (output or os.getenv("LOG_OUTPUT", "stdout")).lower()
    log_file = log_file or os.getenv("LOG_FILE", "logs/app.json.log")

    if format == "json":
        formatter = JSONFormatter(service_name=service_name)
    else:
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handlers = []
    destinations = {out.strip() for out in output.split(",")}
    if destinations & {"stdout", "all"}:
        handlers.append(logging.StreamHandler(sys.stdout))
    if destinations & {"file", "all"}:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.handlers.RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        ))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    _configured = True
    root.info("Logging configured", extra={"log_level": level, "log_format": format, "log_output": output})


def get_logger(name: Optional[str] = None) -> logging.Logger:
    if not _configured:
        configure_logging()
    return logging.getLogger(name or SERVICE_NAME)


# =============================================================================
# EVENT HELPERS
# =============================================================================

def log_request(method: str, path: str, status_code: int, duration_ms: float, **fields):
    """One finished HTTP request; level follows the status class."""
    data = {
        "http_method": method,
        "http_path": path,
        "http_status": status_code,
        "duration_ms": round(duration_ms, 2),
        **fields,
    }
    logger = get_logger("http")
    if status_code >= 500:
        logger.error("HTTP request failed", extra=data)
    elif status_code >= 400:
        logger.warning("HTTP request client error", extra=data)
    else:
        logger.info("HTTP request completed", extra=data)


def log_classifier_call(
    url: str,
    duration_ms: float,
    success: bool,
    upstream_status: Optional[int] = None,
    is_mri: Optional[bool] = None,
    error: Optional[str] = None,
    **fields
):
    """One round trip to the external MRI classifier."""
    data = {
        "classifier_url": url,
        "duration_ms": round(duration_ms, 2),
        "upstream_status": upstream_status,
        "is_mri": is_mri,
        **fields,
    }
    logger = get_logger("classifier")
    if success:
        logger.info("Classifier call completed", extra=data)
    else:
        logger.error("Classifier call failed", extra={**data, "error": error})


def log_database_query(operation: str, table: str, duration_ms: float, error: Optional[str] = None, **fields):
    """A store operation; failures at ERROR, successes at DEBUG."""
    data = {"db_operation": operation, "db_table": table, "duration_ms": round(duration_ms, 2), **fields}
    logger = get_logger("db")
    if error:
        logger.error("Database query failed", extra={**data, "error": error})
    else:
        logger.debug("Database query completed", extra=data)


def log_security_event(event_type: str, severity: str, details: Optional[str] = None, **fields):
    """Authentication failures and similar; severity is low, medium, high or critical."""
    data = {"security_event": event_type, "severity": severity, "details": details, **fields}
    logger = get_logger("security")
    if severity in ("high", "critical"):
        logger.error("Security event", extra=data)
    elif severity == "medium":
        logger.warning("Security event", extra=data)
    else:
        logger.info("Security event", extra=data)


def generate_request_id() -> str:
    return uuid.uuid4().hex[:12]
