"""
Structured Logging for the medication workers

Every record is rendered as one JSON object per line. Work-unit identifiers
(task, patient, visit, medication) are carried in a context variable so that
concurrent syncs and rechecks never mix their log context.

Usage:
    from structured_logging import get_logger, LogContext

    logger = get_logger(__name__)

    with LogContext(task_id="abc123", patient_id=42):
        logger.info("Syncing visit medications", extra={"visit_id": 7})

Configuration comes from config.py (LOG_LEVEL, LOG_FORMAT, LOG_OUTPUT, LOG_FILE).
"""

import json
import logging
import socket
import sys
import traceback
from contextvars import ContextVar
from datetime import datetime, timezone
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional

import config

_work_context: ContextVar[Dict[str, Any]] = ContextVar('medication_work_context', default={})

MASK = "***MASKED***"


class LogContext:
    """
    Adds identifiers to every record logged inside the block.

    Nested contexts extend the outer one; leaving a block restores it.
    """

    def __init__(self, **fields):
        self.fields = fields
        self._token = None

    def __enter__(self):
        self._token = _work_context.set({**_work_context.get(), **self.fields})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._token is not None:
            _work_context.reset(self._token)
            self._token = None
        return False


def get_context() -> Dict[str, Any]:
    return dict(_work_context.get())


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    return str(value)


class JSONFormatter(logging.Formatter):
    """
    Renders a record as:

        {"timestamp", "level", "logger", "message", "service", "environment",
         "host", <work-unit ids>, "source"?, "exception"?, "extra"?}

    Keys passed through `extra=` land under "extra"; names that look like
    credentials or allergy data are masked.
    """

    WORK_UNIT_FIELDS = ('task_id', 'patient_id', 'visit_id', 'medication_id', 'correlation_id')

    SENSITIVE_MARKERS = (
        'password', 'token', 'secret', 'api_key', 'authorization',
        'allergies', 'allergen', 'ssn',
    )

    # Attribute names present on every LogRecord
    _RECORD_ATTRS = frozenset(vars(logging.LogRecord('', 0, '', 0, '', None, None))) | {'message', 'asctime'}

    def __init__(self, service_name: str = None, environment: str = None,
                 include_extra: bool = True, mask_sensitive: bool = True):
        super().__init__()
        self.service_name = service_name or config.SERVICE_NAME
        self.environment = environment or config.ENVIRONMENT
        self.include_extra = include_extra
        self.mask_sensitive = mask_sensitive
        self.hostname = socket.gethostname()

    def format(self, record: logging.LogRecord) -> str:
        context = get_context()
        payload = self._base_fields(record)
        payload.update({k: context[k] for k in self.WORK_UNIT_FIELDS if k in context})

        if record.levelno >= logging.ERROR:
            payload["source"] = {"file": record.pathname, "line": record.lineno, "function": record.funcName}

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, _ = record.exc_info
            payload["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc_value),
                "stacktrace": "".join(traceback.format_exception(*record.exc_info)),
            }

        if self.include_extra:
            extra = self._extra_fields(record, context, payload)
            if extra:
                payload["extra"] = extra

        return json.dumps(payload, default=str, ensure_ascii=False)

    def _base_fields(self, record: logging.LogRecord) -> Dict[str, Any]:
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "environment": self.environment,
            "host": self.hostname,
        }

    def _extra_fields(self, record: logging.LogRecord, context: Dict[str, Any],
                      payload: Dict[str, Any]) -> Dict[str, Any]:
        extra = {}
        for key, value in vars(record).items():
            if key in self._RECORD_ATTRS or key.startswith('_') or key in payload:
                continue
            extra[key] = MASK if self._is_sensitive(key) else _jsonable(value)
        for key, value in context.items():
            if key not in payload and key not in extra:
                extra[key] = MASK if self._is_sensitive(key) else _jsonable(value)
        return extra

    def _is_sensitive(self, key: str) -> bool:
        if not self.mask_sensitive:
            return False
        lowered = key.lower()
        return any(marker in lowered for marker in self.SENSITIVE_MARKERS)


class RotatingJSONFileHandler(RotatingFileHandler):
    """Size-rotated NDJSON file; the parent directory is created on demand."""

    def __init__(self, filename: str, max_bytes: int = 10 * 1024 * 1024, backup_count: int = 5,
                 encoding: str = 'utf-8'):
        Path(filename).parent.mkdir(parents=True, exist_ok=True)
        super().__init__(filename, maxBytes=max_bytes, backupCount=backup_count, encoding=encoding)


_configured = False


def configure_logging(level: str = None, format: str = None, output: str = None,
                      service_name: str = None, log_file: str = None):
    """
    Install handlers on the root logger.

    output is "stdout", "file", "all" or a comma-separated combination.
    """
    global _configured

    level = (level or config.LOG_LEVEL).upper()
    format = (format or config.LOG_FORMAT).lower()
    output = (output or config.LOG_OUTPUT).lower()
    log_file = log_file or config.LOG_FILE

    if format == "json":
        formatter = JSONFormatter(service_name=service_name)
    else:
        formatter = logging.Formatter('%(asctime)s | %(levelname)s | %(name)s | %(message)s',
                                      datefmt='%Y-%m-%d %H:%M:%S')

    targets = {part.strip() for part in output.split(",")}
    handlers: List[logging.Handler] = []
    if targets & {"stdout", "all"}:
        handlers.append(logging.StreamHandler(sys.stdout))
    if targets & {"file", "all"}:
        handlers.append(RotatingJSONFileHandler(log_file))

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(getattr(logging, level, logging.INFO))
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    _configured = True
    root.info("Logging configured", extra={"log_level": level, "log_format": format, "log_output": output})


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Named logger; configures the root logger on first call."""
    if not _configured:
        configure_logging()
    return logging.getLogger(name or "medication_safety")


def log_safety_decision(logger: logging.Logger, medication_name: str, warnings: List[Any], layer: str, **extra):
    """One record per safety layer; logged at WARNING when anything is high or critical."""
    severities = [_jsonable(getattr(w, "severity", None)) for w in warnings]
    fields = {
        "medication": medication_name,
        "safety_layer": layer,
        "warning_count": len(warnings),
        "severities": severities,
        **extra,
    }
    if any(s in ("critical", "high") for s in severities):
        logger.warning("Safety warnings found", extra=fields)
    else:
        logger.info("Safety check completed", extra=fields)


def log_registry_write(logger: logging.Logger, operation: str, medication_id: Optional[int], status: str,
                       duration_ms: float, **extra):
    logger.info("Medication registry write", extra={
        "db_operation": operation,
        "registry_medication_id": medication_id,
        "transition": status,
        "duration_ms": round(duration_ms, 2),
        **extra,
    })
