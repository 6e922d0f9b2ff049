"""
Process-wide structured logging.

One ``logging.Logger`` named ``upload_service`` carries every log line the
service emits. ``initialize()`` picks the sink: JSON lines on stdout when
running under Kubernetes, a colorized console format otherwise. Structured
fields travel on the record as ``record.fields`` and are encoded by type.
"""
import json
import logging
import os
import socket
import sys
from datetime import date, datetime, timezone
from typing import Any, Dict, Mapping, Optional

SERVICE_NAME = "video-upload-service"
LOGGER_NAME = "upload_service"

FATAL = logging.CRITICAL

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": FATAL,
    "critical": FATAL,
}

_LEVEL_NAMES = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    FATAL: "fatal",
}

# Replaced in tests; fatal() must terminate from any thread
_exit = os._exit


def parse_level(value: Optional[str]) -> int:
    """Map a level string to a logging level, falling back to INFO"""
    if not value:
        return logging.INFO
    return _LEVELS.get(value.strip().lower(), logging.INFO)


def level_name(levelno: int) -> str:
    return _LEVEL_NAMES.get(levelno, logging.getLevelName(levelno).lower())


def encode_field(value: Any) -> Any:
    """Render a field value as something json.dumps accepts"""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, BaseException):
        return str(value) or value.__class__.__name__
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(k): encode_field(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [encode_field(v) for v in value]
    try:
        return str(value)
    except Exception:
        return object.__repr__(value)


def _record_fields(record: logging.LogRecord) -> Dict[str, Any]:
    fields = getattr(record, "fields", None) or {}
    return {key: encode_field(val) for key, val in fields.items()}


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for easier aggregation and search"""

    def __init__(self, static_fields: Optional[Dict[str, Any]] = None):
        super().__init__()
        self.static_fields = static_fields or {}

    def format(self, record):
        log_data = dict(self.static_fields)
        log_data.update(_record_fields(record))
        # Entry keys always win over caller fields of the same name
        log_data.update({
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": level_name(record.levelno),
            "message": record.getMessage(),
        })
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable colorized output for local development"""

    COLORS = {
        logging.DEBUG: "\x1b[90m",
        logging.INFO: "\x1b[32m",
        logging.WARNING: "\x1b[33m",
        logging.ERROR: "\x1b[31m",
        FATAL: "\x1b[35m",
    }
    ABBREVIATIONS = {
        logging.DEBUG: "DBG",
        logging.INFO: "INF",
        logging.WARNING: "WRN",
        logging.ERROR: "ERR",
        FATAL: "FTL",
    }
    RESET = "\x1b[0m"

    def __init__(self, static_fields: Optional[Dict[str, Any]] = None, color: bool = True):
        super().__init__()
        self.static_fields = static_fields or {}
        self.color = color

    def format(self, record):
        timestamp = datetime.fromtimestamp(record.created).astimezone().isoformat(timespec="seconds")
        level = self.ABBREVIATIONS.get(record.levelno, record.levelname[:3])
        if self.color:
            level = f"{self.COLORS.get(record.levelno, '')}{level}{self.RESET}"

        fields = dict(self.static_fields)
        fields.update(_record_fields(record))
        parts = [timestamp, level, record.getMessage()]
        parts.extend(f"{key}={json.dumps(val, default=str)}" for key, val in fields.items())

        line = " ".join(parts)
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class FieldLogger(logging.LoggerAdapter):
    """
    Logger adapter carrying bound key/value fields.

    Per-call fields are passed as ``fields={...}`` and merged over the
    bound ones.
    """

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, dict(extra or {}))

    def process(self, msg, kwargs):
        fields = dict(self.extra)
        fields.update(kwargs.pop("fields", None) or {})
        kwargs["extra"] = {"fields": fields}
        return msg, kwargs

    def bind(self, **fields) -> "FieldLogger":
        merged = dict(self.extra)
        merged.update(fields)
        return FieldLogger(self.logger, merged)

    def warn(self, msg, *args, **kwargs):
        self.warning(msg, *args, **kwargs)

    def fatal(self, msg, err: Optional[BaseException] = None, fields: Optional[Dict[str, Any]] = None):
        """Log at fatal severity, flush, and terminate the process"""
        payload = dict(fields or {})
        if err is not None:
            payload["error"] = err
        self.log(FATAL, msg, fields=payload)
        _flush(self.logger)
        _exit(1)


_logger = logging.getLogger(LOGGER_NAME)
_global = FieldLogger(_logger)


def _flush(logger: logging.Logger) -> None:
    for handler in logger.handlers:
        try:
            handler.flush()
        except Exception:
            pass


def initialize(level: Optional[str] = None, log_format: Optional[str] = None,
               kubernetes: Optional[bool] = None) -> FieldLogger:
    """
    Configure the process-wide logger.

    Re-initialization replaces the previous sink. Unknown level strings
    silently fall back to info.
    """
    global _global

    levelno = parse_level(level if level is not None else os.getenv("LOG_LEVEL"))
    if kubernetes is None:
        kubernetes = bool(os.getenv("KUBERNETES_SERVICE_HOST"))
    fmt = (log_format or ("json" if kubernetes else "console")).lower()

    static_fields = {"service": SERVICE_NAME, "host": socket.gethostname()}
    handler = logging.StreamHandler(sys.stdout)
    if fmt == "json":
        handler.setFormatter(JSONFormatter(static_fields))
    else:
        handler.setFormatter(ConsoleFormatter(static_fields, color=sys.stdout.isatty()))

    _logger.setLevel(levelno)
    _logger.handlers = [handler]
    _logger.propagate = False

    # Silence uvicorn and botocore logs
    logging.getLogger("uvicorn.access").handlers = []
    logging.getLogger("uvicorn.access").propagate = False
    logging.getLogger("botocore").setLevel(logging.CRITICAL)
    logging.getLogger("botocore.credentials").setLevel(logging.CRITICAL)

    _global = FieldLogger(_logger)
    _global.info("Logger initialized", fields={"min_level": level_name(levelno), "format": fmt})
    return _global


def get_logger() -> FieldLogger:
    """Return the global logger"""
    return _global


def debug(message: str, fields: Optional[Dict[str, Any]] = None) -> None:
    _global.debug(message, fields=fields)


def info(message: str, fields: Optional[Dict[str, Any]] = None) -> None:
    _global.info(message, fields=fields)


def warn(message: str, fields: Optional[Dict[str, Any]] = None) -> None:
    _global.warning(message, fields=fields)


def error(message: str, err: Optional[BaseException] = None,
          fields: Optional[Dict[str, Any]] = None) -> None:
    payload = dict(fields or {})
    if err is not None:
        payload["error"] = err
    _global.error(message, fields=payload)


def fatal(message: str, err: Optional[BaseException] = None,
          fields: Optional[Dict[str, Any]] = None) -> None:
    _global.fatal(message, err, fields)
