"""
Structured JSON logging with explicit context.

Every log line is a single JSON object with guaranteed keys: ``timestamp``,
``level``, ``logger``, ``message``, ``service``, ``version``, ``env`` plus the
request's correlation identifiers and any structured fields passed by the
caller.  A coloured console format is available for local development.

Loggers are explicit objects: the service bootstrap builds one with
``setup_structured_logger`` and hands it (or a request-bound copy obtained
with ``with_context``) to call sites.  ``get_default_logger`` exists only for
the process entry point.

PII redaction happens in ``PiiScrubber``, which is installed on every handler
built here, so nothing reaches a sink unscrubbed.
"""

import json
import logging
import os
import sys
import threading
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ..constants import APP_VERSION, DEFAULT_SERVICE_NAME, LOG_BACKUP_COUNT, LOG_MAX_BYTES
from .pii import PiiScrubber
from .redaction import RedactOptions

# ── Log context ──────────────────────────────────────────────────


@dataclass(frozen=True)
class LogContext:
    """Correlation identifiers attached to every line a logger emits."""

    request_id: str = ""
    correlation_id: str = ""
    trace_id: str = ""
    span_id: str = ""
    user_id: str = ""
    tenant_id: str = ""

    def bind(self, **changes: str) -> "LogContext":
        """Return a copy with *changes* applied."""
        return replace(self, **changes)

    def as_fields(self) -> Dict[str, str]:
        """Non-empty identifiers as a flat dict."""
        return {k: v for k, v in asdict(self).items() if v}


EMPTY_CONTEXT = LogContext()


# ── JSON Formatter ───────────────────────────────────────────────


def _static_fields() -> Dict[str, str]:
    return {
        "service": os.environ.get("SERVICE_NAME", DEFAULT_SERVICE_NAME),
        "version": os.environ.get("SERVICE_VERSION", APP_VERSION),
        "env": os.environ.get("ENVIRONMENT", "development"),
    }


class _JsonFormatter(logging.Formatter):
    """Emit each record as a single-line JSON object."""

    # Keys that are promoted from ``extra`` to the top-level JSON for callers
    # that log through a plain ``logging.Logger``.
    _PROMOTE_KEYS = frozenset(
        {
            "request_id",
            "correlation_id",
            "user_id",
            "trace_id",
            "span_id",
            "operation",
            "duration_ms",
            "status_code",
            "method",
            "path",
            "error_type",
            "fingerprint",
        }
    )

    def __init__(self, static_fields: Optional[Dict[str, str]] = None):
        super().__init__()
        self._static = static_fields if static_fields is not None else _static_fields()

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
            **self._static,
            "thread": record.threadName,
        }

        # Add source location for DEBUG / ERROR+
        if record.levelno <= logging.DEBUG or record.levelno >= logging.ERROR:
            entry["caller"] = f"{record.module}:{record.lineno}"
            entry["func"] = record.funcName

        ctx = getattr(record, "log_context", None)
        if isinstance(ctx, LogContext):
            entry.update(ctx.as_fields())

        for key in self._PROMOTE_KEYS:
            val = getattr(record, key, None)
            if val is not None:
                entry.setdefault(key, val)

        # Structured fields never overwrite the envelope
        for key, val in (getattr(record, "fields", None) or {}).items():
            entry.setdefault(key, val)

        if record.exc_info and record.exc_info[0] is not None:
            entry["stacktrace"] = record.exc_text or self.formatException(record.exc_info)
            entry.setdefault("error_type", record.exc_info[0].__name__)

        return json.dumps(entry, default=str, ensure_ascii=False)


# ── Plain Formatter (dev / console) ─────────────────────────────


class _DevFormatter(logging.Formatter):
    """Human-readable coloured output for local development."""

    _COLORS = {
        "DEBUG": "\033[36m",     # cyan
        "INFO": "\033[32m",      # green
        "WARNING": "\033[33m",   # yellow
        "ERROR": "\033[31m",     # red
        "CRITICAL": "\033[35m",  # magenta
    }
    _RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self._COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
        ctx = getattr(record, "log_context", None)
        rid = ctx.request_id if isinstance(ctx, LogContext) else ""
        prefix = f"[{rid[:8]}] " if rid else ""
        base = (
            f"{color}{ts} {record.levelname:<8}{self._RESET} "
            f"{record.name} {prefix}{record.getMessage()}"
        )
        fields = getattr(record, "fields", None)
        if fields:
            base += " " + " ".join(f"{k}={v}" for k, v in fields.items())
        if record.exc_info and record.exc_info[0] is not None:
            base += "\n" + (record.exc_text or self.formatException(record.exc_info))
        return base


# ── Logger handle ────────────────────────────────────────────────


class StructuredLogger:
    """An explicit logger handle: a ``logging.Logger`` plus bound context.

    Handles are cheap and immutable; ``with_context`` and ``bind`` return new
    handles sharing the same underlying logger::

        log = base_logger.with_context(LogContext(request_id=rid))
        log.info("Creating user", username=username)
    """

    def __init__(
        self,
        logger: logging.Logger,
        context: Optional[LogContext] = None,
        fields: Optional[Dict[str, Any]] = None,
    ):
        self._logger = logger
        self.context = context or EMPTY_CONTEXT
        self._fields: Dict[str, Any] = dict(fields or {})

    @property
    def name(self) -> str:
        return self._logger.name

    @property
    def logger(self) -> logging.Logger:
        """The wrapped stdlib logger."""
        return self._logger

    def with_context(self, context: LogContext) -> "StructuredLogger":
        return StructuredLogger(self._logger, context, self._fields)

    def bind(self, **fields: Any) -> "StructuredLogger":
        """Return a handle that adds *fields* to every line."""
        return StructuredLogger(self._logger, self.context, {**self._fields, **fields})

    def is_enabled_for(self, level: int) -> bool:
        return self._logger.isEnabledFor(level)

    # ── emit ─────────────────────────────────────────────────────

    def _log(self, level: int, msg: str, args: tuple, fields: Dict[str, Any], exc_info=None) -> None:
        if not self._logger.isEnabledFor(level):
            return
        self._logger.log(
            level,
            msg,
            *args,
            exc_info=exc_info,
            stacklevel=3,
            extra={"log_context": self.context, "fields": {**self._fields, **fields}},
        )

    def debug(self, msg: str, *args: Any, **fields: Any) -> None:
        self._log(logging.DEBUG, msg, args, fields)

    def info(self, msg: str, *args: Any, **fields: Any) -> None:
        self._log(logging.INFO, msg, args, fields)

    def warning(self, msg: str, *args: Any, **fields: Any) -> None:
        self._log(logging.WARNING, msg, args, fields)

    def error(self, msg: str, *args: Any, **fields: Any) -> None:
        self._log(logging.ERROR, msg, args, fields)

    def exception(self, msg: str, *args: Any, **fields: Any) -> None:
        """Log at ERROR with the active exception's traceback."""
        self._log(logging.ERROR, msg, args, fields, exc_info=True)

    def critical(self, msg: str, *args: Any, **fields: Any) -> None:
        self._log(logging.CRITICAL, msg, args, fields)

    # ── helpers ──────────────────────────────────────────────────

    def audit(self, action: str, resource: str, result: str, **fields: Any) -> None:
        """Log an audit event with the mandatory audit fields."""
        self._log(
            logging.INFO,
            "audit_event",
            (),
            {
                "audit": True,
                "action": action,
                "resource": resource,
                "result": result,
                "audit_timestamp": datetime.now(timezone.utc).isoformat(),
                **fields,
            },
        )

    def performance(self, operation: str, duration_ms: float, **fields: Any) -> None:
        """Log a timing measurement for *operation*."""
        self._log(
            logging.INFO,
            "performance_metric",
            (),
            {"operation": operation, "duration_ms": round(duration_ms, 3), **fields},
        )


# ── Logger Factory ───────────────────────────────────────────────


def parse_level(level: Union[int, str, None], debug: bool = False) -> int:
    """Turn ``"info"`` / ``20`` / ``None`` into a logging level."""
    if level is None:
        return logging.DEBUG if debug else logging.INFO
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"invalid log level {level!r}")
    return resolved


def setup_structured_logger(
    name: str,
    *,
    level: Union[int, str, None] = None,
    debug: bool = False,
    fmt: Optional[str] = None,
    log_file: Optional[str] = None,
    redact_options: Optional[RedactOptions] = None,
    static_fields: Optional[Dict[str, str]] = None,
) -> StructuredLogger:
    """Create (or retrieve) a structured logger handle.

    Args:
        name: Logger name.
        level: Explicit level name or number (overrides *debug*).
        debug: If ``True`` and no level given, sets level to ``DEBUG``.
        fmt: ``"json"`` or ``"console"``; defaults to ``LOG_FORMAT`` or json.
        log_file: Optional filename under ``logs/`` for a rotating JSON file.
        redact_options: Redaction categories used by the PII filter.
        static_fields: ``service`` / ``version`` / ``env`` envelope values.

    Returns:
        A ``StructuredLogger`` with an empty context.
    """
    logger = _build_logger(
        name,
        level=parse_level(level, debug),
        fmt=fmt,
        log_file=log_file,
        redact_options=redact_options,
        static_fields=static_fields,
    )
    return StructuredLogger(logger)


def _build_logger(
    name: str,
    *,
    level: int,
    fmt: Optional[str],
    log_file: Optional[str],
    redact_options: Optional[RedactOptions],
    static_fields: Optional[Dict[str, str]],
) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if logger.handlers:
        for h in logger.handlers:
            h.setLevel(level)
        return logger

    scrubber = PiiScrubber(redact_options)
    handlers = []

    # ── Console handler: JSON by default, coloured in dev ───────
    fmt = (fmt or os.environ.get("LOG_FORMAT", "json")).lower()
    console_handler = logging.StreamHandler(sys.stderr)
    if fmt == "console":
        console_handler.setFormatter(_DevFormatter())
    else:
        console_handler.setFormatter(_JsonFormatter(static_fields))
    handlers.append(console_handler)

    # ── JSON file handler ────────────────────────────────────────
    if log_file:
        log_path = Path(__file__).parent.parent.parent / "logs" / log_file
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
        )
        file_handler.setFormatter(_JsonFormatter(static_fields))
        handlers.append(file_handler)

    for handler in handlers:
        handler.setLevel(level)
        handler.addFilter(scrubber)
        logger.addHandler(handler)

    return logger


# ── Process-wide fallback ────────────────────────────────────────

_default_logger: Optional[StructuredLogger] = None
_default_lock = threading.Lock()


def get_default_logger() -> StructuredLogger:
    """Lazily build the fallback logger used by the process entry point."""
    global _default_logger
    with _default_lock:
        if _default_logger is None:
            _default_logger = setup_structured_logger(
                os.environ.get("SERVICE_NAME", DEFAULT_SERVICE_NAME),
                level=os.environ.get("LOG_LEVEL", "info"),
            )
        return _default_logger
