"""
Centralised error tracking with context enrichment.

Captures unhandled exceptions at the Flask boundary (and anywhere else a
caller hands one over) and enriches them with trace and request context.

Messages, tracebacks and extras are redacted before they are stored, so every
sink sees the same scrubbed text. Errors are:

1. Logged via the structured logger.
2. Stored in a bounded in-memory ring buffer for ``/errors/recent``.
3. Optionally forwarded to Sentry when ``SENTRY_DSN`` is set.
"""

import json
import os
import sys
import threading
import traceback
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional

from flask import Flask, g, has_request_context, jsonify, request
from werkzeug.exceptions import HTTPException

from .logging import LogContext, StructuredLogger, setup_structured_logger
from .redaction import RedactOptions, redact_text, redact_value
from .tracing import get_trace_context

# Maximum number of recent errors kept in memory
_MAX_ERROR_BUFFER = 200


@dataclass
class ErrorRecord:
    """A single captured error event."""

    timestamp: str
    error_type: str
    message: str
    traceback: str
    context: Dict[str, Any] = field(default_factory=dict)
    fingerprint: str = ""  # dedup grouping key

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ErrorTracker:
    """Singleton that captures, deduplicates, and stores errors.

    Usage::

        tracker = ErrorTracker()
        tracker.install_flask(app)

        try:
            do_work()
        except Exception:
            tracker.capture_exception(extra={"job_id": jid})
            raise
    """

    _instance: Optional["ErrorTracker"] = None
    _lock = threading.Lock()

    def __new__(
        cls,
        logger: Optional[StructuredLogger] = None,
        redact_options: Optional[RedactOptions] = None,
    ) -> "ErrorTracker":
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._initialized = False
            return cls._instance

    def __init__(
        self,
        logger: Optional[StructuredLogger] = None,
        redact_options: Optional[RedactOptions] = None,
    ) -> None:
        if self._initialized:
            self.configure(logger, redact_options)
            return
        self._initialized = True
        self._buffer: Deque[ErrorRecord] = deque(maxlen=_MAX_ERROR_BUFFER)
        self._counts: Dict[str, int] = {}  # fingerprint -> count
        self._counts_lock = threading.Lock()
        self._logger = logger or setup_structured_logger("error_tracker")
        self.redact_options = redact_options or RedactOptions()
        self._callbacks: List[Callable[[ErrorRecord], None]] = []
        self._sentry_dsn = os.environ.get("SENTRY_DSN", "")
        self._sentry = None

        # Attempt Sentry SDK init if DSN is present
        if self._sentry_dsn:
            try:
                import sentry_sdk  # type: ignore[import-untyped]
            except ImportError:
                self._logger.warning("SENTRY_DSN set but sentry-sdk not installed")
            else:
                sentry_sdk.init(
                    dsn=self._sentry_dsn,
                    environment=os.environ.get("ENVIRONMENT", "development"),
                    traces_sample_rate=0.1,
                    send_default_pii=False,
                    before_send=self._scrub_sentry_event,
                )
                self._sentry = sentry_sdk
                self._logger.info("Sentry SDK initialised")

    def configure(
        self,
        logger: Optional[StructuredLogger] = None,
        redact_options: Optional[RedactOptions] = None,
    ) -> None:
        """Point the tracker at the service's logger and redaction options."""
        if logger is not None:
            self._logger = logger
        if redact_options is not None:
            self.redact_options = redact_options

    def _scrub_sentry_event(self, event: Dict[str, Any], hint: Dict[str, Any]) -> Dict[str, Any]:
        for exc in (event.get("exception") or {}).get("values") or []:
            if isinstance(exc.get("value"), str):
                exc["value"] = redact_text(exc["value"], self.redact_options)
        return event

    # ── Flask integration ────────────────────────────────────────

    def install_flask(self, app: Flask) -> None:
        """Render every error as JSON and capture the unexpected ones."""

        @app.errorhandler(HTTPException)
        def _handle_http_exception(exc: HTTPException):
            # Keep the exception's own response so headers like Allow survive
            response = exc.get_response()
            response.set_data(
                json.dumps(
                    {
                        "error": (exc.name or "error").lower().replace(" ", "_"),
                        "message": exc.description,
                    }
                )
            )
            response.content_type = "application/json"
            return response

        @app.errorhandler(Exception)
        def _handle_exception(exc: Exception):
            self.capture_exception(exc=exc)
            ctx = getattr(g, "log_context", None)
            request_id = ctx.request_id if isinstance(ctx, LogContext) else ""
            return jsonify({"error": "internal_error", "request_id": request_id}), 500

    # ── Capture ──────────────────────────────────────────────────

    def capture_exception(
        self,
        exc: Optional[BaseException] = None,
        *,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Optional[ErrorRecord]:
        """Capture an exception with full context.

        Args:
            exc: The exception. If ``None``, uses ``sys.exc_info()``.
            extra: Additional context to attach (field-name redacted).

        Returns:
            The ``ErrorRecord``, or ``None`` if nothing to capture.
        """
        if exc is None:
            exc_info = sys.exc_info()
            if exc_info[0] is None:
                return None
            exc = exc_info[1]
        else:
            exc_info = (type(exc), exc, exc.__traceback__)

        opts = self.redact_options
        tb = redact_text("".join(traceback.format_exception(*exc_info)), opts)
        message = redact_text(str(exc), opts)
        fingerprint = f"{type(exc).__name__}:{_extract_location(exc_info)}"

        ctx: Dict[str, Any] = {}
        trace = get_trace_context()
        if trace:
            ctx["trace_id"] = trace.trace_id
            ctx["span_id"] = trace.span_id
            ctx["operation"] = trace.operation
            ctx.update(trace.attributes)

        log = self._logger
        if has_request_context():
            log_context = getattr(g, "log_context", None)
            if isinstance(log_context, LogContext):
                ctx.update(log_context.as_fields())
                log = log.with_context(log_context)
            ctx.setdefault("method", request.method)
            ctx.setdefault("path", request.path)

        if extra:
            ctx.update(redact_value(extra, opts))

        record = ErrorRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            error_type=type(exc).__name__,
            message=message,
            traceback=tb,
            context=ctx,
            fingerprint=fingerprint,
        )

        self._buffer.append(record)
        with self._counts_lock:
            self._counts[fingerprint] = self._counts.get(fingerprint, 0) + 1

        log.error(
            "Captured %s: %s",
            record.error_type,
            record.message,
            error_type=record.error_type,
            fingerprint=fingerprint,
            stacktrace=tb,
        )

        if self._sentry is not None:
            self._sentry.capture_exception(exc)

        for cb in self._callbacks:
            cb(record)

        return record

    def on_error(self, callback: Callable[[ErrorRecord], None]) -> None:
        """Register a callback invoked on every captured error."""
        self._callbacks.append(callback)

    # ── Query ────────────────────────────────────────────────────

    def recent_errors(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Most recent errors first."""
        items = list(self._buffer)[-limit:]
        items.reverse()
        return [e.to_dict() for e in items]

    def error_summary(self) -> Dict[str, Any]:
        """Dedup counts and totals."""
        with self._counts_lock:
            counts = dict(self._counts)
        return {
            "total_captured": sum(counts.values()),
            "unique_errors": len(counts),
            "top_errors": sorted(
                ({"fingerprint": fp, "count": c} for fp, c in counts.items()),
                key=lambda x: x["count"],
                reverse=True,
            )[:20],
        }

    @classmethod
    def reset(cls) -> None:
        """Drop the singleton (for tests)."""
        with cls._lock:
            cls._instance = None


def _extract_location(exc_info) -> str:
    """``file:line`` of the innermost traceback frame."""
    tb = exc_info[2]
    if tb is None:
        return "unknown"
    while tb.tb_next:
        tb = tb.tb_next
    return f"{tb.tb_frame.f_code.co_filename}:{tb.tb_lineno}"
