"""
Request tracing, correlation IDs and access logging.

``RequestTracer`` is Flask middleware that:

1. Extracts or generates ``traceparent`` / ``X-Request-ID`` /
   ``X-Correlation-ID``, reads ``X-User-ID`` / ``X-Tenant-ID`` and resolves
   the client address.
2. Builds the request's ``LogContext`` and a request-bound logger, both
   stored on ``flask.g``.
3. Records HTTP metrics (traffic, latency, errors, in-flight).
4. Emits one access-log line per request with the query, body and headers
   passed through the redaction engine, a slow-request warning and an audit
   record for state-changing methods.

Trace IDs are W3C Trace Context compatible (128-bit trace, 64-bit span) so
they can be correlated with an external tracing backend.
"""

import logging
import random
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from flask import Flask, g, has_request_context, request

from ..constants import (
    DEFAULT_MAX_BODY_BYTES,
    DEFAULT_SLOW_THRESHOLD_MS,
    HEADER_CORRELATION_ID,
    HEADER_REQUEST_ID,
    HEADER_TENANT_ID,
    HEADER_TRACE_ID,
    HEADER_TRACEPARENT,
    HEADER_USER_ID,
    STATE_CHANGING_METHODS,
)
from .logging import LogContext, StructuredLogger
from .metrics import MetricsCollector
from .redaction import RedactOptions, redact_headers, redact_json, redact_text

# ── Trace context ────────────────────────────────────────────────

_trace_local = threading.local()


@dataclass
class TraceContext:
    """Trace context for the current operation."""

    trace_id: str
    span_id: str
    parent_span_id: Optional[str] = None
    operation: str = ""
    sampled: bool = True
    start_time: float = field(default_factory=time.monotonic)
    attributes: Dict[str, Any] = field(default_factory=dict)

    @property
    def traceparent(self) -> str:
        return f"00-{self.trace_id}-{self.span_id}-{'01' if self.sampled else '00'}"

    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.start_time) * 1000

    def log_context(self, **ids: str) -> LogContext:
        """A ``LogContext`` carrying this trace's identifiers."""
        return LogContext(trace_id=self.trace_id, span_id=self.span_id, **ids)


def get_trace_context() -> Optional[TraceContext]:
    """Return the active ``TraceContext`` for the current thread, or ``None``."""
    return getattr(_trace_local, "ctx", None)


def set_trace_context(ctx: TraceContext) -> None:
    _trace_local.ctx = ctx


def clear_trace_context() -> None:
    _trace_local.ctx = None


def _new_id(length: int = 32) -> str:
    """Random hex ID (32 chars = 128-bit trace id, 16 = 64-bit span)."""
    return uuid.uuid4().hex[:length]


def parse_traceparent(value: str) -> Optional[Tuple[str, str, bool]]:
    """Parse ``00-<trace_id>-<parent_span_id>-<flags>``.

    Returns ``(trace_id, parent_span_id, sampled)`` or ``None`` when the header
    is malformed or carries the all-zero IDs the W3C spec forbids.
    """
    parts = value.strip().split("-")
    if len(parts) != 4:
        return None
    version, trace_id, span_id, flags = parts
    if len(version) != 2 or len(trace_id) != 32 or len(span_id) != 16 or len(flags) != 2:
        return None
    try:
        int(trace_id, 16)
        int(span_id, 16)
        sampled = bool(int(flags, 16) & 0x01)
    except ValueError:
        return None
    if set(trace_id) == {"0"} or set(span_id) == {"0"}:
        return None
    return trace_id.lower(), span_id.lower(), sampled


def get_request_logger(default: StructuredLogger) -> StructuredLogger:
    """The request-bound logger set by ``RequestTracer``, else *default*."""
    if has_request_context():
        return getattr(g, "logger", None) or default
    return default


# ── Flask Middleware ─────────────────────────────────────────────


class RequestTracer:
    """Flask middleware: assigns trace/request IDs, measures and logs requests.

    Usage::

        RequestTracer(app, logger=logger, metrics=MetricsCollector())
    """

    def __init__(
        self,
        app: Flask,
        *,
        logger: StructuredLogger,
        metrics: Optional[MetricsCollector] = None,
        skip_paths: Iterable[str] = (),
        log_request_body: bool = False,
        max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
        slow_threshold_ms: float = DEFAULT_SLOW_THRESHOLD_MS,
        sample_rate: float = 1.0,
        request_id_header: str = HEADER_REQUEST_ID,
        redact_options: Optional[RedactOptions] = None,
        client_ip: Optional[Callable[[], Optional[str]]] = None,
    ):
        self.app = app
        self.logger = logger
        self.metrics = metrics
        self.skip_paths = frozenset(skip_paths)
        self.log_request_body = log_request_body
        self.max_body_bytes = max_body_bytes
        self.slow_threshold_ms = slow_threshold_ms
        self.sample_rate = sample_rate
        self.request_id_header = request_id_header
        self.redact_options = redact_options
        self.client_ip = client_ip or (lambda: request.remote_addr)
        self._install(app)

    def _install(self, app: Flask) -> None:
        app.before_request(self._before)
        app.after_request(self._after)
        app.teardown_request(self._teardown)

    # ── hooks ────────────────────────────────────────────────────

    def _before(self) -> None:
        trace_id, parent_span, sampled = self._extract_trace()
        request_id = request.headers.get(self.request_id_header, "").strip() or str(uuid.uuid4())
        correlation_id = request.headers.get(HEADER_CORRELATION_ID, "").strip() or request_id

        ctx = TraceContext(
            trace_id=trace_id,
            span_id=_new_id(16),
            parent_span_id=parent_span,
            operation=f"{request.method} {request.path}",
            sampled=sampled,
        )
        set_trace_context(ctx)

        log_context = ctx.log_context(
            request_id=request_id,
            correlation_id=correlation_id,
            user_id=request.headers.get(HEADER_USER_ID, ""),
            tenant_id=request.headers.get(HEADER_TENANT_ID, ""),
        )
        g.trace = ctx
        g.client_ip = self.client_ip()
        g.log_context = log_context
        g.logger = self.logger.with_context(log_context)
        g.tracer_finished = False

        if self.metrics:
            self.metrics.request_started()

    def _after(self, response):
        ctx: Optional[TraceContext] = getattr(g, "trace", None)
        if ctx is None:
            return response
        log_context: LogContext = g.log_context
        duration_ms = ctx.elapsed_ms()

        response.headers[self.request_id_header] = log_context.request_id
        response.headers[HEADER_CORRELATION_ID] = log_context.correlation_id
        response.headers[HEADER_TRACE_ID] = ctx.trace_id
        response.headers[HEADER_TRACEPARENT] = ctx.traceparent

        route = request.url_rule.rule if request.url_rule is not None else "unmatched"
        if self.metrics:
            self.metrics.request_finished(request.method, route, response.status_code, duration_ms)
        g.tracer_finished = True

        if request.path not in self.skip_paths:
            self._log_access(g.logger, response, route, duration_ms)
        return response

    def _teardown(self, exc=None) -> None:
        # Unhandled exceptions skip after_request; keep the in-flight gauge honest
        if self.metrics and getattr(g, "trace", None) is not None and not g.tracer_finished:
            self.metrics.gauge_dec("http_requests_in_flight")
        clear_trace_context()

    # ── access log ───────────────────────────────────────────────

    def _log_access(self, log: StructuredLogger, response, route: str, duration_ms: float) -> None:
        status = response.status_code
        fields: Dict[str, Any] = {
            "method": request.method,
            "path": request.path,
            "route": route,
            "status": status,
            "latency_ms": round(duration_ms, 3),
            "ip": g.client_ip,
            "user_agent": request.user_agent.string,
            "response_size": response.calculate_content_length(),
        }
        if request.query_string:
            query = request.query_string.decode("utf-8", "replace")
            fields["query"] = redact_text(query, self.redact_options)

        body = self._captured_body()
        if body:
            fields["request_body"] = self._redact_body(body)

        if log.is_enabled_for(logging.DEBUG):
            headers = {k: request.headers.getlist(k) for k in request.headers.keys()}
            fields["headers"] = redact_headers(headers)

        if status >= 500:
            log.error("HTTP request failed", **fields)
        elif status >= 400:
            log.warning("HTTP request client error", **fields)
        elif status >= 300:
            log.info("HTTP request redirected", **fields)
        else:
            log.info("HTTP request completed", **fields)

        if duration_ms > self.slow_threshold_ms:
            log.warning(
                "Slow HTTP request detected",
                method=request.method,
                path=request.path,
                latency_ms=round(duration_ms, 3),
                threshold_ms=self.slow_threshold_ms,
            )

        if request.method in STATE_CHANGING_METHODS:
            log.audit(
                request.method,
                request.path,
                "failure" if status >= 400 else "success",
                status_code=status,
                client_ip=g.client_ip,
            )

    def _redact_body(self, body: str) -> str:
        """Field-name redaction for JSON bodies, then the text patterns.

        The pattern pass covers form-encoded and other non-JSON bodies as
        well as PII sitting under innocuous JSON keys.
        """
        return redact_text(redact_json(body, self.redact_options), self.redact_options)

    def _captured_body(self) -> str:
        if not self.log_request_body:
            return ""
        length = request.content_length
        if not length or length > self.max_body_bytes:
            return ""
        return request.get_data(cache=True, as_text=True)

    # ── header parsing ───────────────────────────────────────────

    def _extract_trace(self) -> Tuple[str, Optional[str], bool]:
        """Trace ID, parent span and sampling decision for this request.

        ``traceparent`` wins; otherwise a fresh trace is started and sampled
        at ``sample_rate``.
        """
        parsed = parse_traceparent(request.headers.get(HEADER_TRACEPARENT, ""))
        if parsed:
            return parsed
        return _new_id(32), None, random.random() < self.sample_rate


# ── Background-job tracing helper ────────────────────────────────


def trace_background_job(job_type: str, job_id: str) -> TraceContext:
    """Create and activate a ``TraceContext`` for a background job.

    Bind the returned context to a logger with
    ``logger.with_context(ctx.log_context())``.
    """
    ctx = TraceContext(
        trace_id=_new_id(32),
        span_id=_new_id(16),
        operation=f"job:{job_type}",
        attributes={"job_id": job_id, "job_type": job_type},
    )
    set_trace_context(ctx)
    return ctx


def end_background_trace() -> Optional[float]:
    """End the current background trace and return its duration in ms."""
    ctx = get_trace_context()
    clear_trace_context()
    return ctx.elapsed_ms() if ctx else None
