"""
Observability package: redaction, structured logging, metrics, tracing, and error tracking.

Provides:
- ``redact_text`` / ``redact_value`` / ``redact_json`` / ``redact_headers``:
  the PII redaction engine
- ``StructuredLogger`` / ``setup_structured_logger``: JSON-formatted logging
  with an explicit ``LogContext``
- ``RequestTracer``: Flask middleware for request-id propagation & access logs
- ``MetricsCollector``: In-process golden-signal metrics
- ``ErrorTracker``: Centralised error tracking with context enrichment
- ``PiiScrubber``: Filters sensitive data from log records
"""

from .errors import ErrorTracker
from .logging import LogContext, StructuredLogger, get_default_logger, setup_structured_logger
from .metrics import MetricsCollector
from .pii import PiiScrubber
from .redaction import (
    REDACTED,
    RedactOptions,
    is_sensitive_field,
    redact_headers,
    redact_json,
    redact_text,
    redact_value,
)
from .tracing import RequestTracer, get_request_logger, get_trace_context

__all__ = [
    "REDACTED",
    "RedactOptions",
    "redact_text",
    "redact_value",
    "redact_json",
    "redact_headers",
    "is_sensitive_field",
    "LogContext",
    "StructuredLogger",
    "setup_structured_logger",
    "get_default_logger",
    "RequestTracer",
    "get_request_logger",
    "get_trace_context",
    "MetricsCollector",
    "ErrorTracker",
    "PiiScrubber",
]
