"""
Centralised constants for the service scaffold.

Default values, header names and thresholds live here so they can be
imported by any module without circular dependencies.
"""

# ── Version ──────────────────────────────────────────────────────
APP_VERSION = "0.1.0"
DEFAULT_SERVICE_NAME = "scaffold"

# ── Default paths ────────────────────────────────────────────────
DEFAULT_CONFIG_PATH = "config.json"

# ── Environments / levels ────────────────────────────────────────
ENVIRONMENTS = frozenset({"development", "staging", "production"})
LOG_LEVELS = frozenset({"debug", "info", "warning", "error", "critical"})
LOG_FORMATS = frozenset({"json", "console"})

# ── Logging ──────────────────────────────────────────────────────
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10 MB per log file
LOG_BACKUP_COUNT = 5

# ── HTTP / correlation headers ───────────────────────────────────
HEADER_REQUEST_ID = "X-Request-ID"
HEADER_CORRELATION_ID = "X-Correlation-ID"
HEADER_TRACE_ID = "X-Trace-ID"
HEADER_USER_ID = "X-User-ID"
HEADER_TENANT_ID = "X-Tenant-ID"
HEADER_TRACEPARENT = "traceparent"

# ── Access logging ───────────────────────────────────────────────
DEFAULT_LOG_SKIP_PATHS = ("/health", "/healthz", "/ready", "/readyz", "/metrics")
DEFAULT_MAX_BODY_BYTES = 10 * 1024  # request bodies larger than this are not logged
DEFAULT_SLOW_THRESHOLD_MS = 1000.0
STATE_CHANGING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

# ── Lifecycle ────────────────────────────────────────────────────
STARTUP_GRACE_SECONDS = 5.0  # readiness reports "starting" until this elapses
DEFAULT_SHUTDOWN_SECONDS = 30.0

# ── Stub handlers ────────────────────────────────────────────────
SIMULATED_LATENCY_SECONDS = 0.01

# ── Client IP ────────────────────────────────────────────────────
# Checked in order when the immediate peer is a trusted proxy
REAL_IP_HEADERS = ("CF-Connecting-IP", "X-Real-IP", "X-Forwarded-For")

# ── CORS ─────────────────────────────────────────────────────────
DEFAULT_CORS_METHODS = ("GET", "POST", "PUT", "DELETE", "OPTIONS")
DEFAULT_CORS_HEADERS = ("Origin", "Content-Type", "Accept", "Authorization")
DEFAULT_CORS_EXPOSE_HEADERS = ("X-Request-ID", "X-Correlation-ID", "X-Trace-ID")
DEFAULT_CORS_MAX_AGE_SECONDS = 12 * 60 * 60
# Used in development when CORS is on but no origin is configured
DEV_CORS_ORIGINS = ("http://localhost:*", "http://127.0.0.1:*")
