"""
Health and readiness checks.

Liveness (``get_health``) only proves the process answers; readiness
(``get_readiness``) additionally requires the startup grace period to have
elapsed, the HTTP server to have reported itself ready and the service not
to be in maintenance.
"""

import platform
import threading
import time
from datetime import timedelta
from typing import Any, Dict

from ..constants import STARTUP_GRACE_SECONDS


class HealthService:
    """Reports service health and readiness for the ops endpoints."""

    def __init__(self, config: Dict[str, Any], startup_grace: float = STARTUP_GRACE_SECONDS):
        self.config = config
        self.startup_grace = startup_grace
        self.start_time = time.monotonic()
        self._maintenance = False
        self._lock = threading.Lock()

    @property
    def uptime_seconds(self) -> float:
        return time.monotonic() - self.start_time

    @property
    def maintenance(self) -> bool:
        with self._lock:
            return self._maintenance

    def set_maintenance(self, enabled: bool) -> None:
        """Take the service out of (or back into) rotation."""
        with self._lock:
            self._maintenance = enabled

    def get_health(self) -> Dict[str, Any]:
        service = self.config.get("service", {})
        uptime = self.uptime_seconds
        return {
            "status": "healthy",
            "timestamp": int(time.time()),
            "service": service.get("name", ""),
            "version": service.get("version", ""),
            "environment": service.get("environment", ""),
            "uptime": str(timedelta(seconds=int(uptime))),
            "details": {
                "uptime_seconds": round(uptime, 3),
                "python_version": platform.python_version(),
            },
        }

    def get_readiness(self, server_ready: bool = True) -> Dict[str, Any]:
        """Readiness report; ``ready`` is ``False`` if any check is not ready."""
        checks: Dict[str, Dict[str, str]] = {}

        if self.uptime_seconds < self.startup_grace:
            checks["startup"] = {"status": "not_ready", "message": "Service is still starting up"}
        else:
            checks["startup"] = {"status": "ready"}

        if server_ready:
            checks["server"] = {"status": "ready"}
        else:
            checks["server"] = {"status": "not_ready", "message": "HTTP server is not accepting traffic"}

        if self.maintenance:
            checks["maintenance"] = {"status": "not_ready", "message": "Service is in maintenance mode"}

        return {
            "ready": all(c["status"] == "ready" for c in checks.values()),
            "timestamp": int(time.time()),
            "checks": checks,
            "service": self.config.get("service", {}).get("name", ""),
        }
