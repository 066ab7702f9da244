"""
Service layer modules.

Business logic kept out of the HTTP layer.
"""

from .health_service import HealthService

__all__ = ["HealthService"]
