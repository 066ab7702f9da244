"""Microservice scaffold: Flask service with a PII-redacting observability layer."""

from .constants import APP_VERSION

__version__ = APP_VERSION
