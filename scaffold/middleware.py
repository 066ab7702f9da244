"""
HTTP edge middleware: client IP resolution behind proxies and CORS.

``ClientIpResolver`` decides which address the access log and audit records
attribute a request to.  Forwarding headers are only believed when the
immediate peer is a trusted proxy, otherwise any client could spoof them.

``CorsPolicy`` answers preflight requests and adds ``Access-Control-*``
headers for allowed origins.  It is off unless ``cors.enabled`` is set.
"""

import ipaddress
import re
from typing import Any, Dict, Iterable, List, Optional, Pattern

from flask import Flask, make_response, request

from .constants import (
    DEFAULT_CORS_EXPOSE_HEADERS,
    DEFAULT_CORS_HEADERS,
    DEFAULT_CORS_MAX_AGE_SECONDS,
    DEFAULT_CORS_METHODS,
    DEV_CORS_ORIGINS,
    REAL_IP_HEADERS,
)

# ── Client IP ────────────────────────────────────────────────────


def parse_networks(entries: Iterable[str]) -> List[Any]:
    """``ip_network`` for every entry; a bare address becomes a /32 or /128.

    Raises:
        ValueError: If an entry is not an address or CIDR range.
    """
    return [ipaddress.ip_network(str(e).strip(), strict=False) for e in entries]


class ClientIpResolver:
    """Resolve the originating client address of the current request.

    Args:
        trusted_proxies: Addresses / CIDR ranges whose forwarding headers
            are believed.
        trust_all: Believe forwarding headers from any peer.
    """

    def __init__(self, trusted_proxies: Iterable[str] = (), trust_all: bool = False):
        self.trust_all = trust_all
        self._networks = parse_networks(trusted_proxies)

    def is_trusted(self, peer: Optional[str]) -> bool:
        if self.trust_all:
            return True
        if not peer or not self._networks:
            return False
        try:
            addr = ipaddress.ip_address(peer)
        except ValueError:
            return False
        return any(addr in net for net in self._networks)

    def resolve(self, headers, peer: Optional[str]) -> str:
        """The client address for a request with *headers* from *peer*."""
        peer = peer or ""
        if not self.is_trusted(peer):
            return peer
        for name in REAL_IP_HEADERS:
            value = headers.get(name, "")
            # X-Forwarded-For lists the client first
            candidate = value.split(",", 1)[0].strip()
            if candidate:
                return candidate
        return peer

    def client_ip(self) -> str:
        """Resolve against the active Flask request."""
        return self.resolve(request.headers, request.remote_addr)


# ── CORS ─────────────────────────────────────────────────────────


def _origin_pattern(allowed: str) -> Pattern[str]:
    """``*`` alone matches any origin; elsewhere it matches one host label
    run or a port (``https://*.example.com``, ``http://localhost:*``)."""
    if allowed == "*":
        return re.compile(r".+")
    return re.compile(re.escape(allowed).replace(r"\*", r"[^/]+") + r"\Z")


class CorsPolicy:
    """Flask hooks implementing a configured CORS policy.

    Usage::

        CorsPolicy.from_config(config).install(app)
    """

    def __init__(
        self,
        allow_origins: Iterable[str] = (),
        allow_methods: Iterable[str] = DEFAULT_CORS_METHODS,
        allow_headers: Iterable[str] = DEFAULT_CORS_HEADERS,
        expose_headers: Iterable[str] = DEFAULT_CORS_EXPOSE_HEADERS,
        allow_credentials: bool = False,
        max_age_seconds: int = DEFAULT_CORS_MAX_AGE_SECONDS,
    ):
        self.allow_origins = tuple(allow_origins)
        self._patterns = [_origin_pattern(o) for o in self.allow_origins]
        self.allow_methods = ", ".join(allow_methods) or ", ".join(DEFAULT_CORS_METHODS)
        self.allow_headers = ", ".join(allow_headers) or ", ".join(DEFAULT_CORS_HEADERS)
        self.expose_headers = ", ".join(expose_headers)
        self.allow_credentials = allow_credentials
        self.max_age = str(int(max_age_seconds))

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> Optional["CorsPolicy"]:
        """The policy for *config*, or ``None`` when CORS is disabled."""
        cors = config.get("cors", {})
        if not cors.get("enabled", False):
            return None
        origins = list(cors.get("allow_origins") or [])
        if not origins and config.get("service", {}).get("environment") == "development":
            origins = list(DEV_CORS_ORIGINS)
        return cls(
            allow_origins=origins,
            allow_methods=cors.get("allow_methods", DEFAULT_CORS_METHODS),
            allow_headers=cors.get("allow_headers", DEFAULT_CORS_HEADERS),
            expose_headers=cors.get("expose_headers", DEFAULT_CORS_EXPOSE_HEADERS),
            allow_credentials=bool(cors.get("allow_credentials", False)),
            max_age_seconds=int(cors.get("max_age_seconds", DEFAULT_CORS_MAX_AGE_SECONDS)),
        )

    def is_allowed(self, origin: str) -> bool:
        return any(p.match(origin) for p in self._patterns)

    def install(self, app: Flask) -> None:
        app.before_request(self._preflight)
        app.after_request(self._decorate)

    def _preflight(self):
        if request.method != "OPTIONS" or not request.headers.get("Origin"):
            return None
        # Preflights end here whether or not the origin is allowed; the
        # browser enforces the missing headers.
        response = make_response("", 204)
        if self.is_allowed(request.headers["Origin"]):
            response.headers["Access-Control-Allow-Methods"] = self.allow_methods
            response.headers["Access-Control-Allow-Headers"] = self.allow_headers
            response.headers["Access-Control-Max-Age"] = self.max_age
        return response

    def _decorate(self, response):
        origin = request.headers.get("Origin", "")
        if not origin:
            return response
        response.vary.add("Origin")
        if not self.is_allowed(origin):
            return response
        response.headers["Access-Control-Allow-Origin"] = origin
        if self.allow_credentials:
            response.headers["Access-Control-Allow-Credentials"] = "true"
        if self.expose_headers:
            response.headers["Access-Control-Expose-Headers"] = self.expose_headers
        return response
