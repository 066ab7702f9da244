"""
Configuration loading and validation for the service scaffold.

Centralises config parsing so it happens once at startup rather than
redundantly in every component constructor.  Values in ``config.json`` may
use ``${ENV_VAR:-default}`` placeholders; a ``.env`` file next to the project
is loaded first so local overrides need no shell exports.
"""

import copy
import json
import os
import re
from pathlib import Path
from typing import Any, Dict, List

from dotenv import load_dotenv

from .constants import (
    APP_VERSION,
    DEFAULT_CONFIG_PATH,
    DEFAULT_CORS_EXPOSE_HEADERS,
    DEFAULT_CORS_HEADERS,
    DEFAULT_CORS_MAX_AGE_SECONDS,
    DEFAULT_CORS_METHODS,
    DEFAULT_LOG_SKIP_PATHS,
    DEFAULT_MAX_BODY_BYTES,
    DEFAULT_SERVICE_NAME,
    DEFAULT_SHUTDOWN_SECONDS,
    DEFAULT_SLOW_THRESHOLD_MS,
    ENVIRONMENTS,
    HEADER_REQUEST_ID,
    LOG_FORMATS,
    LOG_LEVELS,
)
from .middleware import parse_networks
from .observability.redaction import RedactOptions

load_dotenv()

_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "service": {
        "name": DEFAULT_SERVICE_NAME,
        "version": APP_VERSION,
        "environment": "development",
        "log_level": "info",
    },
    "server": {
        "host": "0.0.0.0",
        "port": 8080,
        "graceful_shutdown_seconds": DEFAULT_SHUTDOWN_SECONDS,
    },
    "observability": {
        "log_format": "json",
        "log_file": "",
        "metrics_enabled": True,
        "metrics_path": "/metrics",
        "tracing_enabled": True,
        "tracing_sample_rate": 1.0,
    },
    "middleware": {
        "log_skip_paths": list(DEFAULT_LOG_SKIP_PATHS),
        "log_request_body": False,
        "max_body_bytes": DEFAULT_MAX_BODY_BYTES,
        "slow_threshold_ms": DEFAULT_SLOW_THRESHOLD_MS,
        "request_id_header": HEADER_REQUEST_ID,
        "trusted_proxies": [],
        "trust_all_proxies": False,
    },
    "cors": {
        "enabled": False,
        "allow_origins": [],
        "allow_methods": list(DEFAULT_CORS_METHODS),
        "allow_headers": list(DEFAULT_CORS_HEADERS),
        "expose_headers": list(DEFAULT_CORS_EXPOSE_HEADERS),
        "allow_credentials": False,
        "max_age_seconds": DEFAULT_CORS_MAX_AGE_SECONDS,
    },
    "redaction": {
        "emails": True,
        "ssns": True,
        "credit_cards": True,
        "jwts": True,
        "api_keys": True,
        "passwords": True,
        "auth_tokens": True,
        "secret_fields": True,
        "phones": False,
        "ips": False,
        "extra_fields": [],
        "field_patterns": [],
        "generic_markers": False,
    },
}

# Keys whose placeholder-resolved string values are coerced back to a type.
_INT_KEYS = {
    ("server", "port"),
    ("middleware", "max_body_bytes"),
    ("cors", "max_age_seconds"),
}
_FLOAT_KEYS = {
    ("server", "graceful_shutdown_seconds"),
    ("observability", "tracing_sample_rate"),
    ("middleware", "slow_threshold_ms"),
}
_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off", ""}


class ConfigError(Exception):
    """Raised when the configuration file is missing or invalid."""


def default_config() -> Dict[str, Any]:
    """A fresh copy of the built-in configuration."""
    return copy.deepcopy(_DEFAULTS)


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """
    Load configuration from a JSON file and resolve ``${ENV_VAR:-default}``
    placeholders in all string values.

    Sections and keys missing from the file fall back to ``default_config()``.

    Args:
        config_path: Path to the config file (relative paths are resolved
            against the project root)

    Returns:
        Fully-resolved configuration dictionary.

    Raises:
        ConfigError: If the file cannot be read or parsed.
    """
    full_path = Path(config_path)
    if not full_path.is_absolute():
        full_path = Path(__file__).parent.parent / config_path

    if not full_path.exists():
        raise ConfigError(f"Configuration file not found: {full_path}")

    try:
        with open(full_path, "r") as f:
            raw = json.load(f)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in {full_path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Cannot read configuration file {full_path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"Top-level value in {full_path} must be an object")

    return _coerce(_merge(default_config(), _resolve(raw)))


def validate_config(config: Dict[str, Any]) -> List[str]:
    """
    Validate a config dict against the required schema.

    Returns:
        A list of human-readable error strings.  Empty means valid.
    """
    errors: List[str] = []

    for section, keys in _DEFAULTS.items():
        if not isinstance(config.get(section), dict):
            errors.append(f"Missing required config section: '{section}'")
            continue
        for key in keys:
            if key not in config[section]:
                errors.append(f"Missing required key '{key}' in config section '{section}'")
    if errors:
        return errors

    service = config["service"]
    if service["environment"] not in ENVIRONMENTS:
        errors.append(
            f"service.environment must be one of {sorted(ENVIRONMENTS)}, "
            f"got '{service['environment']}'"
        )
    if str(service["log_level"]).lower() not in LOG_LEVELS:
        errors.append(f"service.log_level is not a valid level: '{service['log_level']}'")
    if not service["name"]:
        errors.append("service.name must not be empty")

    port = config["server"]["port"]
    if not isinstance(port, int) or isinstance(port, bool) or not 1 <= port <= 65535:
        errors.append(f"server.port must be an integer in 1-65535, got {port!r}")

    shutdown = config["server"]["graceful_shutdown_seconds"]
    if not _is_number(shutdown) or shutdown < 0:
        errors.append(f"server.graceful_shutdown_seconds must be >= 0, got {shutdown!r}")

    obs = config["observability"]
    if str(obs["log_format"]).lower() not in LOG_FORMATS:
        errors.append(f"observability.log_format must be one of {sorted(LOG_FORMATS)}")
    rate = obs["tracing_sample_rate"]
    if not _is_number(rate) or not 0.0 <= rate <= 1.0:
        errors.append(f"observability.tracing_sample_rate must be in [0, 1], got {rate!r}")
    if not str(obs["metrics_path"]).startswith("/"):
        errors.append("observability.metrics_path must start with '/'")

    mw = config["middleware"]
    if not isinstance(mw["log_skip_paths"], list):
        errors.append("middleware.log_skip_paths must be a list")
    if not isinstance(mw["max_body_bytes"], int) or mw["max_body_bytes"] < 0:
        errors.append("middleware.max_body_bytes must be a non-negative integer")
    if not _is_number(mw["slow_threshold_ms"]) or mw["slow_threshold_ms"] <= 0:
        errors.append("middleware.slow_threshold_ms must be positive")
    if not isinstance(mw["trusted_proxies"], list):
        errors.append("middleware.trusted_proxies must be a list")
    else:
        try:
            parse_networks(mw["trusted_proxies"])
        except ValueError as exc:
            errors.append(f"middleware.trusted_proxies has an invalid entry: {exc}")

    cors = config["cors"]
    for key in ("allow_origins", "allow_methods", "allow_headers", "expose_headers"):
        if not isinstance(cors[key], list):
            errors.append(f"cors.{key} must be a list")
    max_age = cors["max_age_seconds"]
    if not isinstance(max_age, int) or isinstance(max_age, bool) or max_age < 0:
        errors.append("cors.max_age_seconds must be a non-negative integer")

    redaction = config["redaction"]
    for key in ("extra_fields", "field_patterns"):
        if not isinstance(redaction[key], list):
            errors.append(f"redaction.{key} must be a list")
    if isinstance(redaction["field_patterns"], list):
        for pattern in redaction["field_patterns"]:
            try:
                re.compile(str(pattern))
            except re.error as exc:
                errors.append(f"redaction.field_patterns has an invalid regex {pattern!r}: {exc}")

    for key, value in config.get("service", {}).items():
        if isinstance(value, str) and value.startswith("${"):
            errors.append(f"service.{key} is an unresolved placeholder: '{value}'")

    return errors


def redact_options_from_config(config: Dict[str, Any]) -> RedactOptions:
    """Build the ``RedactOptions`` described by the ``redaction`` section."""
    section: Dict[str, Any] = dict(config.get("redaction") or {})
    extra_fields = tuple(section.pop("extra_fields", ()) or ())
    field_patterns = tuple(section.pop("field_patterns", ()) or ())
    generic = bool(section.pop("generic_markers", False))
    toggles = {k: bool(v) for k, v in section.items() if k in _DEFAULTS["redaction"]}
    return RedactOptions(
        extra_fields=extra_fields,
        field_patterns=field_patterns,
        generic_markers=generic,
        **toggles,
    )


# ── Private helpers ──────────────────────────────────────────────

_PLACEHOLDER_RE = re.compile(r"\$\{(\w+)(?::-([^}]*))?\}")


def _resolve(obj: Any) -> Any:
    """Recursively resolve ``${ENV_VAR:-default}`` in string values."""
    if isinstance(obj, str):
        return _PLACEHOLDER_RE.sub(_replace_match, obj)
    elif isinstance(obj, dict):
        return {k: _resolve(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_resolve(v) for v in obj]
    return obj


def _replace_match(m: re.Match) -> str:
    var = m.group(1)
    default = m.group(2) if m.group(2) is not None else ""
    return os.environ.get(var, default)


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _merge(base[key], value)
        else:
            base[key] = value
    return base


def _coerce(config: Dict[str, Any]) -> Dict[str, Any]:
    """Turn placeholder-resolved strings back into ints / floats / bools.

    Values that cannot be converted are left as-is for ``validate_config``
    to report.
    """
    for section, values in config.items():
        if not isinstance(values, dict):
            continue
        for key, value in values.items():
            if not isinstance(value, str):
                continue
            default = _DEFAULTS.get(section, {}).get(key)
            values[key] = _coerce_value(section, key, value, default)
    return config


def _coerce_value(section: str, key: str, value: str, default: Any) -> Any:
    try:
        if (section, key) in _INT_KEYS:
            return int(value)
        if (section, key) in _FLOAT_KEYS:
            return float(value)
    except ValueError:
        return value
    if isinstance(default, bool):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    if isinstance(default, list):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
