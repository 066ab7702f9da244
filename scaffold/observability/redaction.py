"""
PII / secret redaction engine.

Four pure entry points are exposed to the logging pipeline:

* ``redact_text``   : scan free text and replace every match of an active
  rule's pattern with a category-tagged marker (``[REDACTED_EMAIL]`` …).
* ``redact_value``  : walk a mapping / sequence / scalar and replace the
  value of every sensitive *field name* with ``[REDACTED]``.
* ``redact_json``   : the same field-name policy applied to JSON text.
* ``redact_headers``: blank a fixed denylist of HTTP header names.

Marker policy: pattern redaction tags the marker with the category that
fired; field-name redaction always uses the generic ``[REDACTED]`` marker
because the key already names the category.  ``RedactOptions(generic_markers=
True)`` forces the generic marker for text as well.

Nothing in this module raises on bad input, keeps state between calls or
performs I/O, so it is safe to call from any number of threads.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Pattern, Tuple, Union

REDACTED = "[REDACTED]"

# ── Rule table ───────────────────────────────────────────────────

# Assignment rules keep ``<name><sep>`` and replace only the value.  A value
# never starts with a marker, so redacted text is not re-scanned.
_ASSIGN_SEP = r"[\"']?\s*[:=]\s*[\"']?"
_ASSIGN_VALUE = r"(?!\[REDACTED)(?:(?<=\")[^\"]*|(?<=')[^']*|[^\s\"',;&}\]]+)"


def _assignment(names: str, extra_guard: str = "") -> Pattern[str]:
    return re.compile(
        rf"(?P<prefix>(?<![A-Za-z0-9])(?:{names}){_ASSIGN_SEP}){extra_guard}{_ASSIGN_VALUE}",
        re.IGNORECASE,
    )


@dataclass(frozen=True)
class RedactionRule:
    """One category of sensitive data.

    ``patterns`` drive free-text scanning, ``field_names`` drive structured
    (field-name) redaction.  A pattern may define a ``prefix`` group that is
    kept in front of the marker.
    """

    category: str
    marker: str
    patterns: Tuple[Pattern[str], ...] = ()
    field_names: FrozenSet[str] = frozenset()
    description: str = ""

    def apply(self, text: str, marker: Optional[str] = None) -> str:
        replacement = marker or self.marker

        def _sub(m: re.Match) -> str:
            prefix = m.groupdict().get("prefix") or ""
            return prefix + replacement

        for pattern in self.patterns:
            text = pattern.sub(_sub, text)
        return text


# Application order matters: JWTs and the strict numeric shapes run before the
# looser assignment-style rules so a token is never half-eaten by them.
RULES: Tuple[RedactionRule, ...] = (
    RedactionRule(
        category="jwt",
        marker="[REDACTED_JWT]",
        patterns=(re.compile(r"\beyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+"),),
        field_names=frozenset({"jwt", "id_token"}),
        description="JSON Web Token (three base64url segments)",
    ),
    RedactionRule(
        category="credit_card",
        marker="[REDACTED_CC]",
        patterns=(re.compile(r"\b(?:\d{4}[- ]){3}\d{1,7}\b|\b\d{13,19}\b"),),
        field_names=frozenset(
            {"credit_card", "creditcard", "card_number", "cc_number", "card_cvv", "cvv"}
        ),
        description="Payment card number",
    ),
    RedactionRule(
        category="ssn",
        marker="[REDACTED_SSN]",
        patterns=(re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),),
        field_names=frozenset({"ssn", "social_security", "social_security_number"}),
        description="US Social Security Number",
    ),
    RedactionRule(
        category="email",
        marker="[REDACTED_EMAIL]",
        patterns=(re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"),),
        field_names=frozenset({"email", "email_address", "e_mail"}),
        description="Email address",
    ),
    RedactionRule(
        category="phone",
        marker="[REDACTED_PHONE]",
        patterns=(
            re.compile(r"(?<![\w-])(?:\+\d{1,3}[ .-]?)?(?:\(\d{3}\)|\d{3})[ .-]?\d{3}[ .-]\d{4}\b"),
        ),
        field_names=frozenset({"phone", "phone_number", "mobile", "telephone"}),
        description="Phone number",
    ),
    RedactionRule(
        category="ip",
        marker="[REDACTED_IP]",
        patterns=(re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b"),),
        field_names=frozenset({"ip", "ip_address", "client_ip", "remote_addr"}),
        description="IPv4 address",
    ),
    RedactionRule(
        category="auth_token",
        marker="[REDACTED_TOKEN]",
        patterns=(
            re.compile(r"(?P<prefix>\bbearer\s+)(?!\[REDACTED)[A-Za-z0-9\-._~+/]{8,}=*", re.IGNORECASE),
            _assignment(
                r"auth[_-]?token|access[_-]?token|refresh[_-]?token|session[_-]?token|token",
                extra_guard=r"(?!bearer\s)",
            ),
        ),
        field_names=frozenset(
            {
                "token",
                "auth_token",
                "access_token",
                "refresh_token",
                "session_token",
                "authorization",
                "bearer",
            }
        ),
        description="Bearer / session token",
    ),
    RedactionRule(
        category="api_key",
        marker="[REDACTED_API_KEY]",
        patterns=(
            re.compile(
                r"\b(?:"
                r"(?:sk|pk|rk)_(?:live|test)_[A-Za-z0-9]{8,}"
                r"|sk-[A-Za-z0-9_-]{16,}"
                r"|(?:AKIA|ASIA)[A-Z0-9]{16}"
                r"|gh[pousr]_[A-Za-z0-9]{36}"
                r"|xox[baprs]-[A-Za-z0-9-]{10,}"
                r")\b"
            ),
            _assignment(r"api[_-]?key|apikey|access[_-]?key|secret[_-]?key|api[_-]?secret"),
        ),
        field_names=frozenset({"api_key", "apikey", "access_key", "secret_key", "api_secret"}),
        description="API key (vendor prefix or key=value)",
    ),
    RedactionRule(
        category="password",
        marker="[REDACTED_PASSWORD]",
        patterns=(_assignment(r"password|passwd|pwd"),),
        field_names=frozenset({"password", "passwd", "pwd", "passphrase"}),
        description="Password assignment",
    ),
    RedactionRule(
        category="generic_secret_field",
        marker="[REDACTED_SECRET]",
        patterns=(_assignment(r"secret|private[_-]?key|credentials?"),),
        field_names=frozenset({"secret", "client_secret", "private_key", "credentials", "credential"}),
        description="Secret-looking field",
    ),
)

RULES_BY_CATEGORY: Dict[str, RedactionRule] = {r.category: r for r in RULES}

# Headers that are always blanked, compared lower-case.
SENSITIVE_HEADERS: FrozenSet[str] = frozenset(
    {
        "authorization",
        "proxy-authorization",
        "cookie",
        "set-cookie",
        "x-api-key",
        "x-auth-token",
        "x-csrf-token",
        "x-access-token",
    }
)


# ── Options ──────────────────────────────────────────────────────

CustomPattern = Tuple[Union[str, Pattern[str]], str]


@dataclass(frozen=True)
class RedactOptions:
    """Which rule categories are active for a call.

    ``custom_patterns`` is applied to free text after the built-in rules, in
    order; the replacement is used literally and an empty one means
    ``[REDACTED]``.

    Keys are matched by the structured scrubber in two ways: by name, against
    the active rules' ``field_names`` plus ``extra_fields`` (normalised like any
    key, so ``dateOfBirth`` adds ``date_of_birth``), and by ``field_patterns``,
    case-insensitive regexes searched in the raw key.  The config file maps
    ``redaction.extra_fields`` and ``redaction.field_patterns`` onto them.
    """

    emails: bool = True
    ssns: bool = True
    credit_cards: bool = True
    jwts: bool = True
    api_keys: bool = True
    passwords: bool = True
    auth_tokens: bool = True
    secret_fields: bool = True
    phones: bool = False
    ips: bool = False
    custom_patterns: Tuple[CustomPattern, ...] = ()
    extra_fields: Tuple[str, ...] = ()
    field_patterns: Tuple[Union[str, Pattern[str]], ...] = ()
    generic_markers: bool = False

    _fields: FrozenSet[str] = field(default=frozenset(), init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        # Compile once here so a bad custom regex fails at construction,
        # never while redacting.
        compiled = tuple(
            (re.compile(p) if isinstance(p, str) else p, r) for p, r in self.custom_patterns
        )
        object.__setattr__(self, "custom_patterns", compiled)
        object.__setattr__(self, "extra_fields", tuple(self.extra_fields))
        object.__setattr__(
            self,
            "field_patterns",
            tuple(
                re.compile(p, re.IGNORECASE) if isinstance(p, str) else p
                for p in self.field_patterns
            ),
        )

        names = {normalize_field_name(n) for n in self.extra_fields}
        for rule in self.active_rules():
            names.update(rule.field_names)
        object.__setattr__(self, "_fields", frozenset(names))

    def is_enabled(self, category: str) -> bool:
        return {
            "email": self.emails,
            "ssn": self.ssns,
            "credit_card": self.credit_cards,
            "jwt": self.jwts,
            "api_key": self.api_keys,
            "password": self.passwords,
            "auth_token": self.auth_tokens,
            "generic_secret_field": self.secret_fields,
            "phone": self.phones,
            "ip": self.ips,
        }.get(category, False)

    def active_rules(self) -> Tuple[RedactionRule, ...]:
        """Enabled rules in application order."""
        return tuple(r for r in RULES if self.is_enabled(r.category))

    @property
    def sensitive_fields(self) -> FrozenSet[str]:
        """Normalised field names redacted by the structured scrubber."""
        return self._fields


DEFAULT_OPTIONS = RedactOptions()


# ── Field-name matching ──────────────────────────────────────────

_CAMEL_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_SEPARATOR_RE = re.compile(r"[\s\-.]+")


def normalize_field_name(name: str) -> str:
    """``apiKey`` / ``X-API-Key`` / ``api key`` → ``api_key`` style."""
    return _SEPARATOR_RE.sub("_", _CAMEL_RE.sub("_", name.strip())).lower()


def is_sensitive_field(name: Any, options: Optional[RedactOptions] = None) -> bool:
    """True when *name* equals, or ends with ``_<name>`` of, a sensitive field,
    or matches one of the ``field_patterns``."""
    if not isinstance(name, str):
        return False
    opts = options or DEFAULT_OPTIONS
    key = normalize_field_name(name)
    if key in opts.sensitive_fields:
        return True
    if any(key.endswith("_" + f) for f in opts.sensitive_fields):
        return True
    return any(p.search(name) for p in opts.field_patterns)


# ── Public API ───────────────────────────────────────────────────


def redact_text(text: Any, options: Optional[RedactOptions] = None) -> Any:
    """Replace every sensitive substring of *text*.

    Non-string input and text with no match are returned unchanged.
    """
    if not isinstance(text, str) or not text:
        return text
    opts = options or DEFAULT_OPTIONS
    marker = REDACTED if opts.generic_markers else None

    for rule in opts.active_rules():
        text = rule.apply(text, marker)

    for pattern, replacement in opts.custom_patterns:
        literal = marker or replacement or REDACTED
        text = pattern.sub(lambda _m, r=literal: r, text)

    return text


def redact_value(value: Any, options: Optional[RedactOptions] = None) -> Any:
    """Redact a structured value by field name.

    Mappings and sequences keep their shape; the value of a sensitive key is
    collapsed to ``[REDACTED]`` whatever its type.  Scalars are untouched.
    """
    opts = options or DEFAULT_OPTIONS
    if isinstance(value, Mapping):
        return {
            k: REDACTED if is_sensitive_field(k, opts) else redact_value(v, opts)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [redact_value(v, opts) for v in value]
    if isinstance(value, tuple):
        return tuple(redact_value(v, opts) for v in value)
    return value


def redact_json(text: Any, options: Optional[RedactOptions] = None) -> Any:
    """Apply :func:`redact_value` to JSON text.

    Text that does not parse, or nests too deeply to walk, is returned as-is,
    as is text with nothing to redact (byte-for-byte, formatting included).
    """
    if not isinstance(text, str):
        return text
    try:
        parsed = json.loads(text)
        redacted = redact_value(parsed, options)
        if redacted == parsed:
            return text
        return json.dumps(redacted, ensure_ascii=False, separators=(",", ":"))
    except (ValueError, RecursionError):
        return text


def redact_headers(
    headers: Mapping[str, Union[str, Iterable[str]]],
) -> Dict[str, Union[str, Iterable[str]]]:
    """Blank every value of a sensitive header; copy the rest untouched."""
    result: Dict[str, Union[str, Iterable[str]]] = {}
    for name, values in headers.items():
        sensitive = isinstance(name, str) and name.strip().lower() in SENSITIVE_HEADERS
        if isinstance(values, str):
            result[name] = REDACTED if sensitive else values
        elif isinstance(values, tuple):
            result[name] = tuple(REDACTED for _ in values) if sensitive else values
        else:
            values = list(values)
            result[name] = [REDACTED for _ in values] if sensitive else values
    return result
