"""
PII scrubbing filter for log records.

Redacts passwords, tokens, API keys, email addresses and other sensitive data
before log lines are emitted.  Installed as a ``logging.Filter`` on every
handler created by the structured logger.

* the formatted message goes through the pattern scrubber (``redact_text``);
* an exception traceback is rendered into ``exc_text`` and scrubbed the same way;
* structured ``fields`` go through the field-name scrubber (``redact_value``);
* ``extra`` attributes with a sensitive name are replaced wholesale.
"""

import logging
from typing import FrozenSet, Optional

from .redaction import REDACTED, RedactOptions, is_sensitive_field, redact_text, redact_value

# Attributes every LogRecord carries; never treated as caller-supplied extras.
_RECORD_ATTRS: FrozenSet[str] = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__.keys()
) | {"message", "asctime", "log_context", "fields"}

_TRACEBACK_FORMATTER = logging.Formatter()


class PiiScrubber(logging.Filter):
    """Logging filter that scrubs PII/secrets from log records.

    Attach to a handler or logger::

        handler.addFilter(PiiScrubber())
    """

    def __init__(self, options: Optional[RedactOptions] = None):
        super().__init__()
        self.options = options or RedactOptions()

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        try:
            msg = record.getMessage()
        except (TypeError, ValueError):
            # Mismatched %-args; log the raw template rather than drop the line
            msg = str(record.msg)
        record.msg = redact_text(msg, self.options)
        record.args = None  # prevent double-formatting

        # Formatters reuse exc_text when it is set, so the traceback is
        # rendered once here and scrubbed like the message.
        if record.exc_info and record.exc_info[0] is not None and not record.exc_text:
            record.exc_text = _TRACEBACK_FORMATTER.formatException(record.exc_info)
        if record.exc_text:
            record.exc_text = redact_text(record.exc_text, self.options)

        fields = getattr(record, "fields", None)
        if fields:
            record.fields = redact_value(fields, self.options)

        for attr in list(record.__dict__):
            if attr not in _RECORD_ATTRS and is_sensitive_field(attr, self.options):
                setattr(record, attr, REDACTED)

        return True
