"""Logging filter that redacts secrets from log records.

Two sources of secrets are scrubbed:

* config values whose *keys* match ``logging.redact_patterns`` (shell-style
  globs, e.g. the presence token and the broadcast webhook URL), and
* ``token=`` query parameters in any URL that ends up in a message, since
  the presence connect URL and aiohttp errors both quote them.
"""

from __future__ import annotations

import fnmatch
import logging
import re
from typing import Any, Iterable


REDACTED = "[REDACTED]"

_TOKEN_PARAM_RE = re.compile(r"([?&](?:token|access_token)=)[^&\s'\"]+", re.IGNORECASE)

_TRACEBACK_FORMATTER = logging.Formatter()


class SecretRedactingFilter(logging.Filter):
    """A :class:`logging.Filter` that scrubs secret values from log output."""

    def __init__(self, secret_values: Iterable[str] | None = None) -> None:
        super().__init__()
        self._secrets: list[str] = [
            s for s in (secret_values or []) if s and len(s) > 1
        ]

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact secrets in the log record's message, args and traceback.

        The traceback is rendered here into ``record.exc_text``, which
        formatters reuse instead of formatting ``exc_info`` again.
        """
        record.msg = self.redact(record.msg)
        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self.redact(v) for k, v in record.args.items()}
            elif isinstance(record.args, tuple):
                record.args = tuple(self.redact(a) for a in record.args)
        if record.exc_info and record.exc_info[0] is not None:
            record.exc_text = self.redact(
                record.exc_text or _TRACEBACK_FORMATTER.formatException(record.exc_info)
            )
        if record.stack_info:
            record.stack_info = self.redact(record.stack_info)
        return True

    def redact(self, value: Any) -> Any:
        """Return *value* with known secrets and URL tokens replaced."""
        if isinstance(value, BaseException):
            value = str(value)
        if not isinstance(value, str):
            return value
        for secret in self._secrets:
            if secret in value:
                value = value.replace(secret, REDACTED)
        return _TOKEN_PARAM_RE.sub(rf"\g<1>{REDACTED}", value)


def collect_secret_values(
    config_dict: dict[str, Any],
    patterns: list[str] | None = None,
) -> list[str]:
    """Walk a config dict and collect values whose *keys* match *patterns*.

    Matching is case-insensitive.
    """
    if not patterns:
        return []

    results: list[str] = []
    _walk(config_dict, patterns, results)
    return results


def _walk(obj: Any, patterns: list[str], out: list[str]) -> None:
    if isinstance(obj, dict):
        for key, val in obj.items():
            if isinstance(val, str) and any(
                fnmatch.fnmatch(key.lower(), p.lower()) for p in patterns
            ):
                out.append(val)
            _walk(val, patterns, out)
    elif isinstance(obj, (list, tuple)):
        for item in obj:
            _walk(item, patterns, out)
