"""Root logger setup shared by the CLI and the Cloud Functions entry points."""

from __future__ import annotations

import logging
import sys
from dataclasses import asdict

import orjson

from sensit_relay.config import AppConfig
from sensit_relay.redactor import SecretRedactingFilter, collect_secret_values

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JsonFormatter(logging.Formatter):
    """Emit log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        obj = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            obj["exception"] = record.exc_text or self.formatException(record.exc_info)
        return orjson.dumps(obj).decode()


def setup_logging(cfg: AppConfig, level: str | None = None) -> SecretRedactingFilter:
    """Configure the root logger on stderr with secret redaction.

    Replaces any handlers installed by an earlier call, so the Cloud
    Functions entry points can call it once per cold start safely.
    """
    root = logging.getLogger()
    effective = (level or cfg.logging.level).upper()
    if effective == "WARN":
        effective = "WARNING"
    root.setLevel(getattr(logging, effective, logging.INFO))

    for handler in list(root.handlers):
        if getattr(handler, "_sensit_relay", False):
            root.removeHandler(handler)

    redactor = SecretRedactingFilter(
        collect_secret_values(asdict(cfg), cfg.logging.redact_patterns)
    )

    handler = logging.StreamHandler(sys.stderr)
    if cfg.logging.format == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    handler.addFilter(redactor)
    handler._sensit_relay = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    return redactor
