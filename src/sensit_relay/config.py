"""Configuration loading, environment-variable interpolation, and validation.

Resolution order for ``${VAR}`` placeholders:
    CLI overrides → environment variables → raw config value.

``${VAR}`` (no default) raises if unresolvable.
``${VAR:-default}`` falls back to *default*.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import orjson

logger = logging.getLogger(__name__)

CONFIG_ENV = "SENSIT_RELAY_CONFIG"
DEFAULT_CONFIG = "/etc/sensit-relay/config.json"

_VAR_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-(.*?))?\}")

_SCHEMA_PATH = Path(__file__).resolve().parent.parent.parent / "config" / "config.schema.json"


@dataclass
class EndpointsConfig:
    """Outbound HTTP endpoints."""

    ingest_url: str = ""
    status_url: str = ""
    broadcast_url: str = ""


@dataclass
class HttpConfig:
    """Per-call limits for outbound HTTP."""

    timeout_seconds: float = 10.0


@dataclass
class PresenceConfig:
    """Presence keep-alive session settings."""

    connect_url: str = "https://slack.com/api/rtm.connect"
    token: str = ""
    timeout_min_seconds: float = 400.0
    timeout_max_seconds: float = 500.0
    grace_seconds: float = 5.0
    hello_text: str = "something"


@dataclass
class RearmConfig:
    """Pub/Sub topic that carries re-arm messages."""

    project_id: str = ""
    topic: str = "waitForToilet"


@dataclass
class MessagesConfig:
    """Broadcast texts and the closing-signal marker."""

    open_message: str = "*** T O I L E T  I S  O P E N  ! ! ! ***"
    closed_message: str = "toilet closed"
    closing_signal: str = "toilet closed"


@dataclass
class NormalizeConfig:
    """Normalization options."""

    strict_magnet_data: bool = False
    open_status: int = 0


@dataclass
class LoggingConfig:
    """Logging settings."""

    level: str = "info"
    format: str = "json"
    redact_patterns: list[str] = field(
        default_factory=lambda: ["*token*", "*secret*", "*key*", "broadcast_url"]
    )


@dataclass
class AppConfig:
    """Top-level application configuration."""

    endpoints: EndpointsConfig = field(default_factory=EndpointsConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    presence: PresenceConfig = field(default_factory=PresenceConfig)
    rearm: RearmConfig = field(default_factory=RearmConfig)
    messages: MessagesConfig = field(default_factory=MessagesConfig)
    normalize: NormalizeConfig = field(default_factory=NormalizeConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _interpolate_value(value: str, overrides: dict[str, str] | None = None) -> str:
    """Replace ``${VAR}`` / ``${VAR:-default}`` in *value*."""

    def _replacer(match: re.Match) -> str:
        var_name = match.group(1)
        default = match.group(2)  # None when no ``:-`` present

        if overrides and var_name in overrides:
            return overrides[var_name]
        env_val = os.environ.get(var_name)
        if env_val is not None:
            return env_val
        if default is not None:
            return default

        raise ValueError(
            f"Required variable ${{{var_name}}} is not set in environment or CLI overrides"
        )

    return _VAR_RE.sub(_replacer, value)


def _walk_and_interpolate(obj: Any, overrides: dict[str, str] | None = None) -> Any:
    """Recursively interpolate all string values in a JSON-like structure."""
    if isinstance(obj, str):
        return _interpolate_value(obj, overrides)
    if isinstance(obj, dict):
        return {k: _walk_and_interpolate(v, overrides) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_walk_and_interpolate(item, overrides) for item in obj]
    return obj


def _section(cls: type, raw: dict[str, Any]) -> Any:
    """Build dataclass *cls* from the known keys of *raw*."""
    return cls(**{k: raw[k] for k in raw if k in cls.__dataclass_fields__})


def _dict_to_config(raw: dict[str, Any]) -> AppConfig:
    """Convert a raw dict into a typed :class:`AppConfig`."""
    return AppConfig(
        endpoints=_section(EndpointsConfig, raw.get("endpoints", {})),
        http=_section(HttpConfig, raw.get("http", {})),
        presence=_section(PresenceConfig, raw.get("presence", {})),
        rearm=_section(RearmConfig, raw.get("rearm", {})),
        messages=_section(MessagesConfig, raw.get("messages", {})),
        normalize=_section(NormalizeConfig, raw.get("normalize", {})),
        logging=_section(LoggingConfig, raw.get("logging", {})),
    )


def load_config(
    path: str | Path,
    overrides: dict[str, str] | None = None,
    schema_path: str | Path | None = None,
) -> AppConfig:
    """Load, interpolate, validate, and return the application config.

    Parameters
    ----------
    path:
        Filesystem path to ``config.json``.
    overrides:
        CLI-supplied variable overrides.
    schema_path:
        Path to the JSON Schema file.  Defaults to
        ``config/config.schema.json`` relative to the project root.

    Returns
    -------
    AppConfig
        Fully resolved and validated configuration.

    Raises
    ------
    ValueError
        If a required ``${VAR}`` cannot be resolved.
    jsonschema.ValidationError
        If the config fails schema validation.
    """
    raw_bytes = Path(path).read_bytes()
    raw: dict[str, Any] = orjson.loads(raw_bytes)

    interpolated = _walk_and_interpolate(raw, overrides=overrides)

    sp = Path(schema_path) if schema_path else _SCHEMA_PATH
    if sp.exists():
        schema = orjson.loads(sp.read_bytes())
        jsonschema.validate(instance=interpolated, schema=schema)
        logger.debug("Config passed schema validation")
    else:
        logger.warning("Schema file not found at %s, skipping validation", sp)

    cfg = _dict_to_config(interpolated)
    if cfg.presence.timeout_min_seconds > cfg.presence.timeout_max_seconds:
        raise ValueError("presence.timeout_min_seconds exceeds presence.timeout_max_seconds")
    return cfg


def resolve_config_path(explicit: str | None = None) -> str:
    """Pick the config path: explicit argument, then env var, then default."""
    return explicit or os.environ.get(CONFIG_ENV, DEFAULT_CONFIG)
