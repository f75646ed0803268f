"""Cloud Functions entry points.

Deploy with ``--entry-point main``; the trigger type picks the handler::

    HTTP trigger                  → on_callback  (Sensit callback)
    CLOUD_PUBSUB_TRIGGER          → on_rearm     (presence session)

Both handlers always report success to the runtime: Sensit must never retry a
callback, and Pub/Sub must never redeliver a re-arm message.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import os
from typing import Any, Optional

import functions_framework
import orjson

from sensit_relay.classifier import classify
from sensit_relay.config import AppConfig, load_config, resolve_config_path
from sensit_relay.logs import setup_logging
from sensit_relay.models import OUTWARD_ERROR
from sensit_relay.orchestrator import run_callback
from sensit_relay.rearm import handle_rearm_message

logger = logging.getLogger(__name__)

JSON_RESPONSE_HEADERS = {"Content-Type": "application/json"}

_config: Optional[AppConfig] = None


def _load() -> AppConfig:
    """Load config and logging once per cold start."""
    global _config
    if _config is None:
        _config = load_config(resolve_config_path())
        setup_logging(_config)
    return _config


@functions_framework.http
def on_callback(request: Any) -> tuple[bytes, int, dict[str, str]]:
    """Handle a Sensit callback POST; always answers 200."""
    try:
        cfg = _load()
        raw = classify(request.get_data())
        outcome = asyncio.run(run_callback(cfg, raw))
        body = outcome.body
    except Exception as exc:
        logger.exception("Callback handler failed: %s", exc)
        body = OUTWARD_ERROR
    return orjson.dumps(body), 200, JSON_RESPONSE_HEADERS


@functions_framework.cloud_event
def on_rearm(cloud_event: Any) -> None:
    """Handle a re-arm Pub/Sub message by running one presence session."""
    try:
        cfg = _load()
        message = (cloud_event.data or {}).get("message", {})
        data = base64.b64decode(message["data"]) if message.get("data") else None
        asyncio.run(handle_rearm_message(cfg, data))
    except Exception as exc:
        logger.exception("Re-arm handler failed: %s", exc)


main = on_rearm if os.environ.get("FUNCTION_TRIGGER_TYPE") == "CLOUD_PUBSUB_TRIGGER" else on_callback
