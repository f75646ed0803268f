"""Decode inbound callback bodies before normalization.

Classification pipeline::

    raw bytes / str / dict
      │
      ├─ JSON parse failure      → None  (logged, answered "OK")
      ├─ not a JSON object       → None  (logged, answered "OK")
      ├─ missing serial_number   → None  (silent skip)
      └─ valid                   → dict  (the callback body)

Rejected bodies are never retried by the sender, so nothing here raises.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Union

import orjson

logger = logging.getLogger(__name__)

# Maximum characters of a rejected body quoted in the log.
MAX_LOGGED_BODY_CHARS = 512


def classify(raw: Union[str, bytes, dict, None]) -> Optional[dict[str, Any]]:
    """Return the callback body as a dict, or ``None`` when it must be skipped.

    Parameters
    ----------
    raw:
        The request body as received, or an already-decoded mapping (the
        Cloud Functions runtime hands over parsed JSON).
    """
    if raw is None or raw == b"" or raw == "":
        logger.debug("Empty callback body, skipping")
        return None

    if isinstance(raw, dict):
        body: Any = raw
    else:
        try:
            body = orjson.loads(raw)
        except orjson.JSONDecodeError as exc:
            logger.warning("Unparseable callback body (%s): %s", exc, _excerpt(raw))
            return None

    if not isinstance(body, dict):
        logger.warning("Callback body is not a JSON object: %s", _excerpt(raw))
        return None

    if not body.get("serial_number"):
        logger.debug("Callback without serial_number, skipping")
        return None

    return body


def _excerpt(raw: Union[str, bytes, dict]) -> str:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    text = raw if isinstance(raw, str) else repr(raw)
    return text[:MAX_LOGGED_BODY_CHARS]
