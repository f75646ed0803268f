"""Turn Sensit callback bodies into flat records for the ingestion endpoint.

A callback looks like::

    {"serial_number": "1CB074", "battery": 60, "mode": 5,
     "sensors": [{"id": "29270", "sensor_type": "magnet",
                  "history": [{"date": "2018-01-29T01:56Z",
                               "signal_level": "average", "data": "0:1"}],
                  "config": {"threshold": 0}}]}

and becomes::

    {"uuid": "...", "device": "1CB074", "timestamp": 1517190960000,
     "datetime": "2018-01-29 01:56:00", "localdatetime": "2018-01-29 09:56:00",
     "battery": 60, "mode": 5,
     "magnet_id": "29270", "magnet_date": "2018-01-29T01:56Z",
     "magnet_signal_level": "average", "magnet_data": "0:1",
     "magnet_status": 0, "magnet_updates": 1}

Only scalar values are ever copied.  Nested structures are dropped, never
recursed into, and sensors sharing a ``sensor_type`` overwrite each other
(the later report wins).
"""

from __future__ import annotations

import logging
import math
import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from sensit_relay.errors import MalformedSensorData

logger = logging.getLogger(__name__)

MAGNET = "magnet"
SERIAL_NUMBER = "serial_number"
LOCAL_OFFSET = timedelta(hours=8)
DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"

# ASCII digits only. Leading whitespace covers NBSP, BOM and the Unicode space
# separators, but not the \x1c-\x1f controls that \s accepts.
_LEADING_INT_RE = re.compile(
    r"[\t\n\v\f\r \u00a0\u1680\u2000-\u200a\u2028\u2029\u202f\u205f\u3000\ufeff]*([+-]?[0-9]+)"
)


def flatten(obj: Mapping[str, Any], prefix: str = "") -> dict[str, Any]:
    """Copy the string and number values of *obj* under ``prefix + key``.

    Booleans, ``None``, lists and mappings are skipped.
    """
    result: dict[str, Any] = {}
    for key, value in obj.items():
        if isinstance(value, bool):
            continue
        if isinstance(value, (str, int, float)):
            result[f"{prefix}{key}"] = value
    return result


def parse_int(text: str) -> int | float:
    """Parse the leading base-10 integer of *text*, or return NaN.

    Mirrors the leniency of the sensor firmware's consumers: ``" 12abc"``
    parses as 12.
    """
    match = _LEADING_INT_RE.match(text)
    if match is None:
        return math.nan
    return int(match.group(1))


def build_sensor_fields(report: Mapping[str, Any], strict: bool = False) -> dict[str, Any]:
    """Flatten one sensor report into ``<sensor_type>_``-prefixed fields.

    Parameters
    ----------
    report:
        One entry of the callback's ``sensors`` list.
    strict:
        Raise :class:`MalformedSensorData` on an unparseable magnet segment
        instead of passing NaN through.

    Returns
    -------
    dict
        ``{type}_id`` plus the flattened first history sample.  Magnet
        samples gain ``{type}_status`` and ``{type}_updates``.
    """
    sensor_type = report.get("sensor_type") or ""
    prefix = f"{sensor_type}_"
    result: dict[str, Any] = {}

    sensor_id = report.get("id")
    if sensor_id:
        result[f"{prefix}id"] = sensor_id

    history = report.get("history")
    if not isinstance(history, list) or not history or not isinstance(history[0], Mapping):
        return result

    sample = dict(history[0])
    data = sample.get("data")
    if sensor_type == MAGNET and data and isinstance(data, str):
        segments = data.split(":")
        sample["status"] = _decode_segment(sensor_type, data, segments[0], strict)
        if len(segments) >= 2:
            sample["updates"] = _decode_segment(sensor_type, data, segments[1], strict)

    result.update(flatten(sample, prefix))
    return result


def normalize(
    raw: Optional[Mapping[str, Any]],
    now: Optional[datetime] = None,
    strict: bool = False,
) -> Optional[dict[str, Any]]:
    """Build the flat record for one callback body.

    Parameters
    ----------
    raw:
        Decoded callback body.
    now:
        Capture instant (defaults to the current UTC time).  All three time
        fields derive from this single value.
    strict:
        Forwarded to :func:`build_sensor_fields`.

    Returns
    -------
    dict or None
        ``None`` when there is no body or no ``serial_number``.
    """
    if not raw or not isinstance(raw, Mapping):
        return None
    device = raw.get(SERIAL_NUMBER)
    if not device:
        return None

    captured = now or datetime.now(timezone.utc)
    timestamp = round(captured.timestamp() * 1000)
    utc = datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc)

    record: dict[str, Any] = {
        "uuid": str(uuid.uuid4()),
        "device": device,
        "timestamp": timestamp,
        "datetime": utc.strftime(DATETIME_FORMAT),
        "localdatetime": (utc + LOCAL_OFFSET).strftime(DATETIME_FORMAT),
    }
    root = flatten(raw)
    # already carried as "device"
    root.pop(SERIAL_NUMBER, None)
    record.update(root)

    sensors = raw.get("sensors")
    if isinstance(sensors, list):
        for report in sensors:
            if isinstance(report, Mapping):
                record.update(build_sensor_fields(report, strict=strict))

    return record


def _decode_segment(sensor_type: str, data: str, segment: str, strict: bool) -> int | float:
    value = parse_int(segment)
    if isinstance(value, float):
        if strict:
            raise MalformedSensorData(sensor_type, data)
        logger.warning("Unparseable %s data segment %r in %r", sensor_type, segment, data)
    return value
