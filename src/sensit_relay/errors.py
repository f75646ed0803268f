"""Exception types and the error taxonomy used in step results.

None of these ever reach the inbound HTTP caller or the Pub/Sub runtime:
they are caught at the component boundary that raised them and recorded as
an :class:`ErrorKind` on a :class:`~sensit_relay.models.StepResult`.
"""

from __future__ import annotations

import enum


class ErrorKind(enum.Enum):
    """Why a pipeline step or presence session did not succeed."""

    MISSING_DEVICE = "missing_device"
    VALIDATION = "validation"
    DOWNSTREAM_RELAY = "downstream_relay"
    NOTIFICATION = "notification"
    PRESENCE = "presence"
    REARM = "rearm"


class RelayError(Exception):
    """Base class for sensit-relay errors."""


class HttpCallError(RelayError):
    """An outbound HTTP call failed (network error, timeout or non-2xx)."""

    def __init__(self, method: str, url: str, message: str, status: int | None = None) -> None:
        self.method = method
        self.url = url
        self.status = status
        super().__init__(f"{method} {url} failed: {message}")


class PresenceConnectError(RelayError):
    """The presence service did not hand out a websocket URL."""


class MalformedSensorData(RelayError):
    """A magnet ``data`` segment is not an integer (strict mode only)."""

    def __init__(self, sensor_type: str, data: str) -> None:
        self.sensor_type = sensor_type
        self.data = data
        super().__init__(f"Malformed {sensor_type} data: {data!r}")
