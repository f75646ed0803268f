"""Dataclass models shared by the orchestrator and the presence keeper.

Normalized records themselves stay plain ``dict`` objects: they are open-ended
(every root scalar of the callback is copied in) and are serialized straight
to JSON with ``orjson.dumps()``.
"""

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any, Optional

from sensit_relay.errors import ErrorKind

OUTWARD_OK = "OK"
OUTWARD_ERROR = "Error"


@dataclass
class StepResult:
    """Tagged result of one orchestrator step."""

    step: str = ""
    ok: bool = True
    kind: Optional[ErrorKind] = None
    message: str = ""

    @classmethod
    def success(cls, step: str) -> "StepResult":
        return cls(step=step, ok=True)

    @classmethod
    def failure(cls, step: str, kind: ErrorKind, message: str = "") -> "StepResult":
        return cls(step=step, ok=False, kind=kind, message=message)


@dataclass
class CallbackOutcome:
    """Everything one inbound callback produced.

    ``body`` is what the HTTP trigger answers with; the status code is
    always 200 regardless of what went wrong downstream.
    """

    record: Optional[dict[str, Any]] = None
    door_open: Optional[bool] = None
    armed: bool = False
    steps: list[StepResult] = field(default_factory=list)
    body: str = OUTWARD_OK

    @property
    def failures(self) -> list[StepResult]:
        return [s for s in self.steps if not s.ok]


class TerminationReason(enum.Enum):
    """How a presence session ended."""

    CLOSED_SIGNAL = "closed-signal"
    TIMEOUT = "timeout"
    FAILED = "failed"


@dataclass
class PresenceSession:
    """In-memory state of one presence activation.

    Never persisted; one instance per queue message.  ``connection`` and
    ``timer`` are the live websocket and the pending-timeout task while the
    session is LIVE; both are finished once the session has ended.
    """

    url: Optional[str] = None
    timeout_seconds: float = 0.0
    reason: Optional[TerminationReason] = None
    rearmed: bool = False
    frames_seen: int = 0
    error: Optional[ErrorKind] = None
    connection: Any = field(default=None, repr=False)
    timer: Optional[asyncio.Task] = field(default=None, repr=False)
