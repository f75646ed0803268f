"""Presence keep-alive: hold a chat websocket open while the door is open.

One activation is one :class:`PresenceSession` and walks this state machine::

    INIT → CONNECTING → (url) → LIVE → (closing signal) → CLOSED_BY_PEER
                      → (error) → FAILED       → (timeout) → TIMED_OUT → REARMED
                                               → (socket error) → FAILED

While LIVE, the socket watcher and a jittered timeout run as two tasks and the
first to finish wins; the other is cancelled.  Only a timeout re-arms, by
publishing exactly one message for the next activation to pick up.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import random
from typing import TYPE_CHECKING, Any, Callable, Optional, Protocol, Union

import orjson
import websockets
import websockets.exceptions

from sensit_relay.config import AppConfig
from sensit_relay.errors import ErrorKind, HttpCallError, PresenceConnectError
from sensit_relay.models import PresenceSession, TerminationReason

if TYPE_CHECKING:
    from sensit_relay.gateway import HttpGateway

logger = logging.getLogger(__name__)


class PresenceState(enum.Enum):
    """States in the presence session state machine."""

    INIT = "INIT"
    CONNECTING = "CONNECTING"
    LIVE = "LIVE"
    CLOSED_BY_PEER = "CLOSED_BY_PEER"
    TIMED_OUT = "TIMED_OUT"
    REARMED = "REARMED"
    FAILED = "FAILED"


class Rearmer(Protocol):
    async def publish(self) -> str: ...


def _default_connect(url: str) -> Any:
    return websockets.connect(url, ping_interval=20, ping_timeout=20, close_timeout=10)


class PresenceKeeper:
    """Runs a single presence session.

    Parameters
    ----------
    config:
        Application config (presence timings and the closing-signal text).
    gateway:
        Open :class:`~sensit_relay.gateway.HttpGateway` used for the connect
        round-trip.
    rearmer:
        Anything with an async ``publish()``; called once on timeout.
    connect:
        Websocket opener returning an async context manager.  Defaults to
        :func:`websockets.connect`.
    uniform:
        Random source for the timeout jitter.
    """

    def __init__(
        self,
        config: AppConfig,
        gateway: "HttpGateway",
        rearmer: Rearmer,
        connect: Callable[[str], Any] = _default_connect,
        uniform: Callable[[float, float], float] = random.uniform,
    ) -> None:
        self._presence = config.presence
        self._signal = config.messages.closing_signal
        self._gateway = gateway
        self._rearmer = rearmer
        self._connect = connect
        self._uniform = uniform
        self._state = PresenceState.INIT
        self.session = PresenceSession()

    @property
    def state(self) -> PresenceState:
        return self._state

    async def run(self) -> PresenceSession:
        """Drive the session to a terminal state and return it."""
        session = self.session

        self._set_state(PresenceState.CONNECTING)
        try:
            session.url = await self._gateway.presence_endpoint()
        except (HttpCallError, PresenceConnectError) as exc:
            logger.error("Presence connect failed: %s", exc, exc_info=True)
            return self._fail()

        try:
            signalled = await self._hold_connection(session)
        except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as exc:
            logger.error("Presence socket error: %s", exc, exc_info=True)
            return self._fail()

        if signalled is None:
            logger.warning("Presence socket closed before closing signal or timeout")
            return self._fail()

        if signalled:
            session.reason = TerminationReason.CLOSED_SIGNAL
            self._set_state(PresenceState.CLOSED_BY_PEER)
            # let log handlers drain before the process is torn down
            await asyncio.sleep(self._presence.grace_seconds)
            return session

        session.reason = TerminationReason.TIMEOUT
        self._set_state(PresenceState.TIMED_OUT)
        try:
            message_id = await self._rearmer.publish()
        except Exception as exc:
            logger.error("Re-arm publish failed: %s", exc, exc_info=True)
            session.error = ErrorKind.REARM
            return session
        session.rearmed = True
        self._set_state(PresenceState.REARMED)
        logger.info("Re-armed presence (message %s)", message_id)
        return session

    # ── internal: live race ─────────────────────────────────────────

    async def _hold_connection(self, session: PresenceSession) -> Optional[bool]:
        """Open the socket and race the closing signal against the timeout.

        Returns ``True`` on closing signal, ``False`` on timeout and ``None``
        when the peer closed the socket first.  The socket is closed on
        return in every case.
        """
        async with self._connect(session.url) as ws:
            session.connection = ws
            self._set_state(PresenceState.LIVE)
            await ws.send(self._presence.hello_text)

            session.timeout_seconds = self._uniform(
                self._presence.timeout_min_seconds, self._presence.timeout_max_seconds
            )
            logger.info("Waiting for closing signal (timeout %.0fs)", session.timeout_seconds)

            watcher = asyncio.create_task(self._watch(ws, session))
            timer = asyncio.create_task(asyncio.sleep(session.timeout_seconds))
            session.timer = timer
            try:
                done, _ = await asyncio.wait(
                    {watcher, timer}, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                for task in (watcher, timer):
                    task.cancel()
                await asyncio.gather(watcher, timer, return_exceptions=True)

            if watcher in done:
                return watcher.result()
            return False

    async def _watch(self, ws: Any, session: PresenceSession) -> Optional[bool]:
        async for frame in ws:
            session.frames_seen += 1
            if is_closing_signal(frame, self._signal):
                logger.info("Closing signal received")
                return True
        return None

    # ── helpers ─────────────────────────────────────────────────────

    def _fail(self) -> PresenceSession:
        self.session.reason = TerminationReason.FAILED
        self.session.error = ErrorKind.PRESENCE
        self._set_state(PresenceState.FAILED)
        return self.session

    def _set_state(self, new: PresenceState) -> None:
        old = self._state
        self._state = new
        logger.info("Presence state: %s → %s", old.value, new.value)


def is_closing_signal(frame: Union[str, bytes], signal: str) -> bool:
    """Whether a websocket frame carries the closing-signal text.

    Chat events arrive as JSON with the message in ``text``; anything else
    is matched on its raw text.
    """
    text = frame.decode("utf-8", errors="replace") if isinstance(frame, bytes) else frame
    try:
        event = orjson.loads(text)
    except orjson.JSONDecodeError:
        event = None
    if isinstance(event, dict) and isinstance(event.get("text"), str):
        if signal in event["text"]:
            return True
    return signal in text
