"""Callback pipeline: normalize → status ping → relay → broadcast → arm.

Each step returns a :class:`~sensit_relay.models.StepResult`.  A failed
status ping is tolerated; any other failure stops the pipeline.  Whatever
happens, the inbound caller gets HTTP 200: ``"OK"`` when the chain ran to
its end (or there was nothing to do), ``"Error"`` otherwise.  Sensit would
otherwise retry the callback and duplicate the downstream record.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Mapping, Optional

import orjson

from sensit_relay.config import AppConfig
from sensit_relay.errors import ErrorKind, HttpCallError, MalformedSensorData
from sensit_relay.gateway import HttpGateway
from sensit_relay.models import OUTWARD_ERROR, CallbackOutcome, StepResult
from sensit_relay.presence import Rearmer
from sensit_relay.rearm import RearmPublisher
from sensit_relay.transform import normalize

logger = logging.getLogger(__name__)


class NotificationOrchestrator:
    """Runs the callback pipeline against the HTTP gateway and re-arm publisher."""

    def __init__(self, config: AppConfig, gateway: HttpGateway, rearmer: Rearmer) -> None:
        self._config = config
        self._gateway = gateway
        self._rearmer = rearmer

    async def handle_callback(self, raw: Optional[Mapping[str, Any]]) -> CallbackOutcome:
        """Process one callback body.  Never raises."""
        outcome = CallbackOutcome()
        steps: list[tuple[Callable[..., Awaitable[StepResult]], bool]] = [
            (self._normalize, False),
            (self._ping_status, True),
            (self._relay, False),
            (self._broadcast, False),
            (self._arm, False),
        ]

        for step, tolerated in steps:
            try:
                result = await step(raw, outcome)
            except Exception as exc:
                logger.exception("Unexpected failure in %s", step.__name__)
                result = StepResult.failure(step.__name__.lstrip("_"), ErrorKind.NOTIFICATION, str(exc))
            outcome.steps.append(result)

            if result.ok or tolerated:
                continue
            if result.kind is not ErrorKind.MISSING_DEVICE:
                outcome.body = OUTWARD_ERROR
            break

        return outcome

    # ── steps ───────────────────────────────────────────────────────

    async def _normalize(self, raw: Optional[Mapping[str, Any]], outcome: CallbackOutcome) -> StepResult:
        try:
            record = normalize(raw, strict=self._config.normalize.strict_magnet_data)
        except MalformedSensorData as exc:
            logger.warning("Rejected callback: %s", exc)
            return StepResult.failure("normalize", ErrorKind.VALIDATION, str(exc))
        if record is None:
            logger.debug("Callback without device, nothing to relay")
            return StepResult.failure("normalize", ErrorKind.MISSING_DEVICE)

        outcome.record = record
        logger.info(
            "Normalized callback %s from device %s",
            record["uuid"],
            record["device"],
        )
        return StepResult.success("normalize")

    async def _ping_status(self, raw: Any, outcome: CallbackOutcome) -> StepResult:
        try:
            await self._gateway.ping_status(outcome.record)
        except HttpCallError as exc:
            logger.error("Status ping failed: %s", exc, exc_info=True)
            return StepResult.failure("ping_status", ErrorKind.NOTIFICATION, str(exc))
        return StepResult.success("ping_status")

    async def _relay(self, raw: Any, outcome: CallbackOutcome) -> StepResult:
        payload = dict(outcome.record)
        payload["text"] = orjson.dumps(raw).decode()
        try:
            await self._gateway.relay(payload)
        except HttpCallError as exc:
            logger.error("Relay to ingestion endpoint failed: %s", exc, exc_info=True)
            return StepResult.failure("relay", ErrorKind.DOWNSTREAM_RELAY, str(exc))
        logger.info("Relayed callback %s", outcome.record["uuid"])
        return StepResult.success("relay")

    async def _broadcast(self, raw: Any, outcome: CallbackOutcome) -> StepResult:
        messages = self._config.messages
        outcome.door_open = outcome.record.get("magnet_status") == self._config.normalize.open_status
        text = messages.open_message if outcome.door_open else messages.closed_message
        try:
            await self._gateway.broadcast(text)
        except HttpCallError as exc:
            logger.error("Broadcast failed: %s", exc, exc_info=True)
            return StepResult.failure("broadcast", ErrorKind.NOTIFICATION, str(exc))
        logger.info("Broadcast door %s", "open" if outcome.door_open else "closed")
        return StepResult.success("broadcast")

    async def _arm(self, raw: Any, outcome: CallbackOutcome) -> StepResult:
        if not outcome.door_open:
            return StepResult.success("arm")
        try:
            await self._rearmer.publish()
        except Exception as exc:
            logger.error("Arming presence failed: %s", exc, exc_info=True)
            return StepResult.failure("arm", ErrorKind.REARM, str(exc))
        outcome.armed = True
        return StepResult.success("arm")


async def run_callback(
    config: AppConfig,
    raw: Optional[Mapping[str, Any]],
    rearmer: Optional[Rearmer] = None,
    gateway_factory: Callable[[AppConfig], HttpGateway] = HttpGateway,
) -> CallbackOutcome:
    """Open a gateway, run the pipeline for *raw*, and close the gateway."""
    rearmer = rearmer or RearmPublisher(config)
    async with gateway_factory(config) as gateway:
        orchestrator = NotificationOrchestrator(config, gateway, rearmer)
        return await orchestrator.handle_callback(raw)
