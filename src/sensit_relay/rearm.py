"""Re-arm loop over Google Cloud Pub/Sub.

A re-arm is a ``{"status": "waiting"}`` message on the configured topic.  The
queue-triggered handler consumes it and runs one presence session; when that
session times out it publishes the next message.  No state is carried
between activations, so the loop survives process restarts.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

import orjson

from sensit_relay.config import AppConfig
from sensit_relay.gateway import HttpGateway
from sensit_relay.models import PresenceSession
from sensit_relay.presence import PresenceKeeper

logger = logging.getLogger(__name__)

REARM_MESSAGE = {"status": "waiting"}
PUBLISH_TIMEOUT_SECONDS = 30.0


class RearmPublisher:
    """Publish re-arm messages to the configured Pub/Sub topic.

    The Pub/Sub client is created on first use so importing this module
    never needs Google credentials.
    """

    def __init__(self, config: AppConfig, client: Any = None) -> None:
        self._project_id = config.rearm.project_id
        self._topic = config.rearm.topic
        self._client = client

    def _publisher(self) -> Any:
        if self._client is None:
            from google.cloud import pubsub_v1

            self._client = pubsub_v1.PublisherClient()
        return self._client

    @property
    def topic_path(self) -> str:
        return self._publisher().topic_path(self._project_id, self._topic)

    async def publish(self) -> str:
        """Publish one re-arm message and return its Pub/Sub message id."""
        client = self._publisher()
        future = client.publish(self.topic_path, orjson.dumps(REARM_MESSAGE))
        message_id = await asyncio.to_thread(future.result, PUBLISH_TIMEOUT_SECONDS)
        logger.info("Published re-arm to %s: %s", self._topic, message_id)
        return message_id


async def handle_rearm_message(
    config: AppConfig,
    data: Optional[bytes] = None,
    publisher: Optional[RearmPublisher] = None,
    gateway_factory: Callable[[AppConfig], HttpGateway] = HttpGateway,
    **keeper_kwargs: Any,
) -> Optional[PresenceSession]:
    """Run one presence session for a queue message.

    Never raises: a failure reported back to Pub/Sub would only cause the
    message to be redelivered.
    """
    try:
        if data:
            logger.debug("Re-arm message: %s", data[:200])
        publisher = publisher or RearmPublisher(config)
        async with gateway_factory(config) as gateway:
            keeper = PresenceKeeper(config, gateway, publisher, **keeper_kwargs)
            session = await keeper.run()
        logger.info(
            "Presence session ended: %s (rearmed=%s)",
            session.reason.value if session.reason else None,
            session.rearmed,
        )
        return session
    except Exception as exc:
        logger.exception("Presence session crashed: %s", exc)
        return None
