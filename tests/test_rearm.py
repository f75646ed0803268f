"""Tests for the Pub/Sub re-arm publisher and queue handler."""

from __future__ import annotations

import concurrent.futures
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

import orjson

from sensit_relay.config import AppConfig, RearmConfig
from sensit_relay.models import PresenceSession, TerminationReason
from sensit_relay.rearm import REARM_MESSAGE, RearmPublisher, handle_rearm_message


def _client(message_id: str = "1234") -> MagicMock:
    future: concurrent.futures.Future = concurrent.futures.Future()
    future.set_result(message_id)
    client = MagicMock()
    client.topic_path.side_effect = lambda project, topic: f"projects/{project}/topics/{topic}"
    client.publish.return_value = future
    return client


class _GatewayContext:
    async def __aenter__(self):
        return MagicMock()

    async def __aexit__(self, *exc_info):
        return None


class TestRearmPublisher(unittest.IsolatedAsyncioTestCase):

    async def test_publish_waiting_message(self):
        cfg = AppConfig(rearm=RearmConfig(project_id="door-project", topic="waitForToilet"))
        client = _client("42")
        publisher = RearmPublisher(cfg, client=client)

        message_id = await publisher.publish()

        self.assertEqual(message_id, "42")
        topic, data = client.publish.call_args.args
        self.assertEqual(topic, "projects/door-project/topics/waitForToilet")
        self.assertEqual(orjson.loads(data), REARM_MESSAGE)

    async def test_publish_error_propagates(self):
        future: concurrent.futures.Future = concurrent.futures.Future()
        future.set_exception(RuntimeError("permission denied"))
        client = _client()
        client.publish.return_value = future
        publisher = RearmPublisher(AppConfig(), client=client)

        with self.assertRaises(RuntimeError):
            await publisher.publish()


class TestRearmHandler(unittest.IsolatedAsyncioTestCase):

    async def test_runs_one_session(self):
        session = PresenceSession(reason=TerminationReason.TIMEOUT, rearmed=True)
        with patch("sensit_relay.rearm.PresenceKeeper") as keeper_cls:
            keeper_cls.return_value.run = AsyncMock(return_value=session)
            result = await handle_rearm_message(
                AppConfig(),
                b'{"status": "waiting"}',
                publisher=MagicMock(),
                gateway_factory=lambda cfg: _GatewayContext(),
            )

        self.assertIs(result, session)
        keeper_cls.return_value.run.assert_awaited_once()

    async def test_swallows_errors(self):
        """A crashing session never escapes to the queue runtime."""
        with patch("sensit_relay.rearm.PresenceKeeper") as keeper_cls:
            keeper_cls.return_value.run = AsyncMock(side_effect=RuntimeError("boom"))
            result = await handle_rearm_message(
                AppConfig(),
                publisher=MagicMock(),
                gateway_factory=lambda cfg: _GatewayContext(),
            )

        self.assertIsNone(result)
