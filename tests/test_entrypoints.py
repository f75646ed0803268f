"""Tests for the Cloud Functions entry points."""

import base64
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import orjson
import pytest

from payloads import open_callback
from sensit_relay import entrypoints
from sensit_relay.config import AppConfig
from sensit_relay.models import CallbackOutcome


@pytest.fixture(autouse=True)
def loaded_config():
    with patch.object(entrypoints, "_load", return_value=AppConfig()) as load:
        yield load


def _request(body: bytes) -> MagicMock:
    request = MagicMock()
    request.get_data.return_value = body
    return request


def test_callback_answers_ok() -> None:
    outcome = CallbackOutcome(body="OK")
    with patch.object(entrypoints, "run_callback", AsyncMock(return_value=outcome)) as run:
        body, status, headers = entrypoints.on_callback(_request(orjson.dumps(open_callback())))

    assert status == 200
    assert orjson.loads(body) == "OK"
    assert headers["Content-Type"] == "application/json"
    assert run.await_args.args[1]["serial_number"] == "1CB074"


def test_callback_error_still_200() -> None:
    with patch.object(entrypoints, "run_callback", AsyncMock(side_effect=RuntimeError("boom"))):
        body, status, _ = entrypoints.on_callback(_request(orjson.dumps(open_callback())))

    assert status == 200
    assert orjson.loads(body) == "Error"


def test_callback_garbage_body_passes_none() -> None:
    with patch.object(entrypoints, "run_callback", AsyncMock(return_value=CallbackOutcome())) as run:
        _, status, _ = entrypoints.on_callback(_request(b"not json"))

    assert status == 200
    assert run.await_args.args[1] is None


def test_rearm_decodes_pubsub_message() -> None:
    data = base64.b64encode(b'{"status": "waiting"}').decode()
    event = SimpleNamespace(data={"message": {"data": data}})
    with patch.object(entrypoints, "handle_rearm_message", AsyncMock(return_value=None)) as handle:
        entrypoints.on_rearm(event)

    assert handle.await_args.args[1] == b'{"status": "waiting"}'


def test_rearm_never_raises() -> None:
    event = SimpleNamespace(data={"message": {"data": "%%% not base64 %%%"}})
    with patch.object(entrypoints, "handle_rearm_message", AsyncMock()) as handle:
        entrypoints.on_rearm(event)

    handle.assert_not_awaited()
