"""Tests for the classifier module."""

import orjson
import pytest

from payloads import open_callback
from sensit_relay.classifier import classify


def test_valid_body_bytes() -> None:
    """A well-formed callback body decodes to the body dict."""
    result = classify(orjson.dumps(open_callback()))
    assert isinstance(result, dict)
    assert result["serial_number"] == "1CB074"
    assert result["sensors"][1]["sensor_type"] == "magnet"


def test_valid_body_str() -> None:
    result = classify('{"serial_number": "1CB074"}')
    assert result == {"serial_number": "1CB074"}


def test_decoded_dict_passthrough() -> None:
    body = open_callback()
    assert classify(body) is body


def test_invalid_json() -> None:
    """Broken JSON is skipped, not raised."""
    assert classify(b"{not valid json!!!") is None


@pytest.mark.parametrize("raw", [b"[1, 2]", b'"OK"', b"42"])
def test_not_an_object(raw: bytes) -> None:
    assert classify(raw) is None


@pytest.mark.parametrize("raw", [None, b"", ""])
def test_empty_body(raw) -> None:
    assert classify(raw) is None


def test_missing_serial_number() -> None:
    """No ``serial_number`` → silently skipped."""
    assert classify(b'{"battery": 60}') is None
    assert classify(b'{"serial_number": ""}') is None
