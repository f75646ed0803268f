"""Outbound HTTP calls: status ping, ingestion relay, broadcast, presence connect.

All calls share one :class:`aiohttp.ClientSession` per gateway and a bounded
total timeout.  Any network error, timeout or non-2xx status is raised as
:class:`~sensit_relay.errors.HttpCallError`; deciding whether that is fatal
is left to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Optional

import aiohttp
import orjson

from sensit_relay.config import AppConfig
from sensit_relay.errors import HttpCallError, PresenceConnectError

logger = logging.getLogger(__name__)

JSON_HEADERS = {
    "Accept": "application/json",
    "Content-Type": "application/json",
}


class HttpGateway:
    """Thin async client for every HTTP collaborator.

    Use as an async context manager so the session is always closed::

        async with HttpGateway(cfg) as gateway:
            await gateway.broadcast("hello")
    """

    def __init__(self, config: AppConfig, session: Optional[aiohttp.ClientSession] = None) -> None:
        self._endpoints = config.endpoints
        self._presence = config.presence
        self._timeout = aiohttp.ClientTimeout(total=config.http.timeout_seconds)
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "HttpGateway":
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    # ── collaborators ───────────────────────────────────────────────

    async def ping_status(self, record: Mapping[str, Any]) -> Any:
        """GET the status service with the device id and magnet fields."""
        params = {
            key: str(record[key])
            for key in ("device", "magnet_date", "magnet_status")
            if key in record
        }
        return await self._request("GET", self._endpoints.status_url, params=params)

    async def relay(self, record: Mapping[str, Any]) -> Any:
        """POST the normalized record to the ingestion endpoint."""
        return await self._request(
            "POST",
            self._endpoints.ingest_url,
            body=orjson.dumps(record, option=orjson.OPT_INDENT_2),
        )

    async def broadcast(self, text: str) -> Any:
        """POST a ``{"text": ...}`` message to the broadcast channel."""
        return await self._request(
            "POST", self._endpoints.broadcast_url, body=orjson.dumps({"text": text})
        )

    async def presence_endpoint(self) -> str:
        """Ask the presence service for a websocket URL.

        Raises
        ------
        PresenceConnectError
            When the service answers without ``ok`` or without a ``url``.
        """
        result = await self._request(
            "GET", self._presence.connect_url, params={"token": self._presence.token}
        )
        if not isinstance(result, dict) or not result.get("ok", True):
            error = result.get("error") if isinstance(result, dict) else result
            raise PresenceConnectError(f"Presence service refused connect: {error}")
        url = result.get("url")
        if not url:
            raise PresenceConnectError("Presence service returned no websocket URL")
        return url

    # ── internal ────────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        url: str,
        params: Optional[Mapping[str, str]] = None,
        body: Optional[bytes] = None,
    ) -> Any:
        """Send one request and return the decoded JSON (or text) body."""
        if self._session is None:
            raise RuntimeError("HttpGateway used outside 'async with'")
        if not url:
            raise HttpCallError(method, url, "no URL configured")

        try:
            async with self._session.request(
                method,
                url,
                params=params,
                data=body,
                headers=JSON_HEADERS,
                timeout=self._timeout,
            ) as response:
                text = await response.text()
                if response.status >= 400:
                    raise HttpCallError(method, url, text[:200], status=response.status)
                logger.debug("%s %s → %d", method, url, response.status)
                return _decode(text, response.headers.get("Content-Type", ""))
        except (asyncio.TimeoutError, TimeoutError) as exc:
            raise HttpCallError(method, url, "timed out") from exc
        except aiohttp.ClientError as exc:
            raise HttpCallError(method, url, str(exc)) from exc


def _decode(text: str, content_type: str) -> Any:
    if "application/json" in content_type and text:
        try:
            return orjson.loads(text)
        except orjson.JSONDecodeError:
            logger.warning("Response claimed JSON but did not parse")
    return text
