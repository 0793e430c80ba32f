"""aiohttp WebSocket transport for the message channel."""
from __future__ import annotations

import asyncio
import logging

import aiohttp

from chat_client.application.exceptions import ChannelConnectionError

logger = logging.getLogger(__name__)

AUTH_FAILED_CLOSE_CODE = 4001
_AUTH_REJECTED_STATUSES = frozenset({401, 403})
_CLOSING_TYPES = frozenset({
    aiohttp.WSMsgType.CLOSE,
    aiohttp.WSMsgType.CLOSING,
    aiohttp.WSMsgType.CLOSED,
    aiohttp.WSMsgType.ERROR,
})


class AiohttpChannelTransport:
    """Implements application.ports.channel.ChannelTransport."""

    def __init__(
        self,
        url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        connect_timeout: float = 15.0,
    ) -> None:
        self._url = url
        self._session = session
        self._owns_session = session is None
        self._connect_timeout = connect_timeout
        self._ws: aiohttp.ClientWebSocketResponse | None = None

    async def open(self, token: str) -> None:
        await self._close_ws()
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        try:
            self._ws = await asyncio.wait_for(
                self._session.ws_connect(self._url, params={"token": token}),
                timeout=self._connect_timeout,
            )
        except aiohttp.WSServerHandshakeError as exc:
            if exc.status in _AUTH_REJECTED_STATUSES:
                raise ChannelConnectionError("Authentication failed", retryable=False) from exc
            raise ChannelConnectionError(f"Handshake failed: {exc.status}") from exc
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as exc:
            raise ChannelConnectionError(str(exc) or type(exc).__name__) from exc
        logger.debug("WS transport open: %s", self._url)

    async def send_text(self, data: str) -> None:
        ws = self._ws
        if ws is None or ws.closed:
            raise ChannelConnectionError("Not connected")
        try:
            await ws.send_str(data)
        except (aiohttp.ClientError, ConnectionResetError, RuntimeError) as exc:
            raise ChannelConnectionError(str(exc) or type(exc).__name__) from exc

    async def receive_text(self) -> str | None:
        ws = self._ws
        if ws is None:
            return None
        while True:
            msg = await ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                return msg.data
            if msg.type == aiohttp.WSMsgType.BINARY:
                return msg.data.decode("utf-8", errors="replace")
            if msg.type in _CLOSING_TYPES:
                if ws.close_code == AUTH_FAILED_CLOSE_CODE:
                    raise ChannelConnectionError("Authentication failed", retryable=False)
                return None

    async def close(self) -> None:
        await self._close_ws()
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def _close_ws(self) -> None:
        if self._ws is not None:
            ws, self._ws = self._ws, None
            if not ws.closed:
                await ws.close()
