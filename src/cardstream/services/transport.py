"""WebSocket transport for card streams.

Wraps a `websockets` client connection in the small send/receive/close
surface the session needs. Every way the connection can go away (refused,
handshake failure, peer close, idle timeout) surfaces as a
ConnectionLostError so the session has a single transport error to handle.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from cardstream.core.config import Settings, get_settings
from cardstream.core.exceptions import ConnectionLostError
from cardstream.services.interfaces import ChannelConnector


logger = logging.getLogger(__name__)


def _close_code(exc: ConnectionClosed) -> int | None:
    frame = exc.rcvd or exc.sent
    return frame.code if frame is not None else None


class WebSocketChannel:
    """Duplex channel over an open websockets client connection."""

    def __init__(self, websocket: Any, *, idle_timeout: float | None = None) -> None:
        self._ws = websocket
        self.idle_timeout = idle_timeout
        self._closed = False

    @classmethod
    async def connect(
        cls,
        url: str,
        *,
        open_timeout: float = 10.0,
        idle_timeout: float | None = 60.0,
    ) -> WebSocketChannel:
        logger.info("Connecting to element stream at %s", url)
        try:
            websocket = await websockets.connect(
                url, open_timeout=open_timeout, max_size=None
            )
        except (OSError, TimeoutError, WebSocketException) as e:
            raise ConnectionLostError(
                f"Could not connect to {url}: {str(e) or e.__class__.__name__}"
            ) from e
        return cls(websocket, idle_timeout=idle_timeout)

    async def send(self, frame: str) -> None:
        try:
            await self._ws.send(frame)
        except ConnectionClosed as e:
            raise ConnectionLostError(
                f"Connection closed while sending (code: {_close_code(e)})"
            ) from e

    async def receive(self) -> str | bytes:
        try:
            async with asyncio.timeout(self.idle_timeout):
                return await self._ws.recv()
        except TimeoutError as e:
            raise ConnectionLostError(
                f"No frame received for {self.idle_timeout:g}s"
            ) from e
        except ConnectionClosed as e:
            raise ConnectionLostError(
                f"Connection closed unexpectedly (code: {_close_code(e)})"
            ) from e

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._ws.close()
        except (OSError, WebSocketException):
            logger.debug("Error while closing stream connection", exc_info=True)


def websocket_connector(settings: Settings | None = None) -> ChannelConnector:
    """Build a connector that opens a fresh channel to the stream endpoint."""
    settings = settings or get_settings()

    async def connect() -> WebSocketChannel:
        return await WebSocketChannel.connect(
            settings.stream_url,
            open_timeout=settings.CONNECT_TIMEOUT_SECONDS,
            idle_timeout=settings.IDLE_TIMEOUT_SECONDS,
        )

    return connect
