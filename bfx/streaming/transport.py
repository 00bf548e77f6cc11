"""Duplex, message-oriented transport consumed by the dispatcher.

The dispatcher only needs four operations. ``WebsocketTransport`` provides
them on top of ``websockets`` and translates its exceptions into the
streaming error taxonomy; tests swap in an in-memory fake.
"""

from __future__ import annotations

from typing import Protocol

import websockets
import websockets.asyncio.client
import structlog

from bfx.streaming.errors import ConnectError, ConnectionClosedError, SendError

logger = structlog.get_logger(__name__)


class Transport(Protocol):
    async def connect(self, url: str) -> None: ...

    async def send(self, data: str | bytes) -> None: ...

    async def receive(self) -> str | bytes: ...

    async def close(self) -> None: ...


class WebsocketTransport:
    """A single websocket connection."""

    def __init__(
        self,
        ping_interval: float | None = 30,
        ping_timeout: float | None = 10,
        max_size: int = 10 * 1024 * 1024,  # 10MB max message
    ) -> None:
        self._ping_interval = ping_interval
        self._ping_timeout = ping_timeout
        self._max_size = max_size
        self._ws: websockets.asyncio.client.ClientConnection | None = None

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def connect(self, url: str) -> None:
        try:
            self._ws = await websockets.asyncio.client.connect(
                url,
                ping_interval=self._ping_interval,
                ping_timeout=self._ping_timeout,
                max_size=self._max_size,
            )
        except websockets.InvalidHandshake as e:
            raise ConnectError(f"handshake failed: {e}") from e
        except websockets.WebSocketException as e:
            # InvalidURI and friends
            raise ConnectError(f"{type(e).__name__}: {e}") from e
        except (OSError, TimeoutError) as e:
            raise ConnectError(str(e)) from e
        logger.info("websocket_connected", url=url)

    async def send(self, data: str | bytes) -> None:
        if self._ws is None:
            raise SendError("not connected")
        try:
            await self._ws.send(data)
        except websockets.ConnectionClosed as e:
            raise SendError(f"connection closed during send: {e}") from e

    async def receive(self) -> str | bytes:
        if self._ws is None:
            raise ConnectionClosedError(reason="not connected")
        try:
            return await self._ws.recv()
        except websockets.ConnectionClosed as e:
            rcvd = e.rcvd
            raise ConnectionClosedError(
                code=rcvd.code if rcvd else None,
                reason=rcvd.reason if rcvd else "",
            ) from e

    async def close(self) -> None:
        if self._ws is None:
            return
        ws, self._ws = self._ws, None
        await ws.close()
        logger.info("websocket_closed")
