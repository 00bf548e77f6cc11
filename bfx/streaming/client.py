"""Bitfinex websocket client — the caller-facing streaming API."""

from __future__ import annotations

import asyncio
import itertools
from typing import Any

import structlog

from bfx.config import AppConfig, get_config
from bfx.streaming.dispatcher import ConnectionState, Dispatcher
from bfx.streaming.registry import Callback, ChannelRegistry, ErrorCallback, SubscriptionHandle
from bfx.streaming.subscriptions import SubscriptionManager
from bfx.streaming.transport import Transport, WebsocketTransport

logger = structlog.get_logger(__name__)


class BitfinexWSClient:
    """
    One websocket connection multiplexing many trade and book channels.

    Callbacks run on the reader task, in arrival order per channel. Anything
    slow should be handed off to the caller's own task or queue.

    Usage::

        async with BitfinexWSClient() as client:
            await client.subscribe_trades("tBTCUSD", on_trade)
            await client.wait_closed()

    The client does not reconnect. After the connection drops, every handle
    is closed with ConnectionClosedError and the caller decides whether to
    connect again and resubscribe.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        transport: Transport | None = None,
        **dispatcher_kwargs: Any,
    ) -> None:
        self._config = config or get_config()
        if transport is None:
            transport = WebsocketTransport(
                ping_interval=self._config.tuning.ws_ping_interval,
                ping_timeout=self._config.tuning.ws_pong_timeout,
            )
        self.dispatcher = Dispatcher(transport, self._config.tuning, **dispatcher_kwargs)
        self.subscriptions = SubscriptionManager(self.dispatcher)
        self._reader: asyncio.Task | None = None
        self._ping_ids = itertools.count(1)

    @property
    def state(self) -> ConnectionState:
        return self.dispatcher.state

    @property
    def registry(self) -> ChannelRegistry:
        return self.dispatcher.registry

    # ── Connection lifecycle ──────────────────────────────────────────

    async def connect(self, url: str | None = None) -> None:
        """Open the connection and start the reader task."""
        await self.dispatcher.open(url or self._config.bitfinex.ws_url)
        self._reader = asyncio.create_task(self.dispatcher.run(), name="bfx-ws-reader")

    async def wait_closed(self) -> None:
        """Block until the reader stops. Raises ConnectionClosedError on remote closure."""
        if self._reader is None:
            return
        await self._reader

    async def close(self) -> None:
        await self.dispatcher.close()
        if self._reader is not None:
            reader, self._reader = self._reader, None
            # Remote-closure errors were already delivered to each subscription
            await asyncio.gather(reader, return_exceptions=True)

    async def __aenter__(self) -> BitfinexWSClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def ping(self) -> int:
        """Send a ping; the pong is logged by the dispatcher. Returns the cid used."""
        cid = next(self._ping_ids)
        await self.dispatcher.ping(cid)
        return cid

    # ── Subscriptions ─────────────────────────────────────────────────

    async def subscribe_trades(
        self,
        symbol: str,
        on_trade: Callback,
        on_error: ErrorCallback | None = None,
    ) -> SubscriptionHandle:
        return await self.subscriptions.subscribe_trades(symbol, on_trade, on_error)

    async def subscribe_book(
        self,
        symbol: str,
        on_update: Callback,
        precision: str | None = None,
        frequency: str | None = None,
        depth: int | None = None,
        on_error: ErrorCallback | None = None,
    ) -> SubscriptionHandle:
        return await self.subscriptions.subscribe_book(
            symbol, on_update, precision, frequency, depth, on_error
        )

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        await self.subscriptions.unsubscribe(handle)
