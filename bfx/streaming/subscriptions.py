"""Subscription manager: turns caller requests into subscribe/unsubscribe frames."""

from __future__ import annotations

import structlog

from bfx.streaming.dispatcher import Dispatcher
from bfx.streaming.errors import MissingHandlerError, SendError
from bfx.streaming.keys import SubscriptionKey
from bfx.streaming.registry import (
    Callback,
    ChannelState,
    ErrorCallback,
    SubscriptionHandle,
)

logger = structlog.get_logger(__name__)


def _require_handler(callback: Callback | None) -> None:
    if callback is None or not callable(callback):
        raise MissingHandlerError("a callback is required for live-stream subscriptions")


class SubscriptionManager:
    """
    Registers subscriptions with the dispatcher's registry and writes the
    matching control frames.

    The pending entry is inserted before the subscribe frame is sent, with no
    await in between, so the read loop can never see the ack first.
    """

    def __init__(self, dispatcher: Dispatcher) -> None:
        self._dispatcher = dispatcher
        self._registry = dispatcher.registry

    async def subscribe(
        self,
        key: SubscriptionKey,
        callback: Callback,
        on_error: ErrorCallback | None = None,
    ) -> SubscriptionHandle:
        """Register ``key`` and send its subscribe frame. Returns a handle."""
        _require_handler(callback)

        self._registry.register_pending(key, callback, on_error)
        handle = self._registry.pending_for(key).handle

        try:
            await self._dispatcher.send(key.to_subscribe_frame())
        except SendError as e:
            self._registry.fail(key)
            handle._close(e)
            logger.error("subscribe_send_failed", key=str(key), error=str(e))
            raise

        logger.info("subscription_requested", token=handle.token, key=str(key))
        return handle

    async def subscribe_trades(
        self,
        symbol: str,
        on_trade: Callback,
        on_error: ErrorCallback | None = None,
    ) -> SubscriptionHandle:
        """Stream every trade on ``symbol``."""
        _require_handler(on_trade)
        return await self.subscribe(SubscriptionKey.trades(symbol), on_trade, on_error)

    async def subscribe_book(
        self,
        symbol: str,
        on_update: Callback,
        precision: str | None = None,
        frequency: str | None = None,
        depth: int | None = None,
        on_error: ErrorCallback | None = None,
    ) -> SubscriptionHandle:
        """Stream the order book for ``symbol``.

        Args:
            precision: price aggregation, P0-P4, or R0 for raw books (default P0)
            frequency: F0 realtime or F1 every 2s (default F0)
            depth: number of price points, 1/25/100/250 (default 25)
        """
        _require_handler(on_update)
        key = SubscriptionKey.book(symbol, precision, frequency, depth)
        return await self.subscribe(key, on_update, on_error)

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Fire-and-forget unsubscribe; does not wait for the exchange's ack.

        An active channel is unbound locally and its unsubscribe frame sent
        immediately. A pending one is dropped and unsubscribed as soon as its
        ack reveals the channel id.
        """
        if handle.closed:
            return

        if handle.state is ChannelState.ACTIVE and handle.channel_id is not None:
            channel = self._registry.unbind(handle.channel_id)
            handle._close()
            if channel is not None:
                try:
                    await self._dispatcher.send({"event": "unsubscribe", "chanId": handle.channel_id})
                except SendError as e:
                    logger.warning("unsubscribe_send_failed", channel_id=handle.channel_id, error=str(e))
        else:
            self._registry.cancel_pending(handle.token)
            handle._close()

        logger.info("unsubscribed", token=handle.token, key=str(handle.key), channel_id=handle.channel_id)
