"""Unit tests for the dispatcher read loop and its control handlers."""

from __future__ import annotations

import asyncio
import random

import orjson
import pytest
from structlog.testing import capture_logs

from bfx.models import BookSnapshot, BookUpdate, TradeSnapshot, TradeUpdate
from bfx.streaming.dispatcher import ConnectionState, Dispatcher
from bfx.streaming.errors import (
    ConnectError,
    ConnectionClosedError,
    SendError,
    ServerError,
    SubscriptionFailedError,
    SubscriptionTimeoutError,
    UnknownChannelError,
)
from bfx.streaming.registry import ChannelState
from bfx.streaming.subscriptions import SubscriptionManager
from bfx.streaming.transport import WebsocketTransport

from conftest import FakeTransport, until


def frame(obj: object) -> str:
    return orjson.dumps(obj).decode()


def trade_row(trade_id: int) -> list:
    return [trade_id, 1574694478808 + trade_id, 0.01, 7245.3]


class TestEndToEnd:
    async def test_book_subscription_lifecycle(
        self,
        dispatcher: Dispatcher,
        manager: SubscriptionManager,
        transport: FakeTransport,
        sample_book_ack: dict,
        sample_book_snapshot: list,
    ) -> None:
        received: list = []
        handle = await manager.subscribe_book("tBTCUSD", received.append)

        assert transport.sent == [
            {
                "event": "subscribe",
                "channel": "book",
                "symbol": "tBTCUSD",
                "prec": "P0",
                "freq": "F0",
                "len": 25,
            }
        ]

        reader = asyncio.create_task(dispatcher.run())
        transport.feed(sample_book_ack, sample_book_snapshot)
        await until(lambda: len(received) == 1)

        snapshot = received[0]
        assert isinstance(snapshot, BookSnapshot)
        assert snapshot.best_bid == 7254.7
        assert snapshot.best_ask == 7255.1
        assert handle.state is ChannelState.ACTIVE
        assert dispatcher.registry.resolve(42).key == handle.key

        await manager.unsubscribe(handle)
        assert transport.sent[-1] == {"event": "unsubscribe", "chanId": 42}
        with pytest.raises(UnknownChannelError):
            dispatcher.registry.resolve(42)

        # Frames still in flight for the old channel are dropped
        transport.feed([42, [7254.7, 0, 1]])
        await dispatcher.close()
        await reader

        assert len(received) == 1
        assert dispatcher.state is ConnectionState.DISCONNECTED

    async def test_trades_snapshot_then_updates(
        self,
        dispatcher: Dispatcher,
        manager: SubscriptionManager,
        sample_trades_ack: dict,
        sample_trades_snapshot: list,
    ) -> None:
        received: list = []
        await manager.subscribe_trades("btcusd", received.append)

        await dispatcher.process_frame(frame(sample_trades_ack))
        await dispatcher.process_frame(frame(sample_trades_snapshot))
        await dispatcher.process_frame(frame([17, "te", trade_row(3)]))
        await dispatcher.process_frame(frame([17, "tu", trade_row(3)]))

        assert isinstance(received[0], TradeSnapshot)
        assert [t.id for t in received[0].trades] == [401597395, 401597394]
        assert [(u.kind, u.trade.id) for u in received[1:]] == [("te", 3), ("tu", 3)]
        assert all(isinstance(u, TradeUpdate) for u in received[1:])


class TestAckHandling:
    async def test_ack_for_unknown_key_does_not_stop_processing(
        self,
        dispatcher: Dispatcher,
        manager: SubscriptionManager,
        transport: FakeTransport,
        sample_trades_ack: dict,
        sample_trades_snapshot: list,
    ) -> None:
        received: list = []
        await manager.subscribe_trades("tBTCUSD", received.append)

        reader = asyncio.create_task(dispatcher.run())
        bogus = {"event": "subscribed", "channel": "trades", "chanId": 99, "symbol": "tXYZUSD"}
        transport.feed(bogus, sample_trades_ack, sample_trades_snapshot)
        await until(lambda: len(received) == 1)

        with pytest.raises(UnknownChannelError):
            dispatcher.registry.resolve(99)

        await dispatcher.close()
        await reader

    async def test_malformed_ack_is_ignored(
        self, dispatcher: Dispatcher, manager: SubscriptionManager
    ) -> None:
        await manager.subscribe_trades("tBTCUSD", lambda p: None)
        await dispatcher.process_frame(frame({"event": "subscribed", "channel": "trades"}))
        await dispatcher.process_frame(
            frame({"event": "subscribed", "channel": "trades", "chanId": "x", "symbol": "tBTCUSD"})
        )
        assert len(dispatcher.registry.pending) == 1

    async def test_channel_id_reassignment_evicts_stale_channel(
        self, dispatcher: Dispatcher, manager: SubscriptionManager
    ) -> None:
        errors: list = []
        old = await manager.subscribe_trades("tBTCUSD", lambda p: None, on_error=errors.append)
        await dispatcher.process_frame(
            frame({"event": "subscribed", "channel": "trades", "chanId": 7, "symbol": "tBTCUSD"})
        )

        new_payloads: list = []
        new = await manager.subscribe_trades("tETHUSD", new_payloads.append)
        await dispatcher.process_frame(
            frame({"event": "subscribed", "channel": "trades", "chanId": 7, "symbol": "tETHUSD"})
        )

        assert old.closed
        assert len(errors) == 1
        assert isinstance(errors[0], SubscriptionFailedError)
        assert dispatcher.registry.resolve(7).key == new.key
        assert old.key not in dispatcher.registry

        await dispatcher.process_frame(frame([7, [trade_row(1)]]))
        assert len(new_payloads) == 1

    async def test_ack_after_pending_unsubscribe_sends_unsubscribe(
        self,
        dispatcher: Dispatcher,
        manager: SubscriptionManager,
        transport: FakeTransport,
        sample_book_ack: dict,
        sample_book_snapshot: list,
    ) -> None:
        received: list = []
        handle = await manager.subscribe_book("tBTCUSD", received.append)
        await manager.unsubscribe(handle)

        assert handle.closed
        assert len(transport.sent) == 1

        await dispatcher.process_frame(frame(sample_book_ack))
        await dispatcher.process_frame(frame(sample_book_snapshot))

        assert transport.sent[-1] == {"event": "unsubscribe", "chanId": 42}
        assert received == []
        assert len(dispatcher.registry) == 0

    async def test_unsubscribed_event_unbinds(
        self, dispatcher: Dispatcher, manager: SubscriptionManager, sample_trades_ack: dict
    ) -> None:
        handle = await manager.subscribe_trades("tBTCUSD", lambda p: None)
        await dispatcher.process_frame(frame(sample_trades_ack))
        await dispatcher.process_frame(
            frame({"event": "unsubscribed", "status": "OK", "chanId": 17})
        )
        assert handle.closed
        assert len(dispatcher.registry) == 0


class TestOrdering:
    @pytest.mark.parametrize("seed", range(5))
    async def test_per_channel_order_survives_interleaving(
        self,
        seed: int,
        dispatcher: Dispatcher,
        manager: SubscriptionManager,
        transport: FakeTransport,
    ) -> None:
        symbols = {1: "tBTCUSD", 2: "tETHUSD", 3: "tLTCUSD"}
        seen: dict[int, list[int]] = {cid: [] for cid in symbols}

        for cid, symbol in symbols.items():
            await manager.subscribe_trades(
                symbol, lambda u, cid=cid: seen[cid].append(u.trade.id)
            )
            await dispatcher.process_frame(
                frame({"event": "subscribed", "channel": "trades", "chanId": cid, "symbol": symbol})
            )

        # Random interleaving that preserves each channel's own order
        rng = random.Random(seed)
        queues = {cid: list(range(20)) for cid in symbols}
        frames = []
        while any(queues.values()):
            cid = rng.choice([c for c, q in queues.items() if q])
            frames.append([cid, "te", trade_row(queues[cid].pop(0))])

        reader = asyncio.create_task(dispatcher.run())
        transport.feed(*frames)
        await until(lambda: all(len(ids) == 20 for ids in seen.values()))

        for ids in seen.values():
            assert ids == list(range(20))

        await dispatcher.close()
        await reader


class TestErrorEvents:
    async def test_subscription_error_goes_to_on_error(
        self, dispatcher: Dispatcher, manager: SubscriptionManager
    ) -> None:
        errors: list = []
        handle = await manager.subscribe_book("tBTCUSD", lambda p: None, on_error=errors.append)

        await dispatcher.process_frame(
            frame(
                {
                    "event": "error",
                    "msg": "subscribe: dup",
                    "code": 10301,
                    "channel": "book",
                    "symbol": "tBTCUSD",
                    "prec": "P0",
                    "freq": "F0",
                    "len": "25",
                }
            )
        )

        assert len(errors) == 1
        assert isinstance(errors[0], SubscriptionFailedError)
        assert errors[0].code == 10301
        assert handle.closed
        assert handle.error is errors[0]
        assert len(dispatcher.registry) == 0

    async def test_error_with_channel_id(
        self, dispatcher: Dispatcher, manager: SubscriptionManager, sample_trades_ack: dict
    ) -> None:
        errors: list = []
        await manager.subscribe_trades("tBTCUSD", lambda p: None, on_error=errors.append)
        await dispatcher.process_frame(frame(sample_trades_ack))

        await dispatcher.process_frame(
            frame({"event": "error", "code": 10400, "msg": "unsubscribe: invalid", "chanId": 17})
        )

        assert [e.code for e in errors] == [10400]

    async def test_unrelated_error_goes_to_connection_handler(
        self, dispatcher: Dispatcher, manager: SubscriptionManager
    ) -> None:
        sub_errors: list = []
        conn_errors: list = []
        dispatcher.on_connection_error = conn_errors.append
        await manager.subscribe_trades("tBTCUSD", lambda p: None, on_error=sub_errors.append)

        await dispatcher.process_frame(frame({"event": "error", "code": 10000, "msg": "Unknown event"}))

        assert sub_errors == []
        assert len(conn_errors) == 1
        assert isinstance(conn_errors[0], ServerError)
        assert conn_errors[0].code == 10000
        assert len(dispatcher.registry) == 1

    async def test_key_echo_does_not_tear_down_active_channel(
        self,
        dispatcher: Dispatcher,
        manager: SubscriptionManager,
        transport: FakeTransport,
        sample_trades_ack: dict,
    ) -> None:
        # subscribe, unsubscribe while pending, subscribe again: the first ack
        # binds the second subscription, then its own subscribe is refused
        errors: list = []
        first = await manager.subscribe_trades("tBTCUSD", lambda p: None)
        await manager.unsubscribe(first)
        second = await manager.subscribe_trades("tBTCUSD", lambda p: None, on_error=errors.append)
        await dispatcher.process_frame(frame(sample_trades_ack))

        await dispatcher.process_frame(
            frame(
                {
                    "event": "error",
                    "msg": "subscribe: dup",
                    "code": 10301,
                    "channel": "trades",
                    "symbol": "tBTCUSD",
                    "pair": "BTCUSD",
                }
            )
        )

        assert errors == []
        assert second.state is ChannelState.ACTIVE
        assert dispatcher.registry.resolve(17).handle is second


class TestResilience:
    async def test_callback_exception_does_not_stop_loop(
        self,
        dispatcher: Dispatcher,
        manager: SubscriptionManager,
        transport: FakeTransport,
        sample_trades_ack: dict,
    ) -> None:
        calls: list = []

        def explode(update: TradeUpdate) -> None:
            calls.append(update.trade.id)
            if update.trade.id == 1:
                raise RuntimeError("boom")

        await manager.subscribe_trades("tBTCUSD", explode)
        reader = asyncio.create_task(dispatcher.run())
        transport.feed(
            sample_trades_ack,
            [17, "te", trade_row(1)],
            [17, "te", trade_row(2)],
        )
        await until(lambda: len(calls) == 2)

        assert calls == [1, 2]
        assert dispatcher.state is ConnectionState.OPEN

        await dispatcher.close()
        await reader

    async def test_async_callbacks_are_awaited(
        self, dispatcher: Dispatcher, manager: SubscriptionManager, sample_trades_ack: dict
    ) -> None:
        received: list = []

        async def on_trade(update: TradeUpdate) -> None:
            await asyncio.sleep(0)
            received.append(update.trade.id)

        await manager.subscribe_trades("tBTCUSD", on_trade)
        await dispatcher.process_frame(frame(sample_trades_ack))
        await dispatcher.process_frame(frame([17, "te", trade_row(5)]))

        assert received == [5]

    async def test_unparseable_payload_is_dropped(
        self, dispatcher: Dispatcher, manager: SubscriptionManager, sample_book_ack: dict
    ) -> None:
        received: list = []
        await manager.subscribe_book("tBTCUSD", received.append)
        await dispatcher.process_frame(frame(sample_book_ack))

        await dispatcher.process_frame(frame([42, ["not", "a", "level"]]))
        await dispatcher.process_frame(frame([42, [7254.7, 0, 1]]))

        assert len(received) == 1
        assert isinstance(received[0], BookUpdate)
        assert received[0].level.is_removal

    async def test_bad_frames_are_dropped(
        self, dispatcher: Dispatcher, manager: SubscriptionManager, sample_trades_ack: dict
    ) -> None:
        received: list = []
        await manager.subscribe_trades("tBTCUSD", received.append)
        await dispatcher.process_frame(frame(sample_trades_ack))

        for raw in ("garbage", "[17]", '[17, "zz", 1]', frame([999, [trade_row(1)]])):
            await dispatcher.process_frame(raw)
        await dispatcher.process_frame(frame([17, "te", trade_row(1)]))

        assert len(received) == 1


class TestHeartbeatsAndTimeouts:
    async def test_heartbeat_keeps_channel_fresh(
        self,
        dispatcher: Dispatcher,
        manager: SubscriptionManager,
        clock,
        sample_trades_ack: dict,
        sample_book_ack: dict,
    ) -> None:
        received: list = []
        await manager.subscribe_trades("tBTCUSD", received.append)
        await manager.subscribe_book("tBTCUSD", received.append)
        await dispatcher.process_frame(frame(sample_trades_ack))
        await dispatcher.process_frame(frame(sample_book_ack))

        clock.advance(45)
        await dispatcher.process_frame(frame([17, "hb"]))

        assert received == []
        assert [c.channel_id for c in dispatcher.stale_channels()] == [42]

    async def test_pending_timeout_reports_error(
        self,
        dispatcher: Dispatcher,
        manager: SubscriptionManager,
        transport: FakeTransport,
        clock,
        sample_book_ack: dict,
    ) -> None:
        errors: list = []
        handle = await manager.subscribe_book("tBTCUSD", lambda p: None, on_error=errors.append)

        reader = asyncio.create_task(dispatcher.run())
        clock.advance(31)
        transport.feed({"event": "info", "version": 2, "platform": {"status": 1}})
        await until(lambda: len(errors) == 1 and dispatcher.server_version == 2)

        assert isinstance(errors[0], SubscriptionTimeoutError)
        assert handle.closed

        # The late ack is answered with an unsubscribe
        transport.feed(sample_book_ack)
        await until(lambda: transport.sent[-1] == {"event": "unsubscribe", "chanId": 42})

        await dispatcher.close()
        await reader
        assert len(errors) == 1

    async def test_pending_timeout_on_quiet_connection(
        self,
        dispatcher: Dispatcher,
        manager: SubscriptionManager,
        clock,
    ) -> None:
        errors: list = []
        handle = await manager.subscribe_trades("tBTCUSD", lambda p: None, on_error=errors.append)

        reader = asyncio.create_task(dispatcher.run())
        clock.advance(3600)
        await until(lambda: len(errors) == 1)

        assert isinstance(errors[0], SubscriptionTimeoutError)
        assert handle.closed
        assert len(dispatcher.registry) == 0

        await dispatcher.close()
        await reader

    async def test_stale_channels_are_logged(
        self,
        dispatcher: Dispatcher,
        manager: SubscriptionManager,
        clock,
        sample_trades_ack: dict,
    ) -> None:
        await manager.subscribe_trades("tBTCUSD", lambda p: None)
        await dispatcher.process_frame(frame(sample_trades_ack))

        with capture_logs() as logs:
            reader = asyncio.create_task(dispatcher.run())
            clock.advance(61)
            await until(lambda: any(e["event"] == "stale_channels" for e in logs))

        stale = next(e for e in logs if e["event"] == "stale_channels")
        assert stale["channel_ids"] == [17]
        assert stale["log_level"] == "warning"

        await dispatcher.close()
        await reader

    async def test_info_codes_forwarded(self, dispatcher: Dispatcher) -> None:
        infos: list = []
        dispatcher.on_info = infos.append
        await dispatcher.process_frame(
            frame({"event": "info", "code": 20051, "msg": "Stopping. Please try to reconnect"})
        )
        assert [i["code"] for i in infos] == [20051]


class TestTeardown:
    async def test_remote_close_notifies_every_subscription_once(
        self,
        dispatcher: Dispatcher,
        manager: SubscriptionManager,
        transport: FakeTransport,
    ) -> None:
        errors: dict[str, list] = {}
        handles = []
        for i, symbol in enumerate(("tBTCUSD", "tETHUSD", "tLTCUSD", "tXRPUSD")):
            errors[symbol] = []
            handles.append(
                await manager.subscribe_trades(symbol, lambda p: None, on_error=errors[symbol].append)
            )
            if i % 2 == 0:
                await dispatcher.process_frame(
                    frame({"event": "subscribed", "channel": "trades", "chanId": i + 1, "symbol": symbol})
                )

        reader = asyncio.create_task(dispatcher.run())
        transport.drop(1006)

        with pytest.raises(ConnectionClosedError):
            await reader

        assert all(len(errs) == 1 for errs in errors.values())
        assert all(isinstance(errs[0], ConnectionClosedError) for errs in errors.values())
        assert all(h.closed for h in handles)
        assert len(dispatcher.registry) == 0
        assert dispatcher.state is ConnectionState.DISCONNECTED

        # A second teardown does not notify again
        await dispatcher.close()
        assert all(len(errs) == 1 for errs in errors.values())

    async def test_close_makes_run_return(
        self, dispatcher: Dispatcher, manager: SubscriptionManager, transport: FakeTransport
    ) -> None:
        errors: list = []
        handle = await manager.subscribe_trades("tBTCUSD", lambda p: None, on_error=errors.append)

        reader = asyncio.create_task(dispatcher.run())
        await asyncio.sleep(0)
        await dispatcher.close()
        await reader

        assert transport.closed
        assert handle.closed
        assert len(errors) == 1
        assert dispatcher.state is ConnectionState.DISCONNECTED

    async def test_close_without_reader(
        self, dispatcher: Dispatcher, manager: SubscriptionManager
    ) -> None:
        handle = await manager.subscribe_trades("tBTCUSD", lambda p: None)
        await dispatcher.close()
        assert handle.closed
        assert dispatcher.state is ConnectionState.DISCONNECTED

    async def test_cancelled_reader_tears_down(
        self, dispatcher: Dispatcher, manager: SubscriptionManager, transport: FakeTransport
    ) -> None:
        handle = await manager.subscribe_trades("tBTCUSD", lambda p: None)
        reader = asyncio.create_task(dispatcher.run())
        await asyncio.sleep(0)
        reader.cancel()

        with pytest.raises(asyncio.CancelledError):
            await reader
        assert handle.closed
        assert transport.closed


class TestConnectionState:
    async def test_send_requires_open_connection(self, transport: FakeTransport, tuning) -> None:
        d = Dispatcher(transport, tuning)
        with pytest.raises(SendError):
            await d.send({"event": "ping", "cid": 1})

    async def test_connect_failure_resets_state(self, transport: FakeTransport, tuning) -> None:
        transport.fail_connect = True
        d = Dispatcher(transport, tuning)
        with pytest.raises(ConnectError):
            await d.open("wss://test.invalid/ws/2")
        assert d.state is ConnectionState.DISCONNECTED

    async def test_unexpected_connect_failure_resets_state(
        self, transport: FakeTransport, tuning
    ) -> None:
        async def broken_connect(url: str) -> None:
            raise RuntimeError("resolver exploded")

        d = Dispatcher(transport, tuning)
        original_connect = transport.connect
        transport.connect = broken_connect
        with pytest.raises(RuntimeError):
            await d.open("wss://test.invalid/ws/2")
        assert d.state is ConnectionState.DISCONNECTED

        transport.connect = original_connect
        await d.open("wss://test.invalid/ws/2")
        assert d.state is ConnectionState.OPEN

    async def test_invalid_url_is_a_connect_error(self, tuning) -> None:
        d = Dispatcher(WebsocketTransport(), tuning)
        with pytest.raises(ConnectError):
            await d.open("http://not-a-websocket-url")
        assert d.state is ConnectionState.DISCONNECTED

    async def test_open_twice_rejected(self, dispatcher: Dispatcher) -> None:
        with pytest.raises(ConnectError):
            await dispatcher.open("wss://test.invalid/ws/2")

    async def test_run_requires_open_connection(self, transport: FakeTransport, tuning) -> None:
        d = Dispatcher(transport, tuning)
        with pytest.raises(ConnectionClosedError):
            await d.run()

    async def test_ping(self, dispatcher: Dispatcher, transport: FakeTransport) -> None:
        await dispatcher.ping(7)
        await dispatcher.process_frame(frame({"event": "pong", "cid": 7, "ts": 1}))
        assert transport.sent == [{"event": "ping", "cid": 7}]
