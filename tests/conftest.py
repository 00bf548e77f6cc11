"""Shared test fixtures for the bfx test suite."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import orjson
import pytest

from bfx.config import TuningConfig
from bfx.streaming.dispatcher import Dispatcher
from bfx.streaming.errors import ConnectError, ConnectionClosedError, SendError
from bfx.streaming.subscriptions import SubscriptionManager


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """In-memory transport: frames fed by the test, sent frames recorded."""

    def __init__(self) -> None:
        self.inbound: asyncio.Queue = asyncio.Queue()
        self.sent: list[dict] = []
        self.url: str | None = None
        self.closed = False
        self.fail_connect = False
        self.fail_send = False

    async def connect(self, url: str) -> None:
        if self.fail_connect:
            raise ConnectError("connection refused")
        self.url = url

    async def send(self, data: str | bytes) -> None:
        if self.fail_send:
            raise SendError("broken pipe")
        self.sent.append(orjson.loads(data))

    async def receive(self) -> str | bytes:
        item = await self.inbound.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True
        self.inbound.put_nowait(ConnectionClosedError(1000, "client close"))

    def feed(self, *frames: object) -> None:
        for frame in frames:
            if not isinstance(frame, (str, bytes)):
                frame = orjson.dumps(frame).decode()
            self.inbound.put_nowait(frame)

    def drop(self, code: int = 1006, reason: str = "abnormal closure") -> None:
        self.inbound.put_nowait(ConnectionClosedError(code, reason))


async def until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the event loop until ``predicate`` holds."""

    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(_poll(), timeout)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def tuning() -> TuningConfig:
    return TuningConfig().model_copy(
        update={
            "pending_timeout": 30.0,
            "heartbeat_timeout": 30.0,
            "stats_interval": 60.0,
            "housekeeping_interval": 0.01,
        }
    )


@pytest.fixture
async def dispatcher(transport: FakeTransport, tuning: TuningConfig, clock: FakeClock) -> Dispatcher:
    """A dispatcher already connected to the fake transport."""
    d = Dispatcher(transport, tuning, clock=clock)
    await d.open("wss://test.invalid/ws/2")
    return d


@pytest.fixture
def manager(dispatcher: Dispatcher) -> SubscriptionManager:
    return SubscriptionManager(dispatcher)


@pytest.fixture
def sample_book_ack() -> dict:
    """Subscription ack for a P0/F0/25 book, as sent by Bitfinex."""
    return {
        "event": "subscribed",
        "channel": "book",
        "chanId": 42,
        "symbol": "tBTCUSD",
        "prec": "P0",
        "freq": "F0",
        "len": "25",
        "pair": "BTCUSD",
    }


@pytest.fixture
def sample_trades_ack() -> dict:
    return {
        "event": "subscribed",
        "channel": "trades",
        "chanId": 17,
        "symbol": "tBTCUSD",
        "pair": "BTCUSD",
    }


@pytest.fixture
def sample_book_snapshot() -> list:
    """Book snapshot frame for channel 42: two bids, two asks."""
    return [
        42,
        [
            [7254.7, 3, 3.3],
            [7254.6, 2, 1.5],
            [7255.1, 1, -0.5],
            [7255.3, 4, -2.25],
        ],
    ]


@pytest.fixture
def sample_trades_snapshot() -> list:
    return [
        17,
        [
            [401597395, 1574694478808, 0.005, 7245.3],
            [401597394, 1574694478111, -0.1, 7245.2],
        ],
    ]


@pytest.fixture
def sample_symbols_details() -> list[dict]:
    """Response body of the v1 symbols_details endpoint."""
    return [
        {
            "pair": "btcusd",
            "price_precision": 5,
            "initial_margin": "30.0",
            "minimum_margin": "15.0",
            "maximum_order_size": "2000.0",
            "minimum_order_size": "0.01",
            "expiration": "NA",
        },
        {
            "pair": "ltcusd",
            "price_precision": 5,
            "initial_margin": "30.0",
            "minimum_margin": "15.0",
            "maximum_order_size": "5000.0",
            "minimum_order_size": "0.1",
            "expiration": "NA",
        },
        {
            "pair": "ltcbtc",
            "price_precision": 5,
            "initial_margin": "30.0",
            "minimum_margin": "15.0",
            "maximum_order_size": "5000.0",
            "minimum_order_size": "0.1",
            "expiration": "NA",
        },
    ]
