"""Subscription keys: the identity of a logical stream, independent of channel id."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from bfx.streaming.errors import InvalidSubscriptionError

DEFAULT_PRECISION = "P0"
DEFAULT_FREQUENCY = "F0"
DEFAULT_DEPTH = 25

PRECISIONS = ("P0", "P1", "P2", "P3", "P4", "R0")
# Current exchange docs only list F0/F1; the older F2/F3 values are rejected
FREQUENCIES = ("F0", "F1")
DEPTHS = (1, 25, 100, 250)


class ChannelType(str, Enum):
    TRADES = "trades"
    BOOK = "book"


def normalize_symbol(symbol: str) -> str:
    """``btcusd`` → ``tBTCUSD``; ``tBTCUSD``/``fUSD`` keep their prefix."""
    symbol = symbol.strip()
    if not symbol:
        raise InvalidSubscriptionError("symbol must not be empty")
    if symbol[0] in "tf" and symbol[1:].isupper():
        return symbol
    return "t" + symbol.upper()


@dataclass(frozen=True)
class SubscriptionKey:
    """Immutable, hashable identity of one subscription.

    Trade keys leave the book fields as None. Book keys always carry concrete
    values once built through :meth:`book`.
    """

    channel: ChannelType
    symbol: str
    precision: str | None = None
    frequency: str | None = None
    depth: int | None = None

    @classmethod
    def trades(cls, symbol: str) -> SubscriptionKey:
        return cls(ChannelType.TRADES, normalize_symbol(symbol))

    @classmethod
    def book(
        cls,
        symbol: str,
        precision: str | None = None,
        frequency: str | None = None,
        depth: int | None = None,
    ) -> SubscriptionKey:
        precision = (precision or DEFAULT_PRECISION).upper()
        frequency = (frequency or DEFAULT_FREQUENCY).upper()
        depth = DEFAULT_DEPTH if depth is None else int(depth)

        if precision not in PRECISIONS:
            raise InvalidSubscriptionError(
                f"precision must be one of {PRECISIONS}, got {precision!r}"
            )
        if frequency not in FREQUENCIES:
            raise InvalidSubscriptionError(
                f"frequency must be one of {FREQUENCIES}, got {frequency!r}"
            )
        if depth not in DEPTHS:
            raise InvalidSubscriptionError(f"depth must be one of {DEPTHS}, got {depth}")

        return cls(ChannelType.BOOK, normalize_symbol(symbol), precision, frequency, depth)

    @classmethod
    def from_event(cls, payload: dict[str, Any]) -> SubscriptionKey | None:
        """Rebuild the key the exchange echoes in 'subscribed' and 'error' events.

        Returns None when the payload does not name a supported channel.
        """
        try:
            channel = ChannelType(payload.get("channel"))
        except ValueError:
            return None

        symbol = payload.get("symbol")
        if not symbol and payload.get("pair"):
            symbol = "t" + str(payload["pair"]).upper()
        if not symbol:
            return None

        if channel is ChannelType.TRADES:
            return cls(channel, symbol)

        depth = payload.get("len", DEFAULT_DEPTH)
        try:
            depth = int(depth)
        except (TypeError, ValueError):
            return None
        return cls(
            channel,
            symbol,
            payload.get("prec", DEFAULT_PRECISION),
            payload.get("freq", DEFAULT_FREQUENCY),
            depth,
        )

    @property
    def is_raw_book(self) -> bool:
        return self.channel is ChannelType.BOOK and self.precision == "R0"

    def to_subscribe_frame(self) -> dict[str, Any]:
        frame: dict[str, Any] = {
            "event": "subscribe",
            "channel": self.channel.value,
            "symbol": self.symbol,
        }
        if self.channel is ChannelType.BOOK:
            frame["prec"] = self.precision
            frame["freq"] = self.frequency
            frame["len"] = self.depth
        return frame

    def __str__(self) -> str:
        if self.channel is ChannelType.BOOK:
            return f"book:{self.symbol}:{self.precision}:{self.frequency}:{self.depth}"
        return f"trades:{self.symbol}"
