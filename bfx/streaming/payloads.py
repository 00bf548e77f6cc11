"""Parses a channel's raw data payload into the model its callback receives."""

from __future__ import annotations

from typing import Union

from bfx.models import (
    BookChecksum,
    BookLevel,
    BookSnapshot,
    BookUpdate,
    RawBookLevel,
    Trade,
    TradeSnapshot,
    TradeUpdate,
)
from bfx.streaming.decoder import DataMessage
from bfx.streaming.keys import ChannelType, SubscriptionKey

TradePayload = Union[TradeSnapshot, TradeUpdate]
BookPayload = Union[BookSnapshot, BookUpdate, BookChecksum]


def _is_snapshot(body: list) -> bool:
    return not body or isinstance(body[0], list)


def parse_trades(key: SubscriptionKey, msg: DataMessage) -> TradePayload:
    if msg.tag in ("te", "tu"):
        return TradeUpdate(symbol=key.symbol, kind=msg.tag, trade=Trade.from_row(msg.payload))
    if msg.tag is None and _is_snapshot(msg.payload):
        return TradeSnapshot(
            symbol=key.symbol,
            trades=[Trade.from_row(row) for row in msg.payload],
        )
    raise ValueError(f"unexpected trades frame (tag={msg.tag!r})")


def parse_book(key: SubscriptionKey, msg: DataMessage) -> BookPayload:
    if msg.tag == "cs":
        return BookChecksum(symbol=key.symbol, checksum=msg.payload)
    if msg.tag is not None:
        raise ValueError(f"unexpected book frame (tag={msg.tag!r})")

    level_cls = RawBookLevel if key.is_raw_book else BookLevel
    if _is_snapshot(msg.payload):
        return BookSnapshot(
            symbol=key.symbol,
            levels=[level_cls.from_row(row) for row in msg.payload],
        )
    return BookUpdate(symbol=key.symbol, level=level_cls.from_row(msg.payload))


PARSERS = {
    ChannelType.TRADES: parse_trades,
    ChannelType.BOOK: parse_book,
}


def parse_payload(key: SubscriptionKey, msg: DataMessage) -> TradePayload | BookPayload:
    """Raises ValueError (or a pydantic ValidationError) for malformed payloads."""
    return PARSERS[key.channel](key, msg)
