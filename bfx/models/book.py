"""Pydantic models for Bitfinex order book snapshots, updates and checksums.

Aggregated books (precision P0-P4) carry ``[PRICE, COUNT, AMOUNT]`` rows; raw
books (precision R0) carry ``[ORDER_ID, PRICE, AMOUNT]``. A positive amount is
a bid, a negative amount an ask.
"""

from __future__ import annotations

from typing import Literal, Union

import orjson
from pydantic import BaseModel, Field


class BookLevel(BaseModel):
    """One aggregated price level."""

    price: float
    count: int
    amount: float

    model_config = {"frozen": True}

    @classmethod
    def from_row(cls, row: list) -> BookLevel:
        return cls(price=row[0], count=row[1], amount=row[2])

    @property
    def side(self) -> Literal["bid", "ask"]:
        return "bid" if self.amount > 0 else "ask"

    @property
    def is_removal(self) -> bool:
        """A count of 0 removes the price level from the book."""
        return self.count == 0


class RawBookLevel(BaseModel):
    """One individual order from a raw (R0) book."""

    order_id: int
    price: float
    amount: float

    model_config = {"frozen": True}

    @classmethod
    def from_row(cls, row: list) -> RawBookLevel:
        return cls(order_id=row[0], price=row[1], amount=row[2])

    @property
    def side(self) -> Literal["bid", "ask"]:
        return "bid" if self.amount > 0 else "ask"

    @property
    def is_removal(self) -> bool:
        """A price of 0 removes the order from the book."""
        return self.price == 0


AnyLevel = Union[BookLevel, RawBookLevel]


class BookSnapshot(BaseModel):
    """Full book state sent right after a 'book' subscription."""

    symbol: str
    levels: list[AnyLevel] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def bids(self) -> list[AnyLevel]:
        return sorted(
            (lvl for lvl in self.levels if lvl.side == "bid"),
            key=lambda lvl: lvl.price,
            reverse=True,
        )

    @property
    def asks(self) -> list[AnyLevel]:
        return sorted(
            (lvl for lvl in self.levels if lvl.side == "ask"),
            key=lambda lvl: lvl.price,
        )

    @property
    def best_bid(self) -> float | None:
        bids = self.bids
        return bids[0].price if bids else None

    @property
    def best_ask(self) -> float | None:
        asks = self.asks
        return asks[0].price if asks else None

    @property
    def spread(self) -> float | None:
        """Best ask - best bid. Returns None if either side is empty."""
        if self.best_bid is None or self.best_ask is None:
            return None
        return self.best_ask - self.best_bid

    def to_json(self) -> str:
        return orjson.dumps(self.model_dump()).decode()


class BookUpdate(BaseModel):
    """A single level change following the snapshot."""

    symbol: str
    level: AnyLevel

    model_config = {"frozen": True}

    def to_json(self) -> str:
        return orjson.dumps(self.model_dump()).decode()


class BookChecksum(BaseModel):
    """CRC32 of the top of the book, sent when the checksum flag is enabled."""

    symbol: str
    checksum: int

    model_config = {"frozen": True}

    def to_json(self) -> str:
        return orjson.dumps(self.model_dump()).decode()
