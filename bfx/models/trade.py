"""Pydantic models for Bitfinex trade rows (websocket 'trades' channel and REST)."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

import orjson
from pydantic import BaseModel, Field


class Trade(BaseModel):
    """A single public trade: ``[ID, MTS, AMOUNT, PRICE]``."""

    id: int
    mts: int = Field(description="Millisecond timestamp")
    amount: float = Field(description="Signed; positive for buys, negative for sells")
    price: float

    model_config = {"frozen": True}

    @classmethod
    def from_row(cls, row: list) -> Trade:
        return cls(id=row[0], mts=row[1], amount=row[2], price=row[3])

    @property
    def side(self) -> Literal["buy", "sell"]:
        return "buy" if self.amount > 0 else "sell"

    @property
    def timestamp(self) -> datetime:
        return datetime.fromtimestamp(self.mts / 1000, tz=timezone.utc)

    def to_json(self) -> str:
        return orjson.dumps(self.model_dump()).decode()


class TradeSnapshot(BaseModel):
    """Initial batch of recent trades sent right after a 'trades' subscription."""

    symbol: str
    trades: list[Trade] = Field(default_factory=list)

    model_config = {"frozen": True}

    def to_json(self) -> str:
        return orjson.dumps(self.model_dump()).decode()


class TradeUpdate(BaseModel):
    """A live trade. ``te`` arrives first, ``tu`` follows once the trade id is final."""

    symbol: str
    kind: Literal["te", "tu"]
    trade: Trade

    model_config = {"frozen": True}

    def to_json(self) -> str:
        return orjson.dumps(self.model_dump()).decode()
