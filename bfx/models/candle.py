"""Pydantic model for REST candles: ``[MTS, OPEN, CLOSE, HIGH, LOW, VOLUME]``."""

from __future__ import annotations

from datetime import datetime, timezone

import orjson
from pydantic import BaseModel, Field


class Candle(BaseModel):
    mts: int = Field(description="Millisecond timestamp of the candle open")
    open: float
    close: float
    high: float
    low: float
    volume: float

    model_config = {"frozen": True}

    @classmethod
    def from_row(cls, row: list) -> Candle:
        return cls(
            mts=row[0],
            open=row[1],
            close=row[2],
            high=row[3],
            low=row[4],
            volume=row[5],
        )

    @property
    def timestamp(self) -> datetime:
        return datetime.fromtimestamp(self.mts / 1000, tz=timezone.utc)

    def to_json(self) -> str:
        return orjson.dumps(self.model_dump()).decode()
