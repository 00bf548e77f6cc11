"""Pydantic model for the v1 ``symbols_details`` endpoint."""

from __future__ import annotations

import orjson
from pydantic import BaseModel


class SymbolDetails(BaseModel):
    """Trading rules for one pair. Numeric limits arrive as decimal strings."""

    pair: str
    price_precision: int
    initial_margin: str
    minimum_margin: str
    maximum_order_size: str
    minimum_order_size: str
    expiration: str

    model_config = {"frozen": True}

    @property
    def min_order(self) -> float:
        return float(self.minimum_order_size)

    @property
    def max_order(self) -> float:
        return float(self.maximum_order_size)

    def to_json(self) -> str:
        return orjson.dumps(self.model_dump()).decode()
