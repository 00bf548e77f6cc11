from .trade import Trade, TradeSnapshot, TradeUpdate
from .book import BookChecksum, BookLevel, BookSnapshot, BookUpdate, RawBookLevel
from .candle import Candle
from .symbol import SymbolDetails

__all__ = [
    "Trade",
    "TradeSnapshot",
    "TradeUpdate",
    "BookLevel",
    "RawBookLevel",
    "BookSnapshot",
    "BookUpdate",
    "BookChecksum",
    "Candle",
    "SymbolDetails",
]
