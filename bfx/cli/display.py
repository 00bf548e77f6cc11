"""Rich console formatting helpers for the bfx CLI."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from rich.console import Console
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from bfx.models import (
    BookChecksum,
    BookSnapshot,
    BookUpdate,
    Candle,
    Trade,
    TradeSnapshot,
    TradeUpdate,
)

# Shared theme for consistent styling across all CLI output.
BFX_THEME = Theme(
    {
        "buy": "bold green",
        "sell": "bold red",
        "bid": "green",
        "ask": "red",
        "removal": "dim strike",
        "ok": "bold green",
        "warning": "bold yellow",
        "critical": "bold red",
        "header": "bold cyan",
        "muted": "dim",
    }
)

console = Console(theme=BFX_THEME)


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

def format_mts(mts: int | None) -> str:
    """Format a millisecond timestamp as UTC time with milliseconds."""
    if mts is None:
        return "--"
    ts = datetime.fromtimestamp(mts / 1000, tz=timezone.utc)
    return ts.strftime("%Y-%m-%d %H:%M:%S.") + f"{mts % 1000:03d}"


def format_price(price: float | None) -> str:
    if price is None:
        return "--"
    return f"{price:,.5g}" if price < 1 else f"{price:,.2f}"


def format_amount(amount: float) -> Text:
    """Signed amount coloured by side: positive buys/bids green, negative red."""
    style = "buy" if amount > 0 else "sell"
    return Text(f"{amount:+.8f}".rstrip("0").rstrip("."), style=style)


# ---------------------------------------------------------------------------
# Reusable table builders
# ---------------------------------------------------------------------------

def create_trade_table(title: str = "Trades") -> Table:
    table = Table(title=title, show_lines=False, pad_edge=True)
    table.add_column("Time", style="muted", width=23)
    table.add_column("ID", justify="right")
    table.add_column("Side", width=5)
    table.add_column("Price", justify="right")
    table.add_column("Amount", justify="right")
    return table


def add_trade_row(table: Table, trade: Trade) -> None:
    table.add_row(
        format_mts(trade.mts),
        str(trade.id),
        Text(trade.side.upper(), style=trade.side),
        format_price(trade.price),
        format_amount(trade.amount),
    )


def create_book_table(snapshot: BookSnapshot, title: str | None = None) -> Table:
    """Bids and asks side by side, best prices on the first row."""
    table = Table(title=title or f"Order Book {snapshot.symbol}", show_lines=False, pad_edge=True)
    table.add_column("Bid Amount", justify="right", style="bid")
    table.add_column("Bid", justify="right", style="bid")
    table.add_column("Ask", justify="right", style="ask")
    table.add_column("Ask Amount", justify="right", style="ask")

    bids, asks = snapshot.bids, snapshot.asks
    for i in range(max(len(bids), len(asks))):
        bid = bids[i] if i < len(bids) else None
        ask = asks[i] if i < len(asks) else None
        table.add_row(
            f"{bid.amount:.4f}" if bid else "",
            format_price(bid.price) if bid else "",
            format_price(ask.price) if ask else "",
            f"{-ask.amount:.4f}" if ask else "",
        )
    if snapshot.spread is not None:
        table.caption = f"spread {format_price(snapshot.spread)}"
    return table


def create_candle_table(candles: list[Candle], title: str = "Candles") -> Table:
    table = Table(title=title, show_lines=False, pad_edge=True)
    table.add_column("Time", style="muted", width=23)
    table.add_column("Open", justify="right")
    table.add_column("High", justify="right")
    table.add_column("Low", justify="right")
    table.add_column("Close", justify="right")
    table.add_column("Volume", justify="right")
    for c in candles:
        style = "buy" if c.close >= c.open else "sell"
        table.add_row(
            format_mts(c.mts),
            format_price(c.open),
            format_price(c.high),
            format_price(c.low),
            Text(format_price(c.close), style=style),
            f"{c.volume:.4f}",
        )
    return table


# ---------------------------------------------------------------------------
# Stream payloads
# ---------------------------------------------------------------------------

def render_payload(payload: Any) -> Any:
    """Return a rich renderable for one streaming payload."""
    if isinstance(payload, TradeSnapshot):
        table = create_trade_table(f"Recent trades {payload.symbol}")
        for trade in payload.trades:
            add_trade_row(table, trade)
        return table

    if isinstance(payload, TradeUpdate):
        t = payload.trade
        line = Text(f"{format_mts(t.mts)}  {payload.kind}  ", style="muted")
        line.append(f"{t.side.upper():<4} ", style=t.side)
        line.append(f"{format_price(t.price):>12}  ")
        line.append_text(format_amount(t.amount))
        return line

    if isinstance(payload, BookSnapshot):
        return create_book_table(payload)

    if isinstance(payload, BookUpdate):
        lvl = payload.level
        style = "removal" if lvl.is_removal else lvl.side
        return Text(f"{lvl.side.upper():<4} {format_price(lvl.price):>12}  {lvl.amount:+.4f}", style=style)

    if isinstance(payload, BookChecksum):
        return Text(f"checksum {payload.checksum}", style="muted")

    return Text(str(payload))
