"""bfx CLI entry point.

Usage:
    python -m bfx.cli.main [COMMAND] [OPTIONS]

Or via the installed console script:
    bfx [COMMAND] [OPTIONS]
"""

from __future__ import annotations

import typer

from bfx.cli.commands import book, candles, stream, trades

app = typer.Typer(
    name="bfx",
    help="bfx -- Bitfinex streaming and REST client",
    no_args_is_help=True,
    add_completion=False,
    pretty_exceptions_enable=True,
)

# Register sub-commands from each module.
app.add_typer(stream.app, name="stream")
app.command(name="candles", help="Candles from the REST API")(candles.candles)
app.command(name="book", help="Order book snapshot from the REST API")(book.book)
app.command(name="trades", help="Recent trades from the REST API")(trades.trades)


if __name__ == "__main__":
    app()
