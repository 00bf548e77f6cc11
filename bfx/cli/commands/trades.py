"""bfx trades <symbol> -- Recent public trades from the REST API."""

from __future__ import annotations

import asyncio

import typer

from bfx.cli.display import add_trade_row, console, create_trade_table


async def _trades_async(symbol: str, limit: int) -> None:
    from bfx.config import get_config
    from bfx.rest import BitfinexRESTClient

    async with BitfinexRESTClient(get_config()) as client:
        trades = await client.trades(symbol, limit=limit)

    table = create_trade_table(f"Recent trades {symbol}")
    for trade in trades:
        add_trade_row(table, trade)
    console.print(table)


def trades(
    symbol: str = typer.Argument("tBTCUSD", help="Trading pair, e.g. tBTCUSD"),
    limit: int = typer.Option(25, "--limit", "-n", help="Number of trades"),
) -> None:
    """Show recent trades for SYMBOL."""
    asyncio.run(_trades_async(symbol, limit))
