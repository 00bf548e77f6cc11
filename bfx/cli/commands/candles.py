"""bfx candles <symbol> -- Recent candles from the REST API.

Usage:
    bfx candles tBTCUSD
    bfx candles tETHUSD --timeframe 1h --limit 48
"""

from __future__ import annotations

import asyncio

import typer

from bfx.cli.display import console, create_candle_table


async def _candles_async(symbol: str, timeframe: str, section: str, limit: int) -> None:
    from bfx.config import get_config
    from bfx.rest import BitfinexRESTClient

    params = {"limit": limit} if section == "hist" else {}
    async with BitfinexRESTClient(get_config()) as client:
        result = await client.candles(symbol, timeframe, section, **params)

    candles = result if isinstance(result, list) else [result]
    console.print(create_candle_table(candles, title=f"{symbol} {timeframe} candles"))


def candles(
    symbol: str = typer.Argument("tBTCUSD", help="Trading pair, e.g. tBTCUSD"),
    timeframe: str = typer.Option("1m", "--timeframe", "-t", help="1m, 5m, 15m, 30m, 1h, 3h, 6h, 12h, 1D, 7D, 14D, 1M"),
    section: str = typer.Option("hist", "--section", "-s", help="'last' for one candle, 'hist' for history"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of candles (hist only)"),
) -> None:
    """Show candles for SYMBOL."""
    asyncio.run(_candles_async(symbol, timeframe, section, limit))
