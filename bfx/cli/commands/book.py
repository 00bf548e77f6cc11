"""bfx book <symbol> -- Order book snapshot from the REST API."""

from __future__ import annotations

import asyncio

import typer

from bfx.cli.display import console, create_book_table


async def _book_async(symbol: str, precision: str, length: int) -> None:
    from bfx.config import get_config
    from bfx.rest import BitfinexRESTClient

    async with BitfinexRESTClient(get_config()) as client:
        snapshot = await client.books(symbol, precision, len=length)
    console.print(create_book_table(snapshot))


def book(
    symbol: str = typer.Argument("tBTCUSD", help="Trading pair, e.g. tBTCUSD"),
    precision: str = typer.Option("P0", "--precision", "-p", help="P0-P4, or R0 for raw books"),
    length: int = typer.Option(25, "--len", "-l", help="Price points: 1, 25 or 100"),
) -> None:
    """Show the order book for SYMBOL."""
    asyncio.run(_book_async(symbol, precision, length))
