"""bfx stream trades|book <symbol> -- Print a live websocket stream.

The client itself never reconnects; this command is the caller that does:
on connection loss it waits with exponential backoff, connects again and
resubscribes the same channel.

Usage:
    bfx stream trades tBTCUSD
    bfx stream book tETHUSD --precision P1 --depth 100
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Optional

import typer

from bfx.cli.display import console, render_payload
from bfx.config import AppConfig
from bfx.streaming import BitfinexWSClient, SubscriptionHandle
from bfx.streaming.errors import (
    ConnectError,
    ConnectionClosedError,
    InvalidSubscriptionError,
    SendError,
)

app = typer.Typer(help="Stream live trades or order book updates", no_args_is_help=True)

Subscriber = Callable[[BitfinexWSClient, Callable, Callable], Awaitable[SubscriptionHandle]]


# ---------------------------------------------------------------------------
# Core stream logic
# ---------------------------------------------------------------------------

async def run_stream(config: AppConfig, subscribe: Subscriber) -> None:
    """Connect, subscribe and print until a subscription is rejected."""
    reconnect_delay = 1.0
    failed: Exception | None = None

    while failed is None:
        client = BitfinexWSClient(config)
        rejected = asyncio.Event()

        def on_error(error: Exception) -> None:
            nonlocal failed
            if isinstance(error, ConnectionClosedError):
                return
            failed = error
            rejected.set()

        try:
            await client.connect()
            reconnect_delay = 1.0  # Reset backoff
            await subscribe(client, lambda p: console.print(render_payload(p)), on_error)

            done_waiting = asyncio.create_task(rejected.wait())
            closed = asyncio.create_task(client.wait_closed())
            done, _ = await asyncio.wait({done_waiting, closed}, return_when=asyncio.FIRST_COMPLETED)
            done_waiting.cancel()
            if closed in done:
                closed.result()

        except (ConnectError, SendError) as e:
            console.print(f"[warning]Connection problem:[/warning] {e}")
        except ConnectionClosedError as e:
            console.print(f"[warning]Disconnected:[/warning] code={e.code} reason={e.reason!r}")
        finally:
            await client.close()

        if failed is not None:
            break

        console.print(f"[muted]Reconnecting in {reconnect_delay:.0f}s...[/muted]")
        await asyncio.sleep(reconnect_delay)
        reconnect_delay = min(reconnect_delay * 2, config.tuning.ws_reconnect_max_delay)

    console.print(f"[critical]Subscription failed:[/critical] {failed}")
    raise typer.Exit(code=1)


def _run(subscribe: Subscriber) -> None:
    from bfx.config import get_config
    from bfx.logs import configure_logging

    config = get_config()
    configure_logging(config.logging)
    try:
        asyncio.run(run_stream(config, subscribe))
    except InvalidSubscriptionError as e:
        console.print(f"[critical]Invalid subscription:[/critical] {e}")
        raise typer.Exit(code=2)
    except KeyboardInterrupt:
        console.print("\n[muted]Stream stopped.[/muted]")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command("trades")
def trades(
    symbol: str = typer.Argument("tBTCUSD", help="Trading pair, e.g. tBTCUSD or btcusd"),
) -> None:
    """Stream every trade on SYMBOL."""
    _run(lambda client, cb, on_error: client.subscribe_trades(symbol, cb, on_error=on_error))


@app.command("book")
def book(
    symbol: str = typer.Argument("tBTCUSD", help="Trading pair, e.g. tBTCUSD or btcusd"),
    precision: str = typer.Option("P0", "--precision", "-p", help="P0-P4, or R0 for raw books"),
    frequency: str = typer.Option("F0", "--frequency", "-f", help="F0 realtime, F1 every 2s"),
    depth: Optional[int] = typer.Option(25, "--depth", "-d", help="Price points: 1, 25, 100, 250"),
) -> None:
    """Stream the order book for SYMBOL."""
    _run(
        lambda client, cb, on_error: client.subscribe_book(
            symbol, cb, precision=precision, frequency=frequency, depth=depth, on_error=on_error
        )
    )
