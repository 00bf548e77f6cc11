"""Async REST API client for Bitfinex public and authenticated endpoints."""

from __future__ import annotations

from typing import Any

import httpx
import orjson
import structlog

from bfx.config import AppConfig, get_config
from bfx.models import BookLevel, BookSnapshot, Candle, RawBookLevel, SymbolDetails, Trade
from bfx.rest.auth import BitfinexAuth
from bfx.rest.errors import AuthError, HttpError, ParamsError

logger = structlog.get_logger(__name__)

TIMEFRAMES = ("1m", "5m", "15m", "30m", "1h", "3h", "6h", "12h", "1D", "7D", "14D", "1M")
SECTIONS = ("last", "hist")
HISTORY_PARAMS = ("limit", "start", "end", "sort")


def check_params(params: dict[str, Any], allowed: tuple[str, ...]) -> None:
    """Reject query parameters the endpoint does not accept."""
    unknown = sorted(set(params) - set(allowed))
    if unknown:
        raise ParamsError(f"unsupported params {unknown}; allowed: {list(allowed)}")


class BitfinexRESTClient:
    """Async HTTP client for the Bitfinex v2 (and a few v1) REST endpoints."""

    def __init__(
        self,
        config: AppConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        config = config or get_config()
        self._public_url = config.bitfinex.rest_url.rstrip("/")
        self._auth_url = config.bitfinex.auth_rest_url.rstrip("/")
        self._v1_url = config.bitfinex.rest_v1_url.rstrip("/")
        self._auth = (
            BitfinexAuth(config.bitfinex.api_key, config.bitfinex.api_secret)
            if config.bitfinex.has_credentials
            else None
        )
        self._client = httpx.AsyncClient(timeout=config.tuning.rest_timeout, transport=transport)

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> BitfinexRESTClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error("rest_request_failed", method=method, url=url, error=str(e))
            raise HttpError(None, str(e)) from e

        if response.status_code in (401, 403):
            raise AuthError(f"{response.status_code}: {response.text[:200]}")
        if response.is_error:
            logger.warning("rest_error_response", url=url, status=response.status_code)
            raise HttpError(response.status_code, response.text)
        return orjson.loads(response.content)

    # ── Transport-level calls ─────────────────────────────────────────

    async def get(self, path: str, params: dict | None = None, base_url: str | None = None) -> Any:
        url = f"{base_url or self._public_url}/{path.lstrip('/')}"
        return await self._request("GET", url, params=params or None)

    async def authenticated_post(self, path: str, body: dict | None = None) -> Any:
        """POST to an authenticated v2 endpoint, signing the exact body sent."""
        if self._auth is None:
            raise AuthError("BFX_API_KEY and BFX_API_SECRET must be set for authenticated calls")

        path = path.lstrip("/")
        payload = orjson.dumps(body or {}).decode()
        headers = self._auth.sign_request(path, payload)
        return await self._request(
            "POST", f"{self._auth_url}/{path}", content=payload, headers=headers
        )

    # ── Public endpoints ──────────────────────────────────────────────

    async def candles(
        self,
        symbol: str = "tBTCUSD",
        timeframe: str = "1m",
        section: str = "last",
        **params: Any,
    ) -> Candle | list[Candle]:
        """GET candles/trade:{timeframe}:{symbol}/{section}

        ``section="last"`` returns one candle, ``"hist"`` a list.
        Params: limit, start (ms), end (ms), sort (1 = oldest first).
        """
        check_params(params, HISTORY_PARAMS)
        if timeframe not in TIMEFRAMES:
            raise ParamsError(f"timeframe must be one of {TIMEFRAMES}, got {timeframe!r}")
        if section not in SECTIONS:
            raise ParamsError(f"section must be one of {SECTIONS}, got {section!r}")

        data = await self.get(f"candles/trade:{timeframe}:{symbol}/{section}", params)
        if section == "last":
            return Candle.from_row(data)
        return [Candle.from_row(row) for row in data]

    async def books(self, symbol: str = "tBTCUSD", precision: str = "P0", **params: Any) -> BookSnapshot:
        """GET book/{symbol}/{precision}. Params: len (1, 25 or 100)."""
        check_params(params, ("len",))
        data = await self.get(f"book/{symbol}/{precision}", params)
        level_cls = RawBookLevel if precision == "R0" else BookLevel
        return BookSnapshot(symbol=symbol, levels=[level_cls.from_row(row) for row in data])

    async def trades(self, symbol: str = "tBTCUSD", **params: Any) -> list[Trade]:
        """GET trades/{symbol}/hist. Params: limit, start, end, sort."""
        check_params(params, HISTORY_PARAMS)
        data = await self.get(f"trades/{symbol}/hist", params)
        return [Trade.from_row(row) for row in data]

    async def symbols(self) -> list[str]:
        """GET v1 symbols — lower-case pair names."""
        return await self.get("symbols", base_url=self._v1_url)

    async def symbols_details(self) -> list[SymbolDetails]:
        """GET v1 symbols_details"""
        data = await self.get("symbols_details", base_url=self._v1_url)
        return [SymbolDetails.model_validate(row) for row in data]

    # ── Authenticated endpoints ───────────────────────────────────────

    async def orders(self) -> list:
        """Active orders."""
        return await self.authenticated_post("auth/r/orders")

    async def order_trades(self, order_id: int, symbol: str = "tBTCUSD") -> list:
        """Trades generated by one order."""
        return await self.authenticated_post(f"auth/r/order/{symbol}:{order_id}/trades")

    async def active_positions(self) -> list:
        return await self.authenticated_post("auth/r/positions")
