"""HMAC-SHA384 request signing for Bitfinex v2 authenticated endpoints."""

from __future__ import annotations

import time

from cryptography.hazmat.primitives import hashes, hmac
import structlog

from bfx.rest.errors import AuthError

logger = structlog.get_logger(__name__)


class BitfinexAuth:
    """Signs authenticated REST requests with an API key/secret pair."""

    def __init__(self, api_key: str, api_secret: str) -> None:
        if not api_key or not api_secret:
            raise AuthError("api key and secret are required for authenticated calls")
        self._api_key = api_key
        self._api_secret = api_secret.encode()
        self._last_nonce = 0
        logger.info("bitfinex_auth_initialized", api_key=api_key[:6] + "...")

    def _nonce(self) -> str:
        """Microsecond nonce, strictly increasing even within one microsecond."""
        nonce = max(int(time.time() * 1_000_000), self._last_nonce + 1)
        self._last_nonce = nonce
        return str(nonce)

    def _sign(self, message: str) -> str:
        """Return the hex HMAC-SHA384 of ``message``."""
        h = hmac.HMAC(self._api_secret, hashes.SHA384())
        h.update(message.encode())
        return h.finalize().hex()

    def sign_request(self, path: str, body: str) -> dict[str, str]:
        """Generate auth headers for a v2 REST request.

        The signed message is: "/api/v2/" + path + nonce + body

        Args:
            path: endpoint path below /v2/ (e.g. auth/r/orders)
            body: the exact JSON string sent as the request body
        """
        nonce = self._nonce()
        message = f"/api/v2/{path.lstrip('/')}{nonce}{body}"

        return {
            "bfx-nonce": nonce,
            "bfx-apikey": self._api_key,
            "bfx-signature": self._sign(message),
            "content-type": "application/json",
        }
