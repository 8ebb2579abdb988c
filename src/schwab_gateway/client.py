"""Schwab REST API Client.

Thin async wrapper over httpx for the trader and market data endpoints the
gateway needs. Every request carries the current bearer token; non-success
responses raise RequestError.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional
import logging

import httpx

from src.logging_config import log_performance
from src.schwab_gateway.config import GatewayConfig
from src.schwab_gateway.credentials import CredentialStore
from src.schwab_gateway.errors import RequestError

logger = logging.getLogger(__name__)

_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S.000Z"


def _merge(defaults: dict, criteria: Optional[dict]) -> dict:
    """Caller criteria override default query parameters."""
    return {**defaults, **(criteria or {})}


class SchwabRestClient:
    """Schwab REST API client.

    Example:
        client = SchwabRestClient(config, store, http)
        numbers = await client.get_account_numbers()
        account = await client.get_account(numbers[0]["hashValue"])
    """

    def __init__(
        self,
        config: GatewayConfig,
        store: CredentialStore,
        http: httpx.AsyncClient,
    ):
        self._config = config
        self._store = store
        self._http = http

    @log_performance()
    async def send(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        json: Any = None,
    ) -> httpx.Response:
        """Send one authenticated request; raise RequestError on failure."""
        url = f"{self._config.data_url}{path}"
        try:
            resp = await self._http.request(
                method,
                url,
                params=params,
                json=json,
                headers=self._store.auth_headers(),
            )
        except httpx.HTTPError as e:
            raise RequestError(f"{method} {path} failed: {e}") from e

        if resp.status_code >= 400:
            raise RequestError(
                f"{method} {path} returned {resp.status_code}: {resp.text[:200]}",
                resp.status_code,
            )
        return resp

    async def _get_json(self, path: str, params: Optional[dict] = None) -> Any:
        resp = await self.send("GET", path, params=params)
        try:
            return resp.json()
        except ValueError as e:
            raise RequestError(f"GET {path} returned invalid JSON", resp.status_code) from e

    # -- Accounts ----------------------------------------------------------

    async def get_account_numbers(self) -> list[dict]:
        """Get plain/encrypted account number pairs."""
        return await self._get_json("/trader/v1/accounts/accountNumbers")

    async def get_account(self, account_code: str, criteria: Optional[dict] = None) -> dict:
        """Get balances and positions for an account."""
        return await self._get_json(
            f"/trader/v1/accounts/{account_code}",
            params=_merge({"fields": "positions"}, criteria),
        )

    async def get_orders(self, account_code: str, criteria: Optional[dict] = None) -> list[dict]:
        """Get orders entered within the configured window."""
        now = datetime.now(timezone.utc)
        defaults = {
            "maxResults": self._config.max_order_results,
            "toEnteredTime": (now + timedelta(days=self._config.order_lookahead_days)).strftime(_DATE_FORMAT),
            "fromEnteredTime": (now - timedelta(days=self._config.order_lookback_days)).strftime(_DATE_FORMAT),
        }
        return await self._get_json(
            f"/trader/v1/accounts/{account_code}/orders",
            params=_merge(defaults, criteria),
        )

    async def place_order(self, account_code: str, payload: dict) -> httpx.Response:
        """Submit an order. The remote id comes back in the Location header."""
        return await self.send(
            "POST", f"/trader/v1/accounts/{account_code}/orders", json=payload
        )

    async def cancel_order(self, account_code: str, remote_id: str) -> httpx.Response:
        """Cancel an order by its remote id."""
        return await self.send(
            "DELETE", f"/trader/v1/accounts/{account_code}/orders/{remote_id}"
        )

    async def get_user_preference(self) -> dict:
        """Get user preferences, including streamer connection info."""
        return await self._get_json("/trader/v1/userPreference")

    # -- Market Data -------------------------------------------------------

    async def get_quotes(self, symbols: list[str], criteria: Optional[dict] = None) -> dict:
        defaults = {
            "indicative": "false",
            "symbols": ",".join(symbols),
            "fields": "quote,fundamental,extended,reference,regular",
        }
        return await self._get_json("/marketdata/v1/quotes", params=_merge(defaults, criteria))

    async def get_price_history(self, symbol: str, criteria: Optional[dict] = None) -> dict:
        defaults = {
            "periodType": "day",
            "period": 1,
            "frequencyType": "minute",
            "frequency": 1,
            "symbol": symbol,
        }
        return await self._get_json("/marketdata/v1/pricehistory", params=_merge(defaults, criteria))

    async def get_option_chain(self, symbol: str, criteria: Optional[dict] = None) -> dict:
        return await self._get_json(
            "/marketdata/v1/chains", params=_merge({"symbol": symbol}, criteria)
        )
