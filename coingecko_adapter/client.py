"""CoinGecko price API client."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable

import httpx
from pydantic import ValidationError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import CoinGeckoSettings
from .exceptions import (
    CoinGeckoAuthError,
    CoinGeckoHTTPError,
    CoinGeckoNetworkError,
    CoinGeckoNotFoundError,
    CoinGeckoRateLimitError,
    CoinGeckoResponseError,
    CoinGeckoServerError,
    CoinGeckoValidationError,
)
from .schemas import MarketChart, SimplePrice


class CoinGeckoClient:
    """Async client for the CoinGecko API.

    Usage:
        async with CoinGeckoClient(settings) as client:
            prices = await client.get_simple_prices(["ethereum"], "usd")
    """

    def __init__(self, settings: CoinGeckoSettings | None = None):
        """Initialize client.

        Args:
            settings: CoinGecko settings. If not provided, loads from environment.
        """
        self.settings = settings or CoinGeckoSettings()
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "CoinGeckoClient":
        """Enter async context."""
        headers = {"accept": "application/json"}
        if self.settings.api_key:
            headers[self.settings.api_key_header] = self.settings.api_key
        self._client = httpx.AsyncClient(
            base_url=self.settings.base_url,
            timeout=httpx.Timeout(self.settings.timeout_seconds),
            headers=headers,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get HTTP client, ensuring it's initialized."""
        if self._client is None:
            raise RuntimeError(
                "Client not initialized. Use 'async with CoinGeckoClient() as client:'"
            )
        return self._client

    def _handle_error(self, response: httpx.Response) -> None:
        """Raise the error class matching a non-2xx status.

        Raises:
            CoinGeckoAuthError: For 401/403 responses.
            CoinGeckoNotFoundError: For 404 responses.
            CoinGeckoValidationError: For 400/422 responses.
            CoinGeckoRateLimitError: For 429 responses.
            CoinGeckoServerError: For 5xx responses.
            CoinGeckoHTTPError: For other error responses.
        """
        if response.is_success:
            return

        try:
            details = response.json()
        except ValueError:
            details = response.text

        status = response.status_code
        if status in (401, 403):
            error_class = CoinGeckoAuthError
        elif status == 404:
            error_class = CoinGeckoNotFoundError
        elif status in (400, 422):
            error_class = CoinGeckoValidationError
        elif status == 429:
            error_class = CoinGeckoRateLimitError
        elif status >= 500:
            error_class = CoinGeckoServerError
        else:
            error_class = CoinGeckoHTTPError
        raise error_class(status, details)

    def _create_retry_decorator(self):
        """Create retry decorator with current settings."""
        return retry(
            retry=retry_if_exception_type(
                (CoinGeckoServerError, CoinGeckoRateLimitError, CoinGeckoNetworkError)
            ),
            stop=stop_after_attempt(self.settings.retry_attempts),
            wait=wait_exponential(
                min=self.settings.retry_min_wait_seconds,
                max=self.settings.retry_max_wait_seconds,
            ),
            reraise=True,
        )

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Make a request to the API.

        Numbers in the response are parsed as ``Decimal``.
        """
        filtered = {k: v for k, v in (params or {}).items() if v is not None}

        @self._create_retry_decorator()
        async def _do_request():
            try:
                response = await self.client.request(
                    method=method,
                    url=path,
                    params=filtered or None,
                )
            except httpx.TimeoutException as e:
                raise CoinGeckoNetworkError(f"Timeout: {e}")
            except httpx.TransportError as e:
                raise CoinGeckoNetworkError(f"Transport error ({type(e).__name__}): {e}")

            self._handle_error(response)
            try:
                return response.json(parse_float=Decimal)
            except ValueError as e:
                raise CoinGeckoResponseError("Malformed JSON response", str(e))

        return await _do_request()

    async def get_simple_prices(
        self,
        coin_ids: Iterable[str],
        vs_currency: str = "usd",
    ) -> dict[str, SimplePrice]:
        """Spot prices with market cap, 24h volume and 24h change.

        Coins unknown to CoinGecko are absent from the result.
        """
        ids = sorted({coin_id for coin_id in coin_ids if coin_id})
        if not ids:
            return {}
        currency = vs_currency.lower()

        data = await self._request(
            "GET",
            "/simple/price",
            params={
                "ids": ",".join(ids),
                "vs_currencies": currency,
                "include_market_cap": "true",
                "include_24hr_vol": "true",
                "include_24hr_change": "true",
                "include_last_updated_at": "true",
            },
        )
        if not isinstance(data, dict):
            raise CoinGeckoResponseError("Expected an object from /simple/price", type(data).__name__)
        try:
            return {
                coin_id: SimplePrice.from_api(coin_id, currency, payload)
                for coin_id, payload in data.items()
                if isinstance(payload, dict) and currency in payload
            }
        except ValidationError as e:
            raise CoinGeckoResponseError("Unexpected /simple/price payload", str(e))

    async def get_market_chart(
        self,
        coin_id: str,
        days: int = 7,
        vs_currency: str = "usd",
    ) -> MarketChart:
        """Historical prices for ``days`` back."""
        currency = vs_currency.lower()
        data = await self._request(
            "GET",
            f"/coins/{coin_id}/market_chart",
            params={"vs_currency": currency, "days": days},
        )
        if not isinstance(data, dict):
            raise CoinGeckoResponseError("Expected an object from market_chart", type(data).__name__)
        try:
            return MarketChart.from_api(coin_id, currency, data)
        except (ValidationError, TypeError, ValueError) as e:
            raise CoinGeckoResponseError("Unexpected market_chart payload", str(e))
