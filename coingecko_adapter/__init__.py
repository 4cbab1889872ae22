"""CoinGecko Adapter - async Python client for the CoinGecko price API."""

from .client import CoinGeckoClient
from .config import CoinGeckoSettings
from .exceptions import (
    CoinGeckoAuthError,
    CoinGeckoError,
    CoinGeckoHTTPError,
    CoinGeckoNetworkError,
    CoinGeckoNotFoundError,
    CoinGeckoRateLimitError,
    CoinGeckoResponseError,
    CoinGeckoServerError,
    CoinGeckoValidationError,
)
from .schemas import MarketChart, PricePoint, SimplePrice

__version__ = "0.1.0"

__all__ = [
    # Main classes
    "CoinGeckoClient",
    "CoinGeckoSettings",
    # Exceptions
    "CoinGeckoError",
    "CoinGeckoHTTPError",
    "CoinGeckoResponseError",
    "CoinGeckoAuthError",
    "CoinGeckoNotFoundError",
    "CoinGeckoValidationError",
    "CoinGeckoRateLimitError",
    "CoinGeckoServerError",
    "CoinGeckoNetworkError",
    # Schemas
    "SimplePrice",
    "PricePoint",
    "MarketChart",
]
