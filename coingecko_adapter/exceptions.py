"""Errors raised by the CoinGecko price adapter."""

from __future__ import annotations

from typing import Any


class CoinGeckoError(Exception):
    """Base for anything that kept a price request from producing data."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        return f"{self.message}: {self.details}" if self.details else self.message


class CoinGeckoHTTPError(CoinGeckoError):
    """Non-2xx response; ``status_code`` holds the HTTP status."""

    def __init__(self, status_code: int, details: Any = None):
        super().__init__(f"HTTP {status_code}", details)
        self.status_code = status_code


class CoinGeckoAuthError(CoinGeckoHTTPError):
    """401/403, usually a missing or revoked API key."""


class CoinGeckoNotFoundError(CoinGeckoHTTPError):
    """404: unknown coin id."""


class CoinGeckoValidationError(CoinGeckoHTTPError):
    """400/422."""


class CoinGeckoRateLimitError(CoinGeckoHTTPError):
    """429; retried."""


class CoinGeckoServerError(CoinGeckoHTTPError):
    """5xx; retried."""


class CoinGeckoNetworkError(CoinGeckoError):
    """The request never got a response (timeout, refused, dropped connection)."""


class CoinGeckoResponseError(CoinGeckoError):
    """A 2xx response whose body is not the expected shape."""
