"""Pytest configuration and fixtures."""

import pytest


@pytest.fixture
def api_key() -> str:
    """Demo API key used by the tests."""
    return "CG-test-demo-key"


@pytest.fixture
def mock_settings(api_key: str):
    """Create test settings."""
    from coingecko_adapter.config import CoinGeckoSettings

    return CoinGeckoSettings(
        api_key=api_key,
        base_url="https://api.test.coingecko.com/api/v3",
        retry_attempts=1,  # Disable retries for faster tests
    )
