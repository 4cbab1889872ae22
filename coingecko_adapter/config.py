"""Configuration settings for the CoinGecko price adapter."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CoinGeckoSettings(BaseSettings):
    """CoinGecko API configuration.

    All settings can be configured via environment variables with COINGECKO_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="COINGECKO_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    api_key: str | None = Field(
        default=None,
        description="CoinGecko API key; anonymous access when unset",
    )
    api_key_header: str = Field(
        default="x-cg-demo-api-key",
        description="Header carrying the API key (x-cg-pro-api-key for Pro plans)",
    )
    base_url: str = Field(
        default="https://api.coingecko.com/api/v3",
        description="CoinGecko API base URL",
    )
    timeout_seconds: float = Field(
        default=10.0,
        description="HTTP request timeout in seconds",
    )
    retry_attempts: int = Field(
        default=3,
        description="Number of retry attempts for failed requests",
    )
    retry_min_wait_seconds: float = Field(
        default=1.0,
        description="Minimum wait time between retries in seconds",
    )
    retry_max_wait_seconds: float = Field(
        default=10.0,
        description="Maximum wait time between retries in seconds",
    )
