"""Schemas for CoinGecko API responses."""

from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field


class SimplePrice(BaseModel):
    """Spot price of one coin in one fiat currency (``/simple/price``)."""

    coin_id: str = Field(..., description="CoinGecko coin id, e.g. 'ethereum'")
    currency: str = Field(..., description="Fiat currency code, lower case")
    price: Decimal
    market_cap: Decimal | None = None
    volume_24h: Decimal | None = None
    change_24h: Decimal | None = Field(default=None, description="24h change in percent")
    last_updated_at: int | None = Field(default=None, description="Unix timestamp")

    @classmethod
    def from_api(cls, coin_id: str, currency: str, payload: dict) -> "SimplePrice":
        return cls(
            coin_id=coin_id,
            currency=currency,
            price=payload[currency],
            market_cap=payload.get(f"{currency}_market_cap"),
            volume_24h=payload.get(f"{currency}_24h_vol"),
            change_24h=payload.get(f"{currency}_24h_change"),
            last_updated_at=payload.get("last_updated_at"),
        )


class PricePoint(BaseModel):
    """One sample of a market chart."""

    timestamp_ms: int
    value: Decimal


class MarketChart(BaseModel):
    """Historical prices (``/coins/{id}/market_chart``)."""

    coin_id: str
    currency: str
    prices: list[PricePoint] = Field(default_factory=list)
    market_caps: list[PricePoint] = Field(default_factory=list)
    total_volumes: list[PricePoint] = Field(default_factory=list)

    @classmethod
    def from_api(cls, coin_id: str, currency: str, payload: dict) -> "MarketChart":
        def points(key: str) -> list[PricePoint]:
            return [PricePoint(timestamp_ms=int(ts), value=value) for ts, value in payload.get(key, [])]

        return cls(
            coin_id=coin_id,
            currency=currency,
            prices=points("prices"),
            market_caps=points("market_caps"),
            total_volumes=points("total_volumes"),
        )
