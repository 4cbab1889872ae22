"""Price API endpoints."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from payoova.exceptions import PriceUnavailableError
from payoova.schemas.common import CorrelatedResponse
from payoova.schemas.price import PriceHistoryResponse, PricePointResponse, PriceResponse
from payoova.services.networks import NETWORKS
from payoova.services.price import PriceService
from payoova.api.deps import get_correlation_id, get_price_service

router = APIRouter(prefix="/v1/prices", tags=["Prices"])


@router.get("", response_model=CorrelatedResponse[List[PriceResponse]])
async def get_prices(
    coins: Optional[str] = Query(None, description="Comma-separated CoinGecko ids; defaults to native coins"),
    currency: str = Query("usd", max_length=8),
    prices: PriceService = Depends(get_price_service),
    correlation_id: str = Depends(get_correlation_id),
):
    """Spot prices. A coin without any price, fresh or stale, has ``price`` null."""
    if coins:
        coin_ids = [c.strip().lower() for c in coins.split(",") if c.strip()]
    else:
        coin_ids = sorted({config.coin_id for config in NETWORKS.values()})

    quotes = await prices.get_prices(coin_ids, currency)
    data = []
    for coin_id in coin_ids:
        quote = quotes.get(coin_id)
        if quote is None:
            data.append(PriceResponse(coin_id=coin_id, currency=currency.lower()))
            continue
        data.append(PriceResponse(
            coin_id=coin_id,
            currency=quote.currency,
            price=quote.price,
            change_24h=quote.change_24h,
            market_cap=quote.market_cap,
            volume_24h=quote.volume_24h,
            fetched_at=quote.fetched_at,
            stale=quote.stale,
        ))
    return CorrelatedResponse(correlation_id=correlation_id, data=data)


@router.get("/{coin_id}/history", response_model=CorrelatedResponse[PriceHistoryResponse])
async def get_price_history(
    coin_id: str,
    days: int = Query(7, ge=1, le=365),
    currency: str = Query("usd", max_length=8),
    prices: PriceService = Depends(get_price_service),
    correlation_id: str = Depends(get_correlation_id),
):
    """Historical prices for ``days`` back."""
    chart = await prices.get_history(coin_id.lower(), days, currency)
    if chart is None:
        raise PriceUnavailableError(f"History for {coin_id} unavailable")

    return CorrelatedResponse(
        correlation_id=correlation_id,
        data=PriceHistoryResponse(
            coin_id=chart.coin_id,
            currency=chart.currency,
            days=days,
            prices=[PricePointResponse(timestamp_ms=p.timestamp_ms, value=p.value) for p in chart.prices],
        )
    )
