"""Price schemas."""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel


class PriceResponse(BaseModel):
    coin_id: str
    currency: str
    price: Optional[Decimal] = None
    change_24h: Optional[Decimal] = None
    market_cap: Optional[Decimal] = None
    volume_24h: Optional[Decimal] = None
    fetched_at: Optional[datetime] = None
    stale: bool = False


class PricePointResponse(BaseModel):
    timestamp_ms: int
    value: Decimal


class PriceHistoryResponse(BaseModel):
    coin_id: str
    currency: str
    days: int
    prices: List[PricePointResponse]
