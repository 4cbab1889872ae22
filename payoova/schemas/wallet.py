"""Wallet-related schemas."""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from pydantic import BaseModel, Field

from payoova.models.wallet import Network, WalletStatus


class WalletCreate(BaseModel):
    """Schema for provisioning a wallet on a network."""
    network: str = Field("ethereum", max_length=32)

    class Config:
        json_schema_extra = {"example": {"network": "polygon"}}


class WalletResponse(BaseModel):
    """Schema for wallet response. Key material is never part of it."""
    id: str
    network: Network
    address: str
    status: WalletStatus
    cached_balance: Optional[str] = None
    balance_synced_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class TokenInfo(BaseModel):
    symbol: str
    address: str
    decimals: int


class NetworkInfo(BaseModel):
    network: Network
    name: str
    chain_id: int
    native_symbol: str
    explorer_url: str
    is_testnet: bool
    enabled: bool
    tokens: List[TokenInfo] = []


class AssetBalanceResponse(BaseModel):
    """One asset's balance. ``error`` is set, and the amounts are null, when it could not be read."""
    symbol: str
    token_address: Optional[str] = None
    decimals: int
    balance: Optional[str] = None
    usd_value: Optional[Decimal] = None
    price: Optional[Decimal] = None
    error: Optional[str] = None


class BalanceResponse(BaseModel):
    address: str
    network: Network
    balance: str
    currency: str
    usd_value: Optional[Decimal] = None
    price: Optional[Decimal] = None
    tokens: List[AssetBalanceResponse] = []
    partial: bool = False


class PortfolioEntry(AssetBalanceResponse):
    network: Network
    wallet_address: str


class PortfolioResponse(BaseModel):
    assets: List[PortfolioEntry]
    total_usd: Decimal
    partial: bool = Field(False, description="True when any asset could not be read or priced")


class SendRequest(BaseModel):
    """Schema for sending native currency or a token."""
    to_address: str = Field(..., min_length=1, max_length=64)
    amount: str = Field(..., min_length=1, max_length=80, description="Decimal string, never a float")
    network: str = Field("ethereum", max_length=32)
    token_address: Optional[str] = Field(None, max_length=64)
    wallet_id: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "to_address": "0x742d35cc6634c0532925a3b844bc9e7595f2bd20",
                "amount": "0.05",
                "network": "ethereum",
            }
        }


class SendResponse(BaseModel):
    hash: str
    status: str
    transaction_id: str
    explorer_url: Optional[str] = None


class FeeEstimateRequest(BaseModel):
    to_address: str = Field(..., min_length=1, max_length=64)
    amount: str = Field(..., min_length=1, max_length=80)
    network: str = Field("ethereum", max_length=32)
    token_address: Optional[str] = Field(None, max_length=64)
    wallet_id: Optional[str] = None


class FeeEstimateResponse(BaseModel):
    network: str
    asset_symbol: str
    amount: str
    gas_limit: int
    gas_price: str
    max_fee_per_gas: Optional[str] = None
    max_priority_fee_per_gas: Optional[str] = None
    fee: str
    fee_usd: Optional[Decimal] = None
