"""Transaction history schemas."""
from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional
from pydantic import BaseModel

from payoova.models.transaction import TxDirection, TxStatus
from payoova.models.wallet import Network


class TransactionResponse(BaseModel):
    """Schema for transaction response."""
    id: str
    wallet_id: str
    invoice_id: Optional[str] = None
    network: Network
    direction: TxDirection
    status: TxStatus
    from_address: str
    to_address: str
    asset_symbol: str
    token_address: Optional[str] = None
    token_decimals: int
    amount: str
    usd_value: Optional[Decimal] = None
    tx_hash: Optional[str] = None
    nonce: Optional[int] = None
    gas_limit: Optional[str] = None
    gas_price: Optional[str] = None
    gas_used: Optional[str] = None
    block_number: Optional[int] = None
    confirmations: int = 0
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    confirmed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TransactionStats(BaseModel):
    days: int
    total: int
    by_status: Dict[str, int]
    by_network: Dict[str, int]
    sent_usd: Decimal
    received_usd: Decimal
