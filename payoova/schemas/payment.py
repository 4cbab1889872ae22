"""Invoice (payment request) schemas."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from payoova.models.invoice import InvoiceStatus
from payoova.models.wallet import Network


class InvoiceCreate(BaseModel):
    """Schema for creating a payment request."""
    chain: str = Field("ethereum", max_length=32)
    token: str = Field("NATIVE", max_length=64, description="Token symbol or contract; NATIVE for the chain's currency")
    amount: str = Field(..., min_length=1, max_length=80)
    memo: Optional[str] = Field(None, max_length=500)
    expires_in_minutes: Optional[int] = Field(None, ge=1)

    class Config:
        json_schema_extra = {
            "example": {
                "chain": "ethereum",
                "token": "ETH",
                "amount": "0.01",
                "memo": "Order #1042",
                "expires_in_minutes": 60,
            }
        }


class PaymentLinkResponse(BaseModel):
    invoice_id: str
    pay_url: str
    qr_png_base64: str
    address: str
    network: Network
    token: str
    amount: str
    expires_at: datetime


class InvoiceResponse(BaseModel):
    """Schema for invoice response."""
    id: str
    network: Network
    token: str
    token_address: Optional[str] = None
    amount: str
    address: str
    memo: Optional[str] = None
    status: InvoiceStatus
    tx_hash: Optional[str] = None
    paid_at: Optional[datetime] = None
    expires_at: datetime
    created_at: datetime

    class Config:
        from_attributes = True
