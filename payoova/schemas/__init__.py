"""Pydantic schemas for API validation."""
from payoova.schemas.common import (
    CorrelatedResponse,
    PaginatedResponse,
    ErrorResponse,
)
from payoova.schemas.wallet import (
    WalletCreate,
    WalletResponse,
    NetworkInfo,
    BalanceResponse,
    PortfolioResponse,
    SendRequest,
    SendResponse,
    FeeEstimateRequest,
    FeeEstimateResponse,
)
from payoova.schemas.transaction import (
    TransactionResponse,
    TransactionStats,
)
from payoova.schemas.payment import (
    InvoiceCreate,
    InvoiceResponse,
    PaymentLinkResponse,
)
from payoova.schemas.price import (
    PriceResponse,
    PriceHistoryResponse,
)
from payoova.schemas.user import (
    UserResponse,
    UserSettingsUpdate,
)

__all__ = [
    "CorrelatedResponse",
    "PaginatedResponse",
    "ErrorResponse",
    "WalletCreate",
    "WalletResponse",
    "NetworkInfo",
    "BalanceResponse",
    "PortfolioResponse",
    "SendRequest",
    "SendResponse",
    "FeeEstimateRequest",
    "FeeEstimateResponse",
    "TransactionResponse",
    "TransactionStats",
    "InvoiceCreate",
    "InvoiceResponse",
    "PaymentLinkResponse",
    "PriceResponse",
    "PriceHistoryResponse",
    "UserResponse",
    "UserSettingsUpdate",
]
