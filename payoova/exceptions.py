"""Error hierarchy for wallet operations.

Every error carries an HTTP status, a machine-readable code and a message safe
to show to API callers. Validation errors show their own message; custody and
chain errors only show a generic one, the detail goes to the logs.
"""

from __future__ import annotations

from typing import Any


class PayoovaError(Exception):
    """Base exception for wallet operations."""

    status_code = 500
    error_code = "INTERNAL_ERROR"
    public_message = "Internal server error"

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message

    @property
    def user_message(self) -> str:
        return self.public_message


# ==================== Validation (4xx) ====================


class ValidationFailedError(PayoovaError):
    """Request rejected before any side effect."""

    status_code = 400
    error_code = "VALIDATION_ERROR"

    @property
    def user_message(self) -> str:
        return self.message


class InvalidAddressError(ValidationFailedError):
    error_code = "INVALID_ADDRESS"


class InvalidAmountError(ValidationFailedError):
    error_code = "INVALID_AMOUNT"


class InsufficientBalanceError(ValidationFailedError):
    error_code = "INSUFFICIENT_BALANCE"


class DailyLimitExceededError(ValidationFailedError):
    error_code = "DAILY_LIMIT_EXCEEDED"


class UnsupportedNetworkError(ValidationFailedError):
    error_code = "UNSUPPORTED_NETWORK"


class UnsupportedTokenError(ValidationFailedError):
    error_code = "UNSUPPORTED_TOKEN"


class NotFoundError(ValidationFailedError):
    status_code = 404
    error_code = "NOT_FOUND"


class WalletNotFoundError(NotFoundError):
    error_code = "WALLET_NOT_FOUND"


class TransactionNotFoundError(NotFoundError):
    error_code = "TRANSACTION_NOT_FOUND"


class InvoiceNotFoundError(NotFoundError):
    error_code = "INVOICE_NOT_FOUND"


class InvalidStateError(ValidationFailedError):
    """Requested status change is not allowed from the current status."""

    status_code = 409
    error_code = "INVALID_STATE"


# ==================== Custody (fatal) ====================


class CustodyError(PayoovaError):
    """Key material could not be produced or used."""

    error_code = "CUSTODY_ERROR"
    public_message = "Failed to access wallet credentials"


class KeyDecryptionError(CustodyError):
    error_code = "KEY_DECRYPTION_FAILED"


class WalletGenerationError(CustodyError):
    error_code = "WALLET_GENERATION_FAILED"
    public_message = "Failed to generate wallet"


# ==================== Chain ====================


class ChainError(PayoovaError):
    """Upstream RPC failure."""

    status_code = 502
    error_code = "CHAIN_ERROR"
    public_message = "Blockchain network request failed"


class ChainUnavailableError(ChainError):
    error_code = "CHAIN_UNAVAILABLE"


class BroadcastError(ChainError):
    error_code = "BROADCAST_FAILED"
    public_message = "Failed to send transaction"


# ==================== Upstream services ====================


class PriceUnavailableError(PayoovaError):
    """No price data, fresh or stale, could be served."""

    status_code = 503
    error_code = "PRICE_UNAVAILABLE"
    public_message = "Price data temporarily unavailable"
