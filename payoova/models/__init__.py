"""Database models package."""
from payoova.models.user import User, AuthProvider
from payoova.models.wallet import Wallet, WalletStatus, Network
from payoova.models.invoice import Invoice, InvoiceStatus, INVOICE_TRANSITIONS
from payoova.models.transaction import Transaction, TxStatus, TxDirection, VALID_TRANSITIONS

__all__ = [
    "User",
    "AuthProvider",
    "Wallet",
    "WalletStatus",
    "Network",
    "Invoice",
    "InvoiceStatus",
    "INVOICE_TRANSITIONS",
    "Transaction",
    "TxStatus",
    "TxDirection",
    "VALID_TRANSITIONS",
]
