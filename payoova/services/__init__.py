"""Business logic services."""
from payoova.services.key_vault import KeyVaultService, KeyCipher, AESGCMCipher, SealedKey
from payoova.services.chain import ChainGateway, ChainRegistry
from payoova.services.wallet import WalletService
from payoova.services.signing import SigningService
from payoova.services.price import PriceCache, PriceService
from payoova.services.transactions import TransactionService
from payoova.services.orchestrator import TxOrchestrator, WalletLocks
from payoova.services.payments import InvoiceService
from payoova.services.users import UserService
from payoova.services.auth import AuthService
from payoova.services.scheduler import PeriodicTask
from payoova.services.monitor import MonitorLoop

__all__ = [
    "KeyVaultService",
    "KeyCipher",
    "AESGCMCipher",
    "SealedKey",
    "ChainGateway",
    "ChainRegistry",
    "WalletService",
    "SigningService",
    "PriceCache",
    "PriceService",
    "TransactionService",
    "TxOrchestrator",
    "WalletLocks",
    "InvoiceService",
    "UserService",
    "AuthService",
    "PeriodicTask",
    "MonitorLoop",
]
