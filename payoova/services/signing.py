"""Signing adapter: signs transfers with a wallet's custodied key."""
import logging
from dataclasses import dataclass
from typing import Any, Dict

from web3 import Web3

from payoova.models.wallet import Wallet
from payoova.services.key_vault import KeyVaultService, SealedKey

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignedTransfer:
    raw_transaction: bytes
    tx_hash: str


class SigningService:
    """
    Signs transaction dicts for custodial wallets.

    The private key is opened through the key vault for exactly one signature
    and is never returned, cached or logged.
    """

    def __init__(self, key_vault: KeyVaultService):
        self.key_vault = key_vault

    def sign_transaction(self, wallet: Wallet, tx_dict: Dict[str, Any]) -> SignedTransfer:
        sealed = SealedKey(algorithm=wallet.key_algorithm, ciphertext=wallet.encrypted_private_key)

        with self.key_vault.unlocked_account(sealed, wallet.address) as account:
            signed = account.sign_transaction(tx_dict)

        # eth-account >= 0.12 uses raw_transaction, earlier versions rawTransaction
        raw_tx = getattr(signed, "raw_transaction", None) or getattr(signed, "rawTransaction", None)
        tx_hash = Web3.to_hex(signed.hash)

        logger.info(f"Signed transaction {tx_hash} for wallet {wallet.id} (nonce {tx_dict.get('nonce')})")
        return SignedTransfer(raw_transaction=bytes(raw_tx), tx_hash=tx_hash)
