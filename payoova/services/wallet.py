"""Wallet provisioning and lookup."""
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from eth_account import Account
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from web3 import Web3

from payoova.exceptions import WalletGenerationError, WalletNotFoundError
from payoova.models.wallet import Network, Wallet, WalletStatus
from payoova.services.key_vault import KeyVaultService
from payoova.services.networks import parse_network
from payoova.services.notifications import Notifier, WalletEvent

logger = logging.getLogger(__name__)


class WalletService:
    """Service for provisioning and managing custodial wallets."""

    def __init__(
        self,
        db: AsyncSession,
        key_vault: KeyVaultService,
        notifier: Optional[Notifier] = None
    ):
        self.db = db
        self.key_vault = key_vault
        self.notifier = notifier

    async def generate_wallet(self, user_id: str, network) -> Tuple[Wallet, bool]:
        """
        Return the user's active wallet on ``network``, creating it if needed.

        Returns (wallet, created). A new key is generated on every creation
        attempt and sealed before it touches the database or the log.
        """
        network = parse_network(network)

        existing = await self.get_active_wallet(user_id, network)
        if existing:
            return existing, False

        try:
            account = Account.create()
        except Exception as e:
            logger.error(f"Key generation failed for user {user_id} on {network.value}: {type(e).__name__}")
            raise WalletGenerationError("Key generation failed") from e

        address = account.address.lower()
        sealed = self.key_vault.encrypt(Web3.to_hex(account.key), context=address)
        del account

        wallet = Wallet(
            user_id=user_id,
            network=network,
            address=address,
            encrypted_private_key=sealed.ciphertext,
            key_algorithm=sealed.algorithm,
            status=WalletStatus.ACTIVE,
        )

        self.db.add(wallet)
        try:
            await self.db.flush()
        except IntegrityError as e:
            # Lost a race with a concurrent request for the same (user, network)
            await self.db.rollback()
            existing = await self.get_active_wallet(user_id, network)
            if existing:
                logger.info(f"Concurrent provisioning for user {user_id} on {network.value}, reusing {existing.id}")
                return existing, False
            logger.error(f"Failed to persist wallet for user {user_id} on {network.value}: {e.orig}")
            raise WalletGenerationError("Failed to persist wallet") from e

        logger.info(f"Created {network.value} wallet {wallet.id} with address {wallet.address} for user {user_id}")

        if self.notifier:
            await self.notifier.wallet_created(WalletEvent(
                user_id=user_id,
                wallet_id=wallet.id,
                network=network.value,
                address=wallet.address,
            ))
        return wallet, True

    async def get_active_wallet(self, user_id: str, network: Network) -> Optional[Wallet]:
        result = await self.db.execute(
            select(Wallet).where(
                Wallet.user_id == user_id,
                Wallet.network == network,
                Wallet.status == WalletStatus.ACTIVE,
            )
        )
        return result.scalar_one_or_none()

    async def get_wallet(self, wallet_id: str) -> Optional[Wallet]:
        result = await self.db.execute(select(Wallet).where(Wallet.id == wallet_id))
        return result.scalar_one_or_none()

    async def get_user_wallet(self, user_id: str, wallet_id: str) -> Wallet:
        """Wallet owned by ``user_id``; other users' wallets are reported as missing."""
        wallet = await self.get_wallet(wallet_id)
        if not wallet or wallet.user_id != user_id:
            raise WalletNotFoundError(f"Wallet {wallet_id} not found")
        return wallet

    async def get_wallet_by_address(self, address: str, network: Optional[Network] = None) -> Optional[Wallet]:
        query = select(Wallet).where(Wallet.address == address.lower())
        if network:
            query = query.where(Wallet.network == network)
        result = await self.db.execute(query)
        return result.scalars().first()

    async def list_wallets(self, user_id: str, include_archived: bool = False) -> List[Wallet]:
        query = select(Wallet).where(Wallet.user_id == user_id)
        if not include_archived:
            query = query.where(Wallet.status == WalletStatus.ACTIVE)
        result = await self.db.execute(query.order_by(Wallet.created_at))
        return list(result.scalars().all())

    async def update_cached_balance(self, wallet: Wallet, balance: str) -> None:
        wallet.cached_balance = balance
        wallet.balance_synced_at = datetime.utcnow()
        await self.db.flush()
