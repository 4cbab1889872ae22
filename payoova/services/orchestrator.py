"""Transaction orchestrator: validate, sign, broadcast and record outgoing transfers.

Validation runs in a fixed order and every check completes before anything
is signed or broadcast:
1. recipient address format
2. positive amount within the asset's precision
3. on-chain balance covers the amount
4. daily USD limit, when the user has one

Sends from one wallet are serialized so each one reads a fresh nonce, and
sends of one user are serialized so the daily limit sees every earlier send.
The pending row is committed before the locks are released.
"""
import asyncio
import logging
import weakref
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from payoova.exceptions import (
    BroadcastError,
    DailyLimitExceededError,
    InsufficientBalanceError,
    InvalidAddressError,
    UnsupportedTokenError,
    ValidationFailedError,
    WalletNotFoundError,
)
from payoova.models.transaction import Transaction, TxDirection, TxStatus
from payoova.models.user import User
from payoova.models.wallet import Wallet, WalletStatus
from payoova.services.amounts import from_base_units, parse_amount, to_base_units
from payoova.services.chain import ChainGateway, ChainRegistry, FeeEstimate, is_valid_address
from payoova.services.networks import TokenConfig, parse_network
from payoova.services.price import PriceService
from payoova.services.signing import SigningService
from payoova.services.transactions import TransactionService
from payoova.services.wallet import WalletService

logger = logging.getLogger(__name__)


class WalletLocks:
    """asyncio locks per wallet and per user, shared by every request in the process.

    Take the user lock before the wallet lock.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _get(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def for_wallet(self, wallet_id: str) -> asyncio.Lock:
        return self._get(f"wallet:{wallet_id}")

    def for_user(self, user_id: str) -> asyncio.Lock:
        """Serializes the daily limit check across all of a user's wallets."""
        return self._get(f"user:{user_id}")


@dataclass
class SendResult:
    tx_hash: str
    status: TxStatus
    transaction: Transaction


@dataclass
class TransferQuote:
    """Fee estimate for a transfer that has not been signed."""
    network: str
    asset_symbol: str
    amount: str
    gas_limit: int
    gas_price: int
    max_fee_per_gas: Optional[int]
    max_priority_fee_per_gas: Optional[int]
    fee: str
    fee_usd: Optional[Decimal]


class TxOrchestrator:
    """Runs the send flow: validate -> build -> sign -> broadcast -> record."""

    def __init__(
        self,
        db: AsyncSession,
        chains: ChainRegistry,
        signing: SigningService,
        prices: PriceService,
        locks: WalletLocks,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.db = db
        self.chains = chains
        self.signing = signing
        self.prices = prices
        self.locks = locks
        self.clock = clock
        self.transactions = TransactionService(db)

    async def send(
        self,
        user: User,
        wallet_id: Optional[str],
        to_address: str,
        amount: str,
        network: str,
        token_address: Optional[str] = None,
        correlation_id: str = "",
    ) -> SendResult:
        """
        Send native currency or an allow-listed token.

        Returns a pending handle whose row is already committed. Raises a
        ValidationFailedError subclass before any chain write, BroadcastError
        if the node rejects the transaction (no row is written in that case).
        """
        network = parse_network(network)
        gateway = self.chains.get(network)
        wallet = await self._load_wallet(user, wallet_id, network)

        # 1. Address
        if not is_valid_address(to_address):
            raise InvalidAddressError(f"Invalid recipient address {to_address!r}")

        # 2. Amount (and asset)
        token = self._resolve_token(gateway, token_address)
        value = parse_amount(amount)
        decimals = token.decimals if token else gateway.config.native_decimals
        amount_base_units = to_base_units(value, decimals)
        asset_symbol = token.symbol if token else gateway.config.native_symbol

        async with self.locks.for_user(user.id), self.locks.for_wallet(wallet.id):
            # 3. Balance
            if token:
                balance = await gateway.get_token_balance(wallet.address, token)
            else:
                balance = await gateway.get_native_balance(wallet.address)
            if balance.balance_base_units < amount_base_units:
                raise InsufficientBalanceError(
                    "Insufficient balance",
                    {"available": balance.balance, "requested": str(value), "asset": asset_symbol},
                )

            # 4. Daily limit
            usd_value = await self._check_daily_limit(user, value, self.prices.coin_id_for(network, token))

            tx_dict, fee = await gateway.build_transfer(wallet.address, to_address, amount_base_units, token)
            await self._check_fee_covered(gateway, wallet, amount_base_units if not token else 0, fee)

            signed = self.signing.sign_transaction(wallet, tx_dict)
            try:
                tx_hash = await gateway.broadcast(signed.raw_transaction)
            except BroadcastError:
                logger.error(
                    f"[{correlation_id}] Broadcast failed for wallet {wallet.id} on {network.value} "
                    f"(nonce {tx_dict['nonce']}); no transaction recorded"
                )
                raise

            tx = Transaction(
                user_id=user.id,
                wallet_id=wallet.id,
                network=network,
                direction=TxDirection.SEND,
                status=TxStatus.PENDING,
                from_address=wallet.address,
                to_address=to_address.lower(),
                asset_symbol=asset_symbol,
                token_address=token.address.lower() if token else None,
                token_decimals=decimals,
                amount=from_base_units(amount_base_units, decimals),
                amount_base_units=str(amount_base_units),
                usd_value=usd_value,
                tx_hash=tx_hash.lower(),
                nonce=tx_dict["nonce"],
                gas_limit=str(fee.gas_limit),
                gas_price=str(fee.max_fee_per_gas or fee.gas_price),
            )
            self.db.add(tx)
            try:
                await self.db.commit()
            except SQLAlchemyError:
                logger.error(
                    f"[{correlation_id}] Broadcast {tx_hash} from wallet {wallet.id} on {network.value} "
                    f"could not be recorded",
                    exc_info=True,
                )
                raise

        logger.info(
            f"[{correlation_id}] Broadcast {tx.amount} {asset_symbol} from {wallet.address} "
            f"to {tx.to_address} on {network.value}: {tx.tx_hash}"
        )
        return SendResult(tx_hash=tx.tx_hash, status=tx.status, transaction=tx)

    async def quote(
        self,
        user: User,
        wallet_id: Optional[str],
        to_address: str,
        amount: str,
        network: str,
        token_address: Optional[str] = None,
    ) -> TransferQuote:
        """Fee estimate for a prospective send, without signing anything."""
        network = parse_network(network)
        gateway = self.chains.get(network)
        wallet = await self._load_wallet(user, wallet_id, network)
        if not is_valid_address(to_address):
            raise InvalidAddressError(f"Invalid recipient address {to_address!r}")

        token = self._resolve_token(gateway, token_address)
        value = parse_amount(amount)
        decimals = token.decimals if token else gateway.config.native_decimals

        _, fee = await gateway.build_transfer(wallet.address, to_address, to_base_units(value, decimals), token)
        fee_native = from_base_units(fee.max_cost, gateway.config.native_decimals)
        fee_usd = await self.prices.to_fiat(Decimal(fee_native), gateway.config.coin_id)

        return TransferQuote(
            network=network.value,
            asset_symbol=token.symbol if token else gateway.config.native_symbol,
            amount=str(value),
            gas_limit=fee.gas_limit,
            gas_price=fee.gas_price,
            max_fee_per_gas=fee.max_fee_per_gas,
            max_priority_fee_per_gas=fee.max_priority_fee_per_gas,
            fee=fee_native,
            fee_usd=fee_usd,
        )

    async def _load_wallet(self, user: User, wallet_id: Optional[str], network) -> Wallet:
        wallets = WalletService(self.db, self.signing.key_vault)
        if wallet_id:
            wallet = await wallets.get_user_wallet(user.id, wallet_id)
        else:
            wallet = await wallets.get_active_wallet(user.id, network)
            if not wallet:
                raise WalletNotFoundError(f"No {network.value} wallet for user")

        if wallet.status != WalletStatus.ACTIVE:
            raise WalletNotFoundError(f"Wallet {wallet.id} is not active")
        if wallet.network != network:
            raise ValidationFailedError(
                f"Wallet {wallet.id} is on {wallet.network.value}, not {network.value}"
            )
        return wallet

    @staticmethod
    def _resolve_token(gateway: ChainGateway, token_address: Optional[str]) -> Optional[TokenConfig]:
        if not token_address:
            return None
        if not is_valid_address(token_address):
            raise InvalidAddressError(f"Invalid token address {token_address!r}")
        token = gateway.config.token_by_address(token_address)
        if token is None:
            raise UnsupportedTokenError(
                f"Token {token_address} is not supported on {gateway.network.value}"
            )
        return token

    async def _check_daily_limit(self, user: User, amount: Decimal, coin_id: str) -> Optional[Decimal]:
        """Value the send in USD and enforce the user's daily limit. Returns the USD value."""
        usd_value = await self.prices.to_fiat(amount, coin_id, "usd")
        limit = user.daily_limit_usd
        if limit is None:
            return usd_value
        if usd_value is None:
            logger.warning(f"No {coin_id} price available; daily limit not enforced for user {user.id}")
            return None

        now = self.clock()
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        spent = await self.transactions.spent_usd_since(user.id, day_start)
        if spent + usd_value > Decimal(str(limit)):
            raise DailyLimitExceededError(
                "Daily transaction limit exceeded",
                {"limit_usd": str(limit), "spent_today_usd": str(spent), "requested_usd": str(usd_value)},
            )
        return usd_value

    @staticmethod
    async def _check_fee_covered(
        gateway: ChainGateway,
        wallet: Wallet,
        native_amount: int,
        fee: FeeEstimate,
    ) -> None:
        """The native balance must pay for the fee on top of any native amount sent."""
        balance = await gateway.get_native_balance(wallet.address)
        required = native_amount + fee.max_cost
        if balance.balance_base_units < required:
            raise InsufficientBalanceError(
                "Insufficient balance to cover the network fee",
                {
                    "available": balance.balance,
                    "required": from_base_units(required, gateway.config.native_decimals),
                    "asset": gateway.config.native_symbol,
                },
            )
