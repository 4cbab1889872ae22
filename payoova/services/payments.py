"""Invoices: payment requests to a user's wallet, with expiry and payment matching."""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from payoova.exceptions import (
    InvalidStateError,
    InvoiceNotFoundError,
    UnsupportedTokenError,
    ValidationFailedError,
)
from payoova.models.invoice import Invoice, InvoiceStatus
from payoova.models.transaction import Transaction, TxDirection, TxStatus
from payoova.models.wallet import Network, Wallet
from payoova.services.amounts import format_decimal, parse_amount, to_base_units
from payoova.services.chain import IncomingPayment
from payoova.services.networks import NETWORKS, TokenConfig, parse_network
from payoova.services.qr import render_qr_data_url
from payoova.services.transactions import TransactionService

logger = logging.getLogger(__name__)

MAX_EXPIRY_MINUTES = 60 * 24 * 30


@dataclass
class PaymentLink:
    invoice: Invoice
    pay_url: str
    qr_png_base64: str


class InvoiceService:
    """Creates invoices and moves them through pending -> paid | expired | cancelled."""

    def __init__(
        self,
        db: AsyncSession,
        frontend_url: str = "",
        clock: Callable[[], datetime] = datetime.utcnow,
        default_expiry_minutes: int = 60,
    ):
        self.db = db
        self.frontend_url = frontend_url.rstrip("/")
        self.clock = clock
        self.default_expiry_minutes = default_expiry_minutes

    def pay_url(self, invoice_id: str) -> str:
        return f"{self.frontend_url}/pay/{invoice_id}"

    async def create_invoice(
        self,
        user_id: str,
        wallet: Wallet,
        chain: str,
        token: str,
        amount: str,
        memo: Optional[str] = None,
        expires_in_minutes: Optional[int] = None,
    ) -> PaymentLink:
        network = parse_network(chain)
        if wallet.network != network:
            raise ValidationFailedError(f"Wallet {wallet.id} is not on {network.value}")

        token_config = self._resolve_token(network, token)
        config = NETWORKS[network]
        decimals = token_config.decimals if token_config else config.native_decimals
        value = parse_amount(amount)
        # Rejects amounts finer than the asset allows
        to_base_units(value, decimals)

        minutes = expires_in_minutes or self.default_expiry_minutes
        if minutes <= 0 or minutes > MAX_EXPIRY_MINUTES:
            raise ValidationFailedError(
                f"expires_in_minutes must be between 1 and {MAX_EXPIRY_MINUTES}"
            )

        now = self.clock()
        invoice = Invoice(
            user_id=user_id,
            wallet_id=wallet.id,
            network=network,
            token=token_config.symbol if token_config else config.native_symbol,
            token_address=token_config.address.lower() if token_config else None,
            token_decimals=decimals,
            amount=format_decimal(value),
            address=wallet.address,
            memo=memo,
            status=InvoiceStatus.PENDING,
            expires_at=now + timedelta(minutes=minutes),
            created_at=now,
            updated_at=now,
        )
        self.db.add(invoice)
        await self.db.flush()

        pay_url = self.pay_url(invoice.id)
        logger.info(
            f"Created invoice {invoice.id} for {invoice.amount} {invoice.token} on {network.value} "
            f"to {invoice.address}, expires {invoice.expires_at.isoformat()}"
        )
        return PaymentLink(invoice=invoice, pay_url=pay_url, qr_png_base64=render_qr_data_url(pay_url))

    @staticmethod
    def _resolve_token(network: Network, token: Optional[str]) -> Optional[TokenConfig]:
        """None for the native currency, else the allow-listed token by symbol or address."""
        config = NETWORKS[network]
        if not token or config.is_native_symbol(token):
            return None
        found = config.token_by_address(token) if token.startswith("0x") else config.token_by_symbol(token)
        if found is None:
            raise UnsupportedTokenError(f"Token {token} is not supported on {network.value}")
        return found

    async def get_invoice(self, invoice_id: str, user_id: Optional[str] = None) -> Invoice:
        query = select(Invoice).where(Invoice.id == invoice_id)
        if user_id:
            query = query.where(Invoice.user_id == user_id)
        invoice = (await self.db.execute(query)).scalar_one_or_none()
        if not invoice:
            raise InvoiceNotFoundError(f"Invoice {invoice_id} not found")
        return invoice

    async def get_status(self, invoice_id: str) -> Invoice:
        """Current invoice; a pending invoice past its expiry is expired on read."""
        invoice = await self.get_invoice(invoice_id)
        if invoice.is_overdue(self.clock()):
            await self._transition(invoice, InvoiceStatus.EXPIRED)
        return invoice

    async def cancel(self, invoice_id: str, user_id: str) -> Invoice:
        invoice = await self.get_invoice(invoice_id, user_id)
        if invoice.is_overdue(self.clock()):
            await self._transition(invoice, InvoiceStatus.EXPIRED)
        if not await self._transition(invoice, InvoiceStatus.CANCELLED):
            raise InvalidStateError(
                f"Invoice {invoice_id} is {invoice.status.value} and cannot be cancelled"
            )
        return invoice

    async def mark_paid(self, invoice: Invoice, payment: IncomingPayment) -> Optional[Transaction]:
        """
        Record ``payment`` against ``invoice``.

        Returns the receive-side Transaction, or None when nothing new was
        recorded: the invoice was already resolved, the hash pays another
        invoice, or the hash is already recorded as a transaction. Check
        ``invoice.status`` to tell whether this call paid the invoice.
        """
        claimed = await self.db.execute(
            select(Invoice.id).where(
                Invoice.network == invoice.network,
                Invoice.tx_hash == payment.tx_hash,
                Invoice.id != invoice.id,
            )
        )
        if claimed.first() is not None:
            logger.info(f"Hash {payment.tx_hash} already pays another invoice; not applied to {invoice.id}")
            return None

        now = self.clock()
        if not await self._transition(invoice, InvoiceStatus.PAID, tx_hash=payment.tx_hash, paid_at=now):
            return None

        if await TransactionService(self.db).hash_exists(invoice.network, payment.tx_hash):
            logger.info(f"Hash {payment.tx_hash} already recorded; invoice {invoice.id} linked without new row")
            return None

        tx = Transaction(
            user_id=invoice.user_id,
            wallet_id=invoice.wallet_id,
            invoice_id=invoice.id,
            network=invoice.network,
            direction=TxDirection.RECEIVE,
            status=TxStatus.CONFIRMED,
            from_address=payment.from_address,
            to_address=payment.to_address,
            asset_symbol=invoice.token,
            token_address=invoice.token_address,
            token_decimals=invoice.token_decimals,
            amount=payment.amount,
            amount_base_units=str(payment.amount_base_units),
            tx_hash=payment.tx_hash,
            block_number=payment.block_number,
            confirmations=1,
            created_at=now,
            updated_at=now,
            confirmed_at=now,
        )
        self.db.add(tx)
        await self.db.flush()
        return tx

    async def expire_overdue(self) -> int:
        """Expire pending invoices past their expiry. Returns how many were expired."""
        now = self.clock()
        result = await self.db.execute(
            update(Invoice)
            .where(Invoice.status == InvoiceStatus.PENDING, Invoice.expires_at < now)
            .values(status=InvoiceStatus.EXPIRED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(f"Expired {result.rowcount} overdue invoices")
        return result.rowcount or 0

    async def pending_batch(self, limit: int = 20) -> List[Invoice]:
        """Live pending invoices, oldest first."""
        result = await self.db.execute(
            select(Invoice)
            .where(Invoice.status == InvoiceStatus.PENDING, Invoice.expires_at >= self.clock())
            .order_by(Invoice.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def paid_hashes_for_address(self, network: Network, address: str) -> List[str]:
        """Hashes already credited to invoices on ``address``."""
        result = await self.db.execute(
            select(Invoice.tx_hash).where(
                Invoice.network == network,
                Invoice.address == address.lower(),
                Invoice.status == InvoiceStatus.PAID,
            )
        )
        return [h for h in result.scalars().all() if h]

    async def list_for_user(
        self,
        user_id: str,
        status: Optional[InvoiceStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Invoice], int]:
        filters = [Invoice.user_id == user_id]
        if status:
            filters.append(Invoice.status == status)
        total = await self.db.scalar(select(func.count()).select_from(Invoice).where(*filters))
        result = await self.db.execute(
            select(Invoice).where(*filters).order_by(Invoice.created_at.desc()).limit(limit).offset(offset)
        )
        return list(result.scalars().all()), int(total or 0)

    async def cancel_pending_for_user(self, user_id: str) -> int:
        now = self.clock()
        result = await self.db.execute(
            update(Invoice)
            .where(Invoice.user_id == user_id, Invoice.status == InvoiceStatus.PENDING)
            .values(status=InvoiceStatus.CANCELLED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def _transition(self, invoice: Invoice, new_status: InvoiceStatus, **values: Any) -> bool:
        """Conditional status write; only one caller can move a pending invoice."""
        if not invoice.can_transition_to(new_status):
            return False

        result = await self.db.execute(
            update(Invoice)
            .where(Invoice.id == invoice.id, Invoice.status == invoice.status)
            .values(status=new_status, updated_at=self.clock(), **values)
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(invoice)

        if result.rowcount != 1:
            logger.info(f"Invoice {invoice.id} already {invoice.status.value}, skipping {new_status.value}")
            return False

        logger.info(f"Invoice {invoice.id} -> {new_status.value}")
        return True
