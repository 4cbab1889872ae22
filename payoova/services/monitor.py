"""Monitor loop: reconciles pending transactions and invoices with the chain."""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from payoova.config import Settings
from payoova.models.invoice import Invoice, InvoiceStatus
from payoova.models.transaction import Transaction, TxDirection, TxStatus
from payoova.models.wallet import Network, Wallet
from payoova.services.amounts import to_base_units
from payoova.services.chain import ChainRegistry, IncomingPayment, Receipt
from payoova.services.networks import TokenConfig
from payoova.services.notifications import InvoiceEvent, LoggingNotifier, Notifier
from payoova.services.payments import InvoiceService
from payoova.services.scheduler import PeriodicTask
from payoova.services.transactions import TransactionService, transaction_event

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """Outcome of one sweep."""
    transactions_checked: int = 0
    confirmed: int = 0
    failed: int = 0
    invoices_checked: int = 0
    invoices_paid: int = 0
    invoices_expired: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class _PendingTx:
    id: str
    network: Network
    tx_hash: str


@dataclass(frozen=True)
class _PendingInvoice:
    id: str
    network: Network
    address: str
    amount: str
    token: Optional[TokenConfig]
    token_decimals: int
    exclude_hashes: Tuple[str, ...]


class MonitorLoop:
    """
    Background sweep over pending work:
    1. Pending transactions: fetch receipts, confirm, fail reverts and time out stale ones
    2. Pending invoices: expire overdue ones, match inbound payments for the rest

    Items are processed concurrently and independently; one item's failure is
    logged and recorded in the report without affecting the others. Every
    write is conditional on the row still being pending.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker,
        chains: ChainRegistry,
        settings: Settings,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.session_maker = session_maker
        self.chains = chains
        self.settings = settings
        self.notifier = notifier or LoggingNotifier()
        self.clock = clock
        self.stale_after = timedelta(hours=settings.stale_transaction_hours)
        self._semaphore = asyncio.Semaphore(max(1, settings.monitor_concurrency))
        self.task = PeriodicTask("monitor-loop", settings.monitor_interval_seconds, self.run_once)

    @property
    def running(self) -> bool:
        return self.task.running

    def start(self) -> None:
        self.task.start()

    async def stop(self) -> None:
        await self.task.stop()

    async def run_once(self) -> SweepReport:
        """One full sweep."""
        report = SweepReport()
        await self._sweep_transactions(report)
        await self._sweep_invoices(report)

        if report.transactions_checked or report.invoices_checked or report.invoices_expired:
            logger.info(
                f"Monitor sweep: {report.transactions_checked} txs checked "
                f"({report.confirmed} confirmed, {report.failed} failed), "
                f"{report.invoices_checked} invoices checked ({report.invoices_paid} paid, "
                f"{report.invoices_expired} expired), {len(report.errors)} errors"
            )
        return report

    async def _bounded(self, awaitable: Awaitable[Any]) -> Any:
        async with self._semaphore:
            return await awaitable

    # Transactions

    async def _sweep_transactions(self, report: SweepReport) -> None:
        async with self.session_maker() as session:
            result = await session.execute(
                select(Transaction.id, Transaction.network, Transaction.tx_hash)
                .where(Transaction.status == TxStatus.PENDING, Transaction.tx_hash.is_not(None))
                .order_by(Transaction.created_at)
                .limit(self.settings.monitor_batch_size)
            )
            pending = [_PendingTx(*row) for row in result.all()]

        if not pending:
            return

        receipts = await asyncio.gather(
            *(self._bounded(self._fetch_receipt(item)) for item in pending),
            return_exceptions=True,
        )

        for item, outcome in zip(pending, receipts):
            report.transactions_checked += 1
            if isinstance(outcome, Exception):
                logger.warning(f"Receipt check failed for tx {item.id} ({item.tx_hash}) on {item.network.value}: {outcome}")
                report.errors.append(f"tx {item.id}: {outcome}")
                continue
            try:
                await self._apply_receipt(item, outcome, report)
            except Exception as e:
                logger.error(f"Failed to update tx {item.id}: {e}", exc_info=True)
                report.errors.append(f"tx {item.id}: {e}")

    async def _fetch_receipt(self, item: _PendingTx) -> Optional[Receipt]:
        return await self.chains.get(item.network).get_receipt(item.tx_hash)

    async def _apply_receipt(self, item: _PendingTx, receipt: Optional[Receipt], report: SweepReport) -> None:
        async with self.session_maker() as session:
            tx = await session.get(Transaction, item.id)
            if tx is None:
                return
            new_status = await TransactionService(session).apply_receipt(
                tx,
                receipt,
                now=self.clock(),
                stale_after=self.stale_after,
                confirmation_blocks=self.settings.confirmation_blocks,
            )
            event = transaction_event(tx) if new_status else None
            wallet_id, direction = tx.wallet_id, tx.direction
            await session.commit()

        if new_status is None:
            return
        if new_status == TxStatus.CONFIRMED:
            report.confirmed += 1
        else:
            report.failed += 1

        await self.notifier.transaction_status_changed(event)
        if new_status == TxStatus.CONFIRMED and direction == TxDirection.SEND:
            await self._resync_balance(wallet_id)

    async def _resync_balance(self, wallet_id: str) -> None:
        """Refresh a wallet's cached native balance; failures only log."""
        async with self.session_maker() as session:
            wallet = await session.get(Wallet, wallet_id)
            if wallet is None:
                return
            try:
                balance = await self.chains.get(wallet.network).get_native_balance(wallet.address)
            except Exception as e:
                logger.warning(f"Balance resync failed for wallet {wallet_id}: {e}")
                return
            wallet.cached_balance = balance.balance
            wallet.balance_synced_at = self.clock()
            await session.commit()
        logger.info(f"Resynced wallet {wallet_id} balance: {balance.balance}")

    # Invoices

    async def _sweep_invoices(self, report: SweepReport) -> None:
        async with self.session_maker() as session:
            invoices = InvoiceService(session, clock=self.clock)
            report.invoices_expired += await invoices.expire_overdue()
            await session.commit()

            pending = []
            for invoice in await invoices.pending_batch(self.settings.invoice_batch_size):
                if invoice.network not in self.chains:
                    continue
                token = None
                if invoice.token_address:
                    token = self.chains.get(invoice.network).config.token_by_address(invoice.token_address)
                    if token is None:
                        logger.warning(
                            f"Invoice {invoice.id} asks for token {invoice.token_address}, which is no longer "
                            f"supported on {invoice.network.value}; not scanning it"
                        )
                        continue
                paid = await invoices.paid_hashes_for_address(invoice.network, invoice.address)
                pending.append(_PendingInvoice(
                    id=invoice.id,
                    network=invoice.network,
                    address=invoice.address,
                    amount=invoice.amount,
                    token=token,
                    token_decimals=invoice.token_decimals,
                    exclude_hashes=tuple(paid),
                ))

        if not pending:
            return

        matches = await asyncio.gather(
            *(self._bounded(self._find_payment(item)) for item in pending),
            return_exceptions=True,
        )

        for item, outcome in zip(pending, matches):
            report.invoices_checked += 1
            if isinstance(outcome, Exception):
                logger.warning(f"Payment scan failed for invoice {item.id} on {item.network.value}: {outcome}")
                report.errors.append(f"invoice {item.id}: {outcome}")
                continue
            if outcome is None:
                continue
            try:
                await self._apply_payment(item, outcome, report)
            except Exception as e:
                logger.error(f"Failed to record payment for invoice {item.id}: {e}", exc_info=True)
                report.errors.append(f"invoice {item.id}: {e}")

    async def _find_payment(self, item: _PendingInvoice) -> Optional[IncomingPayment]:
        gateway = self.chains.get(item.network)
        return await gateway.find_incoming_payment(
            item.address,
            to_base_units(item.amount, item.token_decimals),
            token=item.token,
            window=self.settings.invoice_scan_blocks,
            exclude_hashes=item.exclude_hashes,
        )

    async def _apply_payment(self, item: _PendingInvoice, payment: IncomingPayment, report: SweepReport) -> None:
        async with self.session_maker() as session:
            invoice = await session.get(Invoice, item.id)
            if invoice is None:
                return
            invoices = InvoiceService(session, clock=self.clock)
            await invoices.mark_paid(invoice, payment)
            paid = invoice.status == InvoiceStatus.PAID and invoice.tx_hash == payment.tx_hash
            event = InvoiceEvent(
                user_id=invoice.user_id,
                invoice_id=invoice.id,
                network=invoice.network.value,
                token=invoice.token,
                amount=invoice.amount,
                tx_hash=payment.tx_hash,
            )
            await session.commit()

        if paid:
            report.invoices_paid += 1
            logger.info(f"Invoice {item.id} paid by {payment.tx_hash}")
            await self.notifier.invoice_paid(event)
