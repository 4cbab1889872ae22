"""Transaction records: history, stats and guarded status transitions."""
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from payoova.exceptions import TransactionNotFoundError
from payoova.models.transaction import Transaction, TxDirection, TxStatus
from payoova.models.wallet import Network
from payoova.services.chain import Receipt
from payoova.services.notifications import TransactionEvent

logger = logging.getLogger(__name__)

TIMEOUT_REASON = "Transaction timeout - not found on chain"
REVERTED_REASON = "Transaction reverted on-chain"


def transaction_event(tx: Transaction) -> TransactionEvent:
    return TransactionEvent(
        user_id=tx.user_id,
        transaction_id=tx.id,
        tx_hash=tx.tx_hash,
        network=tx.network.value,
        direction=tx.direction.value,
        status=tx.status.value,
        amount=tx.amount,
        asset_symbol=tx.asset_symbol,
        error_message=tx.error_message,
    )


class TransactionService:
    """Reads and status updates for Transaction rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_hash(self, tx_hash: str, user_id: Optional[str] = None) -> Transaction:
        query = select(Transaction).where(Transaction.tx_hash == tx_hash.lower())
        if user_id:
            query = query.where(Transaction.user_id == user_id)
        result = await self.db.execute(query.order_by(Transaction.created_at))
        tx = result.scalars().first()
        if not tx:
            raise TransactionNotFoundError(f"Transaction {tx_hash} not found")
        return tx

    async def hash_exists(self, network: Network, tx_hash: str) -> bool:
        result = await self.db.execute(
            select(Transaction.id).where(
                Transaction.network == network,
                Transaction.tx_hash == tx_hash.lower(),
            )
        )
        return result.first() is not None

    async def list_for_user(
        self,
        user_id: str,
        status: Optional[TxStatus] = None,
        direction: Optional[TxDirection] = None,
        network: Optional[Network] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Transaction], int]:
        """Newest first, with the total count for paging."""
        filters = [Transaction.user_id == user_id]
        if status:
            filters.append(Transaction.status == status)
        if direction:
            filters.append(Transaction.direction == direction)
        if network:
            filters.append(Transaction.network == network)

        total = await self.db.scalar(select(func.count()).select_from(Transaction).where(*filters))
        result = await self.db.execute(
            select(Transaction)
            .where(*filters)
            .order_by(Transaction.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), int(total or 0)

    async def spent_usd_since(self, user_id: str, since: datetime) -> Decimal:
        """USD value of outgoing transfers since ``since`` that did not fail."""
        total = await self.db.scalar(
            select(func.coalesce(func.sum(Transaction.usd_value), 0)).where(
                Transaction.user_id == user_id,
                Transaction.direction == TxDirection.SEND,
                Transaction.status.in_([TxStatus.PENDING, TxStatus.CONFIRMED]),
                Transaction.created_at >= since,
            )
        )
        return Decimal(str(total or 0))

    async def stats(self, user_id: str, days: int = 30, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Counts by status and network plus USD totals over the last ``days``."""
        since = (now or datetime.utcnow()) - timedelta(days=days)
        result = await self.db.execute(
            select(Transaction.status, Transaction.network, Transaction.direction, Transaction.usd_value)
            .where(Transaction.user_id == user_id, Transaction.created_at >= since)
        )

        by_status: Dict[str, int] = {}
        by_network: Dict[str, int] = {}
        sent_usd = Decimal("0")
        received_usd = Decimal("0")
        total = 0
        for status, network, direction, usd_value in result.all():
            total += 1
            by_status[status.value] = by_status.get(status.value, 0) + 1
            by_network[network.value] = by_network.get(network.value, 0) + 1
            if usd_value is not None and status != TxStatus.FAILED:
                if direction == TxDirection.SEND:
                    sent_usd += Decimal(str(usd_value))
                else:
                    received_usd += Decimal(str(usd_value))

        return {
            "days": days,
            "total": total,
            "by_status": by_status,
            "by_network": by_network,
            "sent_usd": sent_usd,
            "received_usd": received_usd,
        }

    async def transition(self, tx: Transaction, new_status: TxStatus, **values: Any) -> bool:
        """Move ``tx`` to ``new_status`` only if nobody resolved it first.

        The UPDATE is conditioned on the status the caller saw, so two
        concurrent writers cannot both win and a row never moves backwards.
        """
        if not tx.can_transition_to(new_status):
            logger.warning(f"Invalid transition for tx {tx.id}: {tx.status.value} -> {new_status.value}")
            return False

        result = await self.db.execute(
            update(Transaction)
            .where(Transaction.id == tx.id, Transaction.status == tx.status)
            .values(status=new_status, updated_at=datetime.utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(tx)

        if result.rowcount != 1:
            logger.info(f"Tx {tx.id} already resolved as {tx.status.value}, skipping {new_status.value}")
            return False

        logger.info(f"Tx {tx.id} ({tx.tx_hash}) -> {new_status.value}")
        return True

    async def apply_receipt(
        self,
        tx: Transaction,
        receipt: Optional[Receipt],
        now: datetime,
        stale_after: timedelta,
        confirmation_blocks: int = 1,
    ) -> Optional[TxStatus]:
        """Reconcile a pending transaction with what the chain reports.

        Returns the new status when the transaction was resolved, else None.
        """
        if tx.status != TxStatus.PENDING:
            return None

        if receipt is None:
            if now - tx.created_at > stale_after:
                if await self.transition(tx, TxStatus.FAILED, error_message=TIMEOUT_REASON):
                    return TxStatus.FAILED
            return None

        chain_values = {
            "block_number": receipt.block_number,
            "gas_used": str(receipt.gas_used) if receipt.gas_used is not None else None,
            "confirmations": receipt.confirmations,
        }

        if not receipt.succeeded:
            if await self.transition(tx, TxStatus.FAILED, error_message=REVERTED_REASON, **chain_values):
                return TxStatus.FAILED
            return None

        if receipt.confirmations >= confirmation_blocks:
            if await self.transition(tx, TxStatus.CONFIRMED, confirmed_at=now, **chain_values):
                return TxStatus.CONFIRMED
            return None

        # Mined but not deep enough yet
        tx.block_number = receipt.block_number
        tx.gas_used = chain_values["gas_used"]
        tx.confirmations = receipt.confirmations
        await self.db.flush()
        return None
