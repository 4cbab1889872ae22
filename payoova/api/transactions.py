"""Transaction history API endpoints."""
import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from payoova.config import Settings, get_settings
from payoova.database import get_db
from payoova.exceptions import ChainError, ValidationFailedError
from payoova.models.transaction import TxDirection, TxStatus
from payoova.models.user import User
from payoova.schemas.common import CorrelatedResponse, PaginatedResponse
from payoova.schemas.transaction import TransactionResponse, TransactionStats
from payoova.services.chain import ChainRegistry
from payoova.services.networks import parse_network
from payoova.services.notifications import Notifier
from payoova.services.transactions import TransactionService, transaction_event
from payoova.api.deps import (
    get_chains,
    get_correlation_id,
    get_current_user,
    get_notifier,
    get_transaction_service,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/transactions", tags=["Transactions"])


def _parse_enum(enum_cls, value: Optional[str], field: str):
    if value is None:
        return None
    try:
        return enum_cls(value.lower())
    except ValueError:
        raise ValidationFailedError(f"Invalid {field} {value!r}")


@router.get("", response_model=PaginatedResponse[TransactionResponse])
async def list_transactions(
    status: Optional[str] = Query(None),
    direction: Optional[str] = Query(None),
    network: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    transactions: TransactionService = Depends(get_transaction_service),
    current_user: User = Depends(get_current_user),
    correlation_id: str = Depends(get_correlation_id),
):
    """The caller's transactions, newest first."""
    items, total = await transactions.list_for_user(
        current_user.id,
        status=_parse_enum(TxStatus, status, "status"),
        direction=_parse_enum(TxDirection, direction, "direction"),
        network=parse_network(network) if network else None,
        limit=limit,
        offset=offset,
    )
    return PaginatedResponse(
        correlation_id=correlation_id,
        items=[TransactionResponse.model_validate(tx) for tx in items],
        total=total,
        limit=limit,
        offset=offset,
        has_more=offset + len(items) < total,
    )


@router.get("/stats", response_model=CorrelatedResponse[TransactionStats])
async def transaction_stats(
    days: int = Query(30, ge=1, le=365),
    transactions: TransactionService = Depends(get_transaction_service),
    current_user: User = Depends(get_current_user),
    correlation_id: str = Depends(get_correlation_id),
):
    """Counts and USD totals over the last ``days``."""
    stats = await transactions.stats(current_user.id, days=days)
    return CorrelatedResponse(correlation_id=correlation_id, data=TransactionStats(**stats))


@router.get("/{tx_hash}", response_model=CorrelatedResponse[TransactionResponse])
async def get_transaction(
    tx_hash: str,
    db: AsyncSession = Depends(get_db),
    transactions: TransactionService = Depends(get_transaction_service),
    chains: ChainRegistry = Depends(get_chains),
    notifier: Notifier = Depends(get_notifier),
    settings: Settings = Depends(get_settings),
    current_user: User = Depends(get_current_user),
    correlation_id: str = Depends(get_correlation_id),
):
    """
    Transaction by hash.

    A pending transaction is refreshed from the chain first; if the chain
    cannot be reached the stored record is returned unchanged.
    """
    tx = await transactions.get_by_hash(tx_hash, current_user.id)

    if tx.status == TxStatus.PENDING and tx.tx_hash and tx.network in chains:
        try:
            receipt = await chains.get(tx.network).get_receipt(tx.tx_hash)
        except ChainError as e:
            logger.warning(f"[{correlation_id}] Lazy refresh of {tx.tx_hash} failed: {e}")
        else:
            new_status = await transactions.apply_receipt(
                tx,
                receipt,
                now=datetime.utcnow(),
                stale_after=timedelta(hours=settings.stale_transaction_hours),
                confirmation_blocks=settings.confirmation_blocks,
            )
            await db.commit()
            if new_status:
                await notifier.transaction_status_changed(transaction_event(tx))

    return CorrelatedResponse(
        correlation_id=correlation_id,
        data=TransactionResponse.model_validate(tx)
    )
