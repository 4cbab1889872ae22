"""Transaction model and status state machine."""
import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from sqlalchemy import String, Enum, DateTime, Numeric, Text, ForeignKey, Integer, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from payoova.database import Base
from payoova.models.wallet import Network


class TxStatus(str, enum.Enum):
    """On-chain transfer lifecycle."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TxDirection(str, enum.Enum):
    """Transfer direction relative to the owning wallet."""
    SEND = "send"
    RECEIVE = "receive"


# Forward-only: terminal states have no exits
VALID_TRANSITIONS = {
    TxStatus.PENDING: [TxStatus.CONFIRMED, TxStatus.FAILED, TxStatus.CANCELLED],
    TxStatus.CONFIRMED: [],
    TxStatus.FAILED: [],
    TxStatus.CANCELLED: [],
}


class Transaction(Base):
    """One on-chain transfer, outgoing or incoming."""
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    wallet_id: Mapped[str] = mapped_column(String(36), ForeignKey("wallets.id"), nullable=False, index=True)
    invoice_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("invoices.id"), nullable=True)

    network: Mapped[Network] = mapped_column(Enum(Network), nullable=False)
    direction: Mapped[TxDirection] = mapped_column(Enum(TxDirection), nullable=False)
    status: Mapped[TxStatus] = mapped_column(Enum(TxStatus), default=TxStatus.PENDING, index=True)

    from_address: Mapped[str] = mapped_column(String(42), nullable=False)
    to_address: Mapped[str] = mapped_column(String(42), nullable=False)

    # Asset; token_address is NULL for the native currency
    asset_symbol: Mapped[str] = mapped_column(String(16), nullable=False)
    token_address: Mapped[Optional[str]] = mapped_column(String(42), nullable=True)
    token_decimals: Mapped[int] = mapped_column(Integer, default=18)

    # Amounts as decimal strings, never floats
    amount: Mapped[str] = mapped_column(String(80), nullable=False)
    amount_base_units: Mapped[str] = mapped_column(String(80), nullable=False)
    usd_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(24, 2), nullable=True)

    # Chain data
    tx_hash: Mapped[Optional[str]] = mapped_column(String(66), nullable=True, index=True)
    nonce: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    gas_limit: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    gas_price: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    gas_used: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    block_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    confirmations: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("network", "tx_hash", name="uq_transactions_network_hash"),
        Index("ix_transactions_status_created", "status", "created_at"),
        Index("ix_transactions_user_created", "user_id", "created_at"),
    )

    def can_transition_to(self, new_status: TxStatus) -> bool:
        """Check if transition to new status is valid."""
        return new_status in VALID_TRANSITIONS.get(self.status, [])
