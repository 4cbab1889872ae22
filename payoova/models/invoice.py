"""Invoice (payment request) model."""
import enum
from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import String, Enum, DateTime, Text, ForeignKey, Integer, Index
from sqlalchemy.orm import Mapped, mapped_column

from payoova.database import Base
from payoova.models.wallet import Network


class InvoiceStatus(str, enum.Enum):
    """Invoice lifecycle."""
    PENDING = "pending"
    PAID = "paid"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


INVOICE_TRANSITIONS = {
    InvoiceStatus.PENDING: [InvoiceStatus.PAID, InvoiceStatus.EXPIRED, InvoiceStatus.CANCELLED],
    InvoiceStatus.PAID: [],
    InvoiceStatus.EXPIRED: [],
    InvoiceStatus.CANCELLED: [],
}


class Invoice(Base):
    """Expected inbound payment to one of a user's wallets."""
    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    wallet_id: Mapped[str] = mapped_column(String(36), ForeignKey("wallets.id"), nullable=False)

    network: Mapped[Network] = mapped_column(Enum(Network), nullable=False)
    token: Mapped[str] = mapped_column(String(16), nullable=False)
    token_address: Mapped[Optional[str]] = mapped_column(String(42), nullable=True)
    token_decimals: Mapped[int] = mapped_column(Integer, default=18)
    amount: Mapped[str] = mapped_column(String(80), nullable=False)
    address: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    memo: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[InvoiceStatus] = mapped_column(Enum(InvoiceStatus), default=InvoiceStatus.PENDING)
    tx_hash: Mapped[Optional[str]] = mapped_column(String(66), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_invoices_status_expires", "status", "expires_at"),
    )

    def can_transition_to(self, new_status: InvoiceStatus) -> bool:
        """Check if transition to new status is valid."""
        return new_status in INVOICE_TRANSITIONS.get(self.status, [])

    def is_overdue(self, now: datetime) -> bool:
        return self.status == InvoiceStatus.PENDING and now > self.expires_at
