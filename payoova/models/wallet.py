"""Wallet models."""
import enum
from datetime import datetime
from typing import Optional, TYPE_CHECKING
from uuid import uuid4

from sqlalchemy import String, Enum, DateTime, ForeignKey, Index, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payoova.database import Base

if TYPE_CHECKING:
    from payoova.models.user import User


class Network(str, enum.Enum):
    """Supported EVM networks."""
    ETHEREUM = "ethereum"
    POLYGON = "polygon"
    BSC = "bsc"
    SEPOLIA = "sepolia"
    MUMBAI = "mumbai"


class WalletStatus(str, enum.Enum):
    """Wallet status."""
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


class Wallet(Base):
    """Custodial wallet: public address plus sealed private key."""
    __tablename__ = "wallets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    network: Mapped[Network] = mapped_column(Enum(Network), nullable=False)
    address: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    status: Mapped[WalletStatus] = mapped_column(Enum(WalletStatus), default=WalletStatus.ACTIVE)

    # Sealed key material; never exposed through any schema
    encrypted_private_key: Mapped[str] = mapped_column(Text, nullable=False)
    key_algorithm: Mapped[str] = mapped_column(String(32), nullable=False)

    # Native balance as last seen by the monitor
    cached_balance: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    balance_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user: Mapped["User"] = relationship("User", back_populates="wallets")

    __table_args__ = (
        UniqueConstraint("address", "network", name="uq_wallets_address_network"),
        Index(
            "uq_wallets_user_network_active",
            "user_id",
            "network",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
    )
