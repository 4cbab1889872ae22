"""User model."""
import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, TYPE_CHECKING
from uuid import uuid4

from sqlalchemy import String, Enum, DateTime, Boolean, Numeric, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payoova.database import Base

if TYPE_CHECKING:
    from payoova.models.wallet import Wallet


class AuthProvider(str, enum.Enum):
    """External identity provider that vouched for the user."""
    JWT = "JWT"
    AUTH0 = "AUTH0"
    FIREBASE = "FIREBASE"


class User(Base):
    """Platform user; owns wallets, transactions and invoices."""
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    auth_provider: Mapped[AuthProvider] = mapped_column(Enum(AuthProvider), nullable=False)
    auth_subject: Mapped[str] = mapped_column(String(255), nullable=False)

    # Preferences
    default_network: Mapped[str] = mapped_column(String(32), default="ethereum")
    currency: Mapped[str] = mapped_column(String(8), default="USD")

    # Security settings; NULL means no daily limit
    daily_limit_usd: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    wallets: Mapped[List["Wallet"]] = relationship("Wallet", back_populates="user", lazy="selectin")

    __table_args__ = (
        Index("ix_users_provider_subject", "auth_provider", "auth_subject", unique=True),
    )
