"""User accounts: first-sight creation, settings and soft deletion."""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from payoova.exceptions import ValidationFailedError
from payoova.models.user import AuthProvider, User
from payoova.services.networks import parse_network
from payoova.services.payments import InvoiceService
from payoova.services.wallet import WalletService

logger = logging.getLogger(__name__)

SUPPORTED_CURRENCIES = {"USD", "EUR", "GBP"}


class UserService:
    """Service for user lifecycle."""

    def __init__(
        self,
        db: AsyncSession,
        wallets: Optional[WalletService] = None,
        default_network: str = "ethereum",
        default_daily_limit_usd: Optional[Decimal] = None,
    ):
        self.db = db
        self.wallets = wallets
        self.default_network = default_network
        self.default_daily_limit_usd = default_daily_limit_usd

    async def get_by_identity(self, provider: AuthProvider, subject: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(User.auth_provider == provider, User.auth_subject == subject)
        )
        return result.scalar_one_or_none()

    async def get_or_create_from_identity(
        self,
        provider: AuthProvider,
        subject: str,
        email: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> User:
        """
        Return the user behind a verified identity, creating it on first sight.

        New users get a wallet on the default network when a wallet service
        is available. Deactivated users are returned as-is for the caller to
        reject.
        """
        user = await self.get_by_identity(provider, subject)
        if user:
            return user

        user = User(
            email=(email or f"{subject}@{provider.value.lower()}.invalid").lower(),
            display_name=display_name,
            auth_provider=provider,
            auth_subject=subject,
            default_network=self.default_network,
            daily_limit_usd=self.default_daily_limit_usd,
            is_active=True,
        )
        self.db.add(user)
        try:
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            user = await self.get_by_identity(provider, subject)
            if user:
                return user
            raise ValidationFailedError("Account could not be created for this identity") from e

        logger.info(f"Created user {user.id} for {provider.value} subject {subject}")

        if self.wallets:
            await self.wallets.generate_wallet(user.id, self.default_network)
        return user

    async def update_settings(self, user: User, changes: Dict[str, Any]) -> User:
        """Apply preference and security changes. Unknown keys are ignored."""
        if "default_network" in changes and changes["default_network"] is not None:
            user.default_network = parse_network(changes["default_network"]).value
        if "currency" in changes and changes["currency"] is not None:
            currency = str(changes["currency"]).upper()
            if currency not in SUPPORTED_CURRENCIES:
                raise ValidationFailedError(f"Unsupported currency {currency}")
            user.currency = currency
        if "daily_limit_usd" in changes:
            limit = changes["daily_limit_usd"]
            if limit is not None and Decimal(str(limit)) < 0:
                raise ValidationFailedError("daily_limit_usd must not be negative")
            user.daily_limit_usd = Decimal(str(limit)) if limit is not None else None
        if "display_name" in changes:
            user.display_name = changes["display_name"]

        user.updated_at = datetime.utcnow()
        await self.db.flush()
        logger.info(f"Updated settings for user {user.id}: {', '.join(sorted(changes))}")
        return user

    async def deactivate(self, user: User, invoices: Optional[InvoiceService] = None) -> User:
        """
        Soft-delete: flag inactive and anonymize the email.

        Wallets and transactions are kept so pending transfers still resolve.
        Pending invoices are cancelled.
        """
        if not user.is_active:
            return user

        now = datetime.utcnow()
        user.is_active = False
        user.deleted_at = now
        user.email = f"deleted-{user.id}@deleted.invalid"
        user.updated_at = now

        cancelled = 0
        if invoices:
            cancelled = await invoices.cancel_pending_for_user(user.id)
        await self.db.flush()

        logger.info(f"Deactivated user {user.id}; cancelled {cancelled} pending invoices")
        return user
