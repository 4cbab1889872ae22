"""API dependencies for dependency injection."""
from typing import Optional
from uuid import uuid4

from fastapi import Depends, HTTPException, Header, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from payoova.config import Settings, get_settings
from payoova.database import get_db
from payoova.models.user import AuthProvider, User
from payoova.services.auth import AuthService
from payoova.services.chain import ChainRegistry
from payoova.services.key_vault import KeyVaultService
from payoova.services.notifications import LoggingNotifier, Notifier
from payoova.services.orchestrator import TxOrchestrator, WalletLocks
from payoova.services.payments import InvoiceService
from payoova.services.price import PriceService
from payoova.services.signing import SigningService
from payoova.services.transactions import TransactionService
from payoova.services.users import UserService
from payoova.services.wallet import WalletService

security = HTTPBearer()


def get_correlation_id(
    request: Request,
    x_correlation_id: Optional[str] = Header(None, alias="X-Correlation-ID")
) -> str:
    """Get or generate correlation ID for request tracing."""
    return x_correlation_id or getattr(request.state, "correlation_id", None) or str(uuid4())


# Process-wide components, built once in the application lifespan

def get_chains(request: Request) -> ChainRegistry:
    return request.app.state.chains


def get_key_vault(request: Request) -> KeyVaultService:
    return request.app.state.key_vault


def get_price_service(request: Request) -> PriceService:
    return request.app.state.prices


def get_wallet_locks(request: Request) -> WalletLocks:
    return request.app.state.wallet_locks


def get_notifier(request: Request) -> Notifier:
    return getattr(request.app.state, "notifier", None) or LoggingNotifier()


# Service dependencies

async def get_auth_service(settings: Settings = Depends(get_settings)) -> AuthService:
    """Get auth service instance."""
    return AuthService(settings)


async def get_wallet_service(
    db: AsyncSession = Depends(get_db),
    key_vault: KeyVaultService = Depends(get_key_vault),
    notifier: Notifier = Depends(get_notifier),
) -> WalletService:
    """Get wallet service instance."""
    return WalletService(db, key_vault, notifier)


async def get_user_service(
    db: AsyncSession = Depends(get_db),
    wallets: WalletService = Depends(get_wallet_service),
    settings: Settings = Depends(get_settings),
) -> UserService:
    """Get user service instance."""
    return UserService(
        db,
        wallets,
        default_network=settings.default_network,
        default_daily_limit_usd=settings.default_daily_limit_usd,
    )


async def get_invoice_service(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> InvoiceService:
    """Get invoice service instance."""
    return InvoiceService(
        db,
        frontend_url=settings.frontend_url,
        default_expiry_minutes=settings.invoice_default_expiry_minutes,
    )


async def get_transaction_service(db: AsyncSession = Depends(get_db)) -> TransactionService:
    """Get transaction service instance."""
    return TransactionService(db)


async def get_orchestrator(
    db: AsyncSession = Depends(get_db),
    chains: ChainRegistry = Depends(get_chains),
    key_vault: KeyVaultService = Depends(get_key_vault),
    prices: PriceService = Depends(get_price_service),
    locks: WalletLocks = Depends(get_wallet_locks),
) -> TxOrchestrator:
    """Get transaction orchestrator instance."""
    return TxOrchestrator(db, chains, SigningService(key_vault), prices, locks)


# Authentication dependencies

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    auth: AuthService = Depends(get_auth_service),
    users: UserService = Depends(get_user_service),
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Get the user behind a verified identity-provider token, creating it on first sight."""
    payload = auth.verify_token(credentials.credentials)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"}
        )

    try:
        provider = AuthProvider(str(payload.get("provider") or settings.auth_default_provider).upper())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown identity provider",
            headers={"WWW-Authenticate": "Bearer"}
        )

    user = await users.get_or_create_from_identity(
        provider,
        str(payload["sub"]),
        email=payload.get("email"),
        display_name=payload.get("name"),
    )
    await db.commit()

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive"
        )

    return user
