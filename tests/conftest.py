"""Pytest configuration and fixtures."""
import os

# Settings are read at import time; point them at test values first
os.environ["KEY_VAULT_SECRET"] = "ab" * 32
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["AUTH_JWT_SECRET"] = "test-jwt-secret"
os.environ["MONITOR_ENABLED"] = "false"
os.environ["ENVIRONMENT"] = "test"
os.environ["ETHEREUM_RPC_URL"] = "http://node.invalid"

from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from fakes import FakeClock, FakePriceSource, make_registry, make_token
from payoova.database import Base, get_db
from payoova.models.user import AuthProvider, User
from payoova.models.wallet import Network
from payoova.services.key_vault import KeyVaultService
from payoova.services.notifications import LoggingNotifier
from payoova.services.orchestrator import WalletLocks
from payoova.services.price import PriceCache, PriceService

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create test database engine; one shared connection so every session sees the same data."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_maker() as session:
        yield session


@pytest.fixture
def key_vault() -> KeyVaultService:
    return KeyVaultService.from_secret(bytes(range(32)))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def price_source() -> FakePriceSource:
    return FakePriceSource({
        "ethereum": Decimal("2000"),
        "matic-network": Decimal("0.5"),
        "binancecoin": Decimal("300"),
        "tether": Decimal("1"),
        "usd-coin": Decimal("1"),
        "chainlink": Decimal("15"),
    })


@pytest.fixture
def prices(price_source, clock) -> PriceService:
    return PriceService(price_source, PriceCache(60, clock=clock))


@pytest.fixture
def chains():
    return make_registry(Network.SEPOLIA, Network.ETHEREUM)


@pytest_asyncio.fixture(scope="function")
async def test_user(db_session: AsyncSession) -> User:
    """Create a test user without a daily limit."""
    user = User(
        email="alice@example.com",
        auth_provider=AuthProvider.JWT,
        auth_subject="alice",
        default_network="ethereum",
        daily_limit_usd=None,
        is_active=True,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture(scope="function")
async def client(session_maker, key_vault, chains, prices) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client authenticated as a first-time user."""
    from payoova.main import app

    # Override database dependency
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.chains = chains
    app.state.key_vault = key_vault
    app.state.prices = prices
    app.state.wallet_locks = WalletLocks()
    app.state.notifier = LoggingNotifier()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        client.headers["Authorization"] = f"Bearer {make_token('bob', 'bob@example.com')}"
        yield client

    app.dependency_overrides.clear()
