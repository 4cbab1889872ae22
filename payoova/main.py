"""Main FastAPI application."""
import logging
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.openapi.utils import get_openapi

from coingecko_adapter import CoinGeckoClient, CoinGeckoSettings

from payoova.config import get_settings
from payoova.database import async_session_maker, dispose_engine
from payoova.exceptions import PayoovaError
from payoova.api import (
    wallets_router,
    transactions_router,
    payments_router,
    prices_router,
    users_router,
)
from payoova.services.chain import ChainRegistry
from payoova.services.key_vault import KeyVaultService
from payoova.services.monitor import MonitorLoop
from payoova.services.notifications import LoggingNotifier, WebhookNotifier
from payoova.services.orchestrator import WalletLocks
from payoova.services.price import PriceCache, PriceService
from payoova.services.scheduler import PeriodicTask

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting Payoova wallet service...")

    chains = ChainRegistry.from_settings(settings)
    key_vault = KeyVaultService.from_secret(settings.key_vault_secret_bytes)
    notifier = (
        WebhookNotifier(settings.notification_webhook_url)
        if settings.notification_webhook_url
        else LoggingNotifier()
    )

    async with CoinGeckoClient(CoinGeckoSettings()) as price_client:
        prices = PriceService(
            price_client,
            PriceCache(settings.price_cache_ttl_seconds),
            default_currency=settings.price_currency,
        )

        app.state.chains = chains
        app.state.key_vault = key_vault
        app.state.prices = prices
        app.state.wallet_locks = WalletLocks()
        app.state.notifier = notifier

        # Monitor resolves pending transactions and invoices in the background
        monitor = MonitorLoop(async_session_maker, chains, settings, notifier)
        app.state.monitor = monitor
        if settings.monitor_enabled:
            monitor.start()
        else:
            logger.info("Monitor loop disabled")

        price_refresh = PeriodicTask("price-refresh", settings.price_refresh_interval_seconds, prices.refresh)
        price_refresh.start()

        yield

        # Shutdown
        logger.info("Shutting down...")
        await price_refresh.stop()
        await monitor.stop()

    if isinstance(notifier, WebhookNotifier):
        await notifier.aclose()
    await chains.close()
    await dispose_engine()

    logger.info("Shutdown complete")


app = FastAPI(
    title="Payoova - Custodial Wallet API",
    description="""
## Custodial multi-chain wallet backend

### Features
- **Wallets**: One custodial wallet per user and network (Ethereum, Polygon, BSC, testnets)
- **Key custody**: Private keys sealed at rest with AES-256-GCM, opened only to sign
- **Sends**: Validated, per-wallet serialized transfers of native currency and allow-listed tokens
- **Payments**: Invoices with pay links and QR codes, matched against inbound transfers
- **Monitor**: Background reconciliation of pending transactions and invoices
- **Prices**: Cached fiat prices and history

### Security
- Bearer JWTs from the external identity provider
- Per-user daily USD send limit
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    """Echo or generate X-Correlation-ID."""
    correlation_id = request.headers.get("X-Correlation-ID") or str(uuid4())
    request.state.correlation_id = correlation_id
    response = await call_next(request)
    response.headers["X-Correlation-ID"] = correlation_id
    return response


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", None) or request.headers.get("X-Correlation-ID", "unknown")


@app.exception_handler(PayoovaError)
async def payoova_exception_handler(request: Request, exc: PayoovaError):
    """Render domain errors; only validation errors expose their detail."""
    correlation_id = _correlation_id(request)
    if exc.status_code >= 500:
        logger.error(f"[{correlation_id}] {exc.error_code}: {exc}")
        details = None
    else:
        logger.info(f"[{correlation_id}] {exc.error_code}: {exc}")
        details = exc.details

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "correlation_id": correlation_id,
            "error": exc.user_message,
            "error_code": exc.error_code,
            "details": details,
        },
        headers={"X-Correlation-ID": correlation_id},
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "correlation_id": _correlation_id(request),
            "error": "Internal server error",
            "error_code": "INTERNAL_ERROR"
        }
    )


# Include routers
app.include_router(wallets_router)
app.include_router(transactions_router)
app.include_router(payments_router)
app.include_router(prices_router)
app.include_router(users_router)


@app.get("/health")
async def health_check(request: Request):
    """Health check endpoint."""
    monitor = getattr(request.app.state, "monitor", None)
    chains = getattr(request.app.state, "chains", None)
    return {
        "status": "healthy",
        "environment": settings.environment,
        "monitor_running": monitor is not None and monitor.running,
        "networks": [n.value for n in chains.networks] if chains else [],
    }


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "Payoova API",
        "version": "1.0.0",
        "docs": "/docs",
        "openapi": "/openapi.json"
    }


def custom_openapi():
    """Generate custom OpenAPI schema."""
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )

    # Add security schemes
    openapi_schema["components"]["securitySchemes"] = {
        "bearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT"
        }
    }

    # Add global headers
    openapi_schema["components"]["parameters"] = {
        "CorrelationId": {
            "name": "X-Correlation-ID",
            "in": "header",
            "required": False,
            "schema": {"type": "string"},
            "description": "Request correlation ID for tracing"
        }
    }

    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("payoova.main:app", host="0.0.0.0", port=8000, reload=True)
