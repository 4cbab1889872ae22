"""API routers package."""
from payoova.api.wallets import router as wallets_router
from payoova.api.transactions import router as transactions_router
from payoova.api.payments import router as payments_router
from payoova.api.prices import router as prices_router
from payoova.api.users import router as users_router

__all__ = [
    "wallets_router",
    "transactions_router",
    "payments_router",
    "prices_router",
    "users_router",
]
