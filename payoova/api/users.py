"""User account API endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from payoova.database import get_db
from payoova.models.user import User
from payoova.schemas.common import CorrelatedResponse
from payoova.schemas.user import UserResponse, UserSettingsUpdate
from payoova.services.payments import InvoiceService
from payoova.services.users import UserService
from payoova.api.deps import (
    get_correlation_id,
    get_current_user,
    get_invoice_service,
    get_user_service,
)

router = APIRouter(prefix="/v1/users", tags=["Users"])


@router.get("/me", response_model=CorrelatedResponse[UserResponse])
async def get_me(
    current_user: User = Depends(get_current_user),
    correlation_id: str = Depends(get_correlation_id),
):
    """Get current user info."""
    return CorrelatedResponse(
        correlation_id=correlation_id,
        data=UserResponse.model_validate(current_user)
    )


@router.patch("/me/settings", response_model=CorrelatedResponse[UserResponse])
async def update_settings(
    changes: UserSettingsUpdate,
    db: AsyncSession = Depends(get_db),
    users: UserService = Depends(get_user_service),
    current_user: User = Depends(get_current_user),
    correlation_id: str = Depends(get_correlation_id),
):
    """Update preferences and the daily USD limit. Send ``daily_limit_usd: null`` to remove the limit."""
    user = await users.update_settings(current_user, changes.model_dump(exclude_unset=True))
    await db.commit()
    return CorrelatedResponse(
        correlation_id=correlation_id,
        data=UserResponse.model_validate(user)
    )


@router.delete("/me", response_model=CorrelatedResponse[UserResponse])
async def delete_me(
    db: AsyncSession = Depends(get_db),
    users: UserService = Depends(get_user_service),
    invoices: InvoiceService = Depends(get_invoice_service),
    current_user: User = Depends(get_current_user),
    correlation_id: str = Depends(get_correlation_id),
):
    """
    Close the account.

    The user is deactivated and the email anonymized; wallets and
    transactions are kept so pending transfers still resolve.
    """
    user = await users.deactivate(current_user, invoices)
    await db.commit()
    return CorrelatedResponse(
        correlation_id=correlation_id,
        data=UserResponse.model_validate(user)
    )
