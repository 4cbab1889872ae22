"""User schemas."""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field

from payoova.models.user import AuthProvider


class UserResponse(BaseModel):
    """Schema for user response."""
    id: str
    email: str
    display_name: Optional[str] = None
    auth_provider: AuthProvider
    default_network: str
    currency: str
    daily_limit_usd: Optional[Decimal] = None
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class UserSettingsUpdate(BaseModel):
    """Partial settings update; omitted fields are left unchanged."""
    display_name: Optional[str] = Field(None, max_length=255)
    default_network: Optional[str] = Field(None, max_length=32)
    currency: Optional[str] = Field(None, max_length=8)
    daily_limit_usd: Optional[Decimal] = Field(None, ge=0)

    class Config:
        json_schema_extra = {
            "example": {"default_network": "polygon", "daily_limit_usd": "2500"}
        }
