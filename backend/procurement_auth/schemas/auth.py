import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from ..domain.enums import GlobalRole, SubscriptionStatus, TenantType, UserType

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class UserRegister(BaseModel):
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=6, max_length=128)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    user_type: UserType
    company_name: str | None = Field(None, max_length=100)


class UserLogin(BaseModel):
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=1)
    user_type: UserType | None = None
    tenant_slug: str | None = None


class RefreshTokenRequest(BaseModel):
    refresh_token: str | None = None


class TenantSummary(BaseModel):
    id: uuid.UUID
    name: str
    slug: str
    tenant_type: TenantType
    subscription_status: SubscriptionStatus

    class Config:
        from_attributes = True


class UserProfile(BaseModel):
    id: uuid.UUID
    email: str
    first_name: str
    last_name: str
    user_type: UserType
    global_role: GlobalRole | None
    tenant_id: uuid.UUID
    is_verified: bool
    last_login_at: datetime | None

    class Config:
        from_attributes = True


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class SessionResponse(TokenResponse):
    user: UserProfile
    tenant: TenantSummary


class MeResponse(BaseModel):
    user: UserProfile
    tenant: TenantSummary
    roles: list[str]
    is_top_level_operator: bool
