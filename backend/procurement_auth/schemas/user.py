import uuid

from pydantic import BaseModel, Field

from ..domain.enums import UserType
from .auth import EMAIL_PATTERN


class UserInvite(BaseModel):
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=6, max_length=128)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    user_type: UserType
    tenant_id: uuid.UUID | None = None
