from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Protocol

from ..enums import GlobalRole, LifecycleState, SubscriptionStatus, TenantType, UserType


class TenantData(Protocol):
    id: uuid.UUID
    name: str
    slug: str
    tenant_type: TenantType
    subscription_status: SubscriptionStatus
    lifecycle: LifecycleState

    @property
    def domain(self) -> str:
        ...

    def is_operational(self, now: datetime | None = None) -> bool:
        ...


class UserData(Protocol):
    id: uuid.UUID
    email: str
    password_hash: str
    tenant_id: uuid.UUID
    user_type: UserType
    global_role: GlobalRole | None
    tenant_role_ids: list[str]
    internal_role_ids: list[str]
    lifecycle: LifecycleState
    login_attempts: int
    lock_until: datetime | None

    @property
    def is_active(self) -> bool:
        ...

    def is_locked(self, now: datetime | None = None) -> bool:
        ...


class IdentityStorePort(Protocol):
    """Lookups and mutations for users and tenants.

    Lookups by id raise ``UserNotFoundError`` / ``TenantNotFoundError``; any
    call may raise ``StoreUnavailableError``.
    """

    async def find_user_by_id(self, user_id: uuid.UUID) -> UserData:
        ...

    async def find_user_by_credential(
        self, email: str, tenant_scope: uuid.UUID | None = None
    ) -> UserData | None:
        ...

    async def find_tenant_by_id(self, tenant_id: uuid.UUID) -> TenantData:
        ...

    async def update_user(self, user_id: uuid.UUID, patch: dict[str, Any]) -> UserData:
        ...

    async def update_tenant(self, tenant_id: uuid.UUID, patch: dict[str, Any]) -> TenantData:
        ...

    async def find_tenant_by_slug(self, slug: str) -> TenantData | None:
        ...

    async def create_tenant(self, **fields: Any) -> TenantData:
        ...

    async def create_user(self, **fields: Any) -> UserData:
        ...

    async def commit(self) -> None:
        ...

    async def rollback(self) -> None:
        ...
