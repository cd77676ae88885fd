import uuid
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import (
    StoreUnavailableError,
    TenantContextRequiredError,
    TenantNotFoundError,
    UserNotFoundError,
)
from ..models.tenant import Tenant
from ..models.user import User
from .tenant import TenantRepository
from .user import UserRepository


class SqlIdentityStore:
    """Identity store over one request-scoped session.

    Mutations are flushed, not committed; callers decide when to commit.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.users = UserRepository(session)
        self.tenants = TenantRepository(session)

    async def find_user_by_id(self, user_id: uuid.UUID) -> User:
        try:
            user = await self.users.get_by_id(user_id)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError() from exc
        if user is None:
            raise UserNotFoundError()
        return user

    async def find_user_by_credential(
        self, email: str, tenant_scope: uuid.UUID | None = None
    ) -> User | None:
        try:
            matches = await self.users.list_by_email(email, tenant_scope)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError() from exc
        if not matches:
            return None
        if len(matches) > 1:
            raise TenantContextRequiredError(
                "Email is registered in several tenants; tenant is required"
            )
        return matches[0]

    async def find_tenant_by_id(self, tenant_id: uuid.UUID) -> Tenant:
        try:
            tenant = await self.tenants.get_by_id(tenant_id)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError() from exc
        if tenant is None:
            raise TenantNotFoundError()
        return tenant

    async def find_tenant_by_slug(self, slug: str) -> Tenant | None:
        try:
            return await self.tenants.get_by_slug(slug)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError() from exc

    async def update_user(self, user_id: uuid.UUID, patch: dict[str, Any]) -> User:
        user = await self.find_user_by_id(user_id)
        try:
            return await self.users.update(user, patch)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError() from exc

    async def update_tenant(self, tenant_id: uuid.UUID, patch: dict[str, Any]) -> Tenant:
        tenant = await self.find_tenant_by_id(tenant_id)
        try:
            return await self.tenants.update(tenant, patch)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError() from exc

    async def create_tenant(self, **fields: Any) -> Tenant:
        return await self.tenants.create(**fields)

    async def create_user(self, **fields: Any) -> User:
        return await self.users.create(**fields)

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()
