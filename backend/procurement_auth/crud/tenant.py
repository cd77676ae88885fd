import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.tenant import Tenant

TENANT_PATCH_FIELDS = frozenset(
    {
        "name",
        "plan",
        "subscription_status",
        "trial_ends_at",
        "owner_id",
        "admin_ids",
        "lifecycle",
    }
)


class TenantRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, tenant_id: uuid.UUID) -> Tenant | None:
        return await self.session.get(Tenant, tenant_id)

    async def get_by_slug(self, slug: str) -> Tenant | None:
        result = await self.session.execute(select(Tenant).where(Tenant.slug == slug))
        return result.scalar_one_or_none()

    async def create(self, **fields: Any) -> Tenant:
        tenant = Tenant(**fields)
        self.session.add(tenant)
        await self.session.flush()
        await self.session.refresh(tenant)
        return tenant

    async def update(self, tenant: Tenant, patch: dict[str, Any]) -> Tenant:
        unknown = set(patch) - TENANT_PATCH_FIELDS
        if unknown:
            raise ValueError(f"Unsupported tenant fields: {sorted(unknown)}")
        for field, value in patch.items():
            setattr(tenant, field, value)
        await self.session.flush()
        await self.session.refresh(tenant)
        return tenant
