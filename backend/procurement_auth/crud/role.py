import uuid
from collections.abc import Sequence
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.enums import GlobalRole, LifecycleState
from ..models.role import Role, RolePermission

PermissionEntries = Sequence[tuple[str, Sequence[str]]]


class RoleRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def count_all(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(Role))
        return int(result.scalar_one())

    async def get_by_id(self, role_id: uuid.UUID) -> Role | None:
        return await self.session.get(Role, role_id)

    async def get_by_global_role(self, code: GlobalRole) -> Role | None:
        result = await self.session.execute(select(Role).where(Role.global_role == code))
        return result.scalar_one_or_none()

    async def get_by_name(self, name: str, tenant_id: uuid.UUID | None) -> Role | None:
        query = select(Role).where(Role.name == name)
        if tenant_id is None:
            query = query.where(Role.tenant_id.is_(None))
        else:
            query = query.where(Role.tenant_id == tenant_id)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def find_tenant_role_by_name(self, name: str) -> Role | None:
        """Any active tenant-scoped role called ``name``, whatever its tenant."""
        result = await self.session.execute(
            select(Role)
            .where(
                Role.name == name,
                Role.tenant_id.is_not(None),
                Role.lifecycle == LifecycleState.ACTIVE,
            )
            .limit(1)
        )
        return result.scalars().first()

    async def get_many(self, role_ids: Sequence[uuid.UUID]) -> list[Role]:
        if not role_ids:
            return []
        result = await self.session.execute(select(Role).where(Role.id.in_(list(role_ids))))
        return list(result.scalars().all())

    async def list_active(self, tenant_id: uuid.UUID | None = None, *, include_global: bool = True) -> list[Role]:
        """Active roles; restricted to one tenant (plus global roles) when ``tenant_id`` is given."""
        query = select(Role).where(Role.lifecycle == LifecycleState.ACTIVE)
        if tenant_id is not None:
            scope = [Role.tenant_id == tenant_id]
            if include_global:
                scope.append(Role.tenant_id.is_(None))
            query = query.where(or_(*scope))
        result = await self.session.execute(query.order_by(Role.name))
        return list(result.scalars().all())

    async def create(self, permissions: PermissionEntries, **fields: Any) -> Role:
        role = Role(**fields)
        role.permissions = [
            RolePermission(position=position, resource=resource, actions=list(actions))
            for position, (resource, actions) in enumerate(permissions)
        ]
        self.session.add(role)
        await self.session.flush()
        await self.session.refresh(role)
        return role

    async def replace_permissions(self, role: Role, permissions: PermissionEntries) -> Role:
        role.permissions.clear()
        # Old rows must be gone before new rows reuse their positions
        await self.session.flush()
        role.permissions.extend(
            RolePermission(position=position, resource=resource, actions=list(actions))
            for position, (resource, actions) in enumerate(permissions)
        )
        return await self.update(role)

    async def update(self, role: Role) -> Role:
        await self.session.flush()
        await self.session.refresh(role)
        return role
