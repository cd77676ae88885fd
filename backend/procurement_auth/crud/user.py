import uuid
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.enums import GlobalRole
from ..models.role import Role
from ..models.user import User

USER_PATCH_FIELDS = frozenset(
    {
        "first_name",
        "last_name",
        "password_hash",
        "global_role",
        "tenant_role_ids",
        "internal_role_ids",
        "lifecycle",
        "login_attempts",
        "lock_until",
        "last_login_at",
        "is_verified",
        "is_email_verified",
    }
)


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: uuid.UUID) -> User | None:
        return await self.session.get(User, user_id)

    async def list_by_email(self, email: str, tenant_id: uuid.UUID | None = None) -> list[User]:
        query = select(User).where(func.lower(User.email) == email.strip().lower())
        if tenant_id is not None:
            query = query.where(User.tenant_id == tenant_id)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_by_global_role(self, global_role: GlobalRole) -> list[User]:
        result = await self.session.execute(select(User).where(User.global_role == global_role))
        return list(result.scalars().all())

    async def create(self, **fields: Any) -> User:
        user = User(**fields)
        self.session.add(user)
        await self.session.flush()
        await self.session.refresh(user)
        return user

    async def update(self, user: User, patch: dict[str, Any]) -> User:
        unknown = set(patch) - USER_PATCH_FIELDS
        if unknown:
            raise ValueError(f"Unsupported user fields: {sorted(unknown)}")
        for field, value in patch.items():
            setattr(user, field, value)
        await self.session.flush()
        await self.session.refresh(user)
        return user

    async def count_role_references(self, role: Role) -> int:
        """Users pointing at ``role`` through global_role, tenant roles or internal roles."""
        key = str(role.id)
        conditions = [
            User.tenant_role_ids.contains([key]),
            User.internal_role_ids.contains([key]),
        ]
        # A role without a code must not match users whose global_role is NULL
        if role.global_role is not None:
            conditions.append(User.global_role == role.global_role)
        result = await self.session.execute(
            select(func.count()).select_from(User).where(or_(*conditions))
        )
        return int(result.scalar_one())
