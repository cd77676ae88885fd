from __future__ import annotations

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from ..crud.role import RoleRepository
from ..crud.user import UserRepository
from ..domain.enums import GlobalRole, LifecycleState, MaritimeFeature, RoleType
from ..domain.invariants import validate_role_shape
from ..domain.ports.identity import UserData
from ..errors import (
    ConflictError,
    InsufficientPermissionsError,
    RoleInUseError,
    RoleNotFoundError,
    ValidationError,
)
from ..models.role import Role
from ..schemas.role import RoleCreate, RoleUpdate
from .role_assignment import RoleAssignmentProtocol

logger = logging.getLogger("procurement.roles")

RESERVED_SUBJECTS = frozenset(code.value for code in GlobalRole) | {"public"}


class RoleCatalogService:
    """Role administration: create, update, deactivate, list and template copies."""

    def __init__(
        self,
        session: AsyncSession,
        protocol: RoleAssignmentProtocol,
        roles: RoleRepository | None = None,
        users: UserRepository | None = None,
    ) -> None:
        self.session = session
        self.protocol = protocol
        self.roles = roles or RoleRepository(session)
        self.users = users or UserRepository(session)

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def _authorize_create(self, caller: UserData, role_type: RoleType) -> None:
        if self.protocol.is_operator(caller):
            return
        if role_type is RoleType.GLOBAL:
            raise InsufficientPermissionsError("Only top-level operators can create global roles")
        if role_type is RoleType.TENANT and GlobalRole.ADMIN not in self.protocol.held_admin_roles(caller):
            raise InsufficientPermissionsError("Only platform administrators can create tenant roles")
        if role_type is RoleType.INTERNAL and not self.protocol.held_admin_roles(caller):
            raise InsufficientPermissionsError("Only administrators can create internal roles")

    def _authorize_view(self, caller: UserData, role: Role) -> None:
        if role.tenant_id is None or role.tenant_id == caller.tenant_id:
            return
        if not self.protocol.is_operator(caller):
            raise InsufficientPermissionsError("Cannot access roles of another tenant")

    def _authorize_modify(self, caller: UserData, role: Role) -> None:
        if self.protocol.is_operator(caller):
            return
        if role.is_system_role:
            raise InsufficientPermissionsError("System roles can only be changed by top-level operators")
        if role.tenant_id is None:
            raise InsufficientPermissionsError("Global roles can only be changed by top-level operators")
        if role.tenant_id != caller.tenant_id:
            raise InsufficientPermissionsError("Cannot modify roles of another tenant")

    async def _check_name_available(
        self,
        name: str,
        tenant_id: uuid.UUID | None,
        *,
        global_role: GlobalRole | None = None,
    ) -> None:
        if await self.roles.get_by_name(name, tenant_id) is not None:
            raise ConflictError("Role name already exists in this scope", details={"name": name})
        if tenant_id is not None:
            if name in RESERVED_SUBJECTS or await self.roles.get_by_name(name, None) is not None:
                raise ConflictError("Role name is reserved by a global role", details={"name": name})
        elif global_role is None:
            # An uncoded global role is known by its name in every domain
            if name in RESERVED_SUBJECTS or await self.roles.find_tenant_role_by_name(name) is not None:
                raise ConflictError("Role name is already used by a tenant role", details={"name": name})

    async def _get_active(self, role_id: uuid.UUID) -> Role:
        role = await self.roles.get_by_id(role_id)
        if role is None or not role.is_active:
            raise RoleNotFoundError()
        return role

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create_role(self, caller: UserData, data: RoleCreate) -> Role:
        self._authorize_create(caller, data.role_type)
        operator = self.protocol.is_operator(caller)

        if data.global_role is not None:
            if not operator:
                raise InsufficientPermissionsError("Only top-level operators can bind global role codes")
            if await self.roles.get_by_global_role(data.global_role) is not None:
                raise ConflictError("Global role code is already bound", details={"global_role": data.global_role.value})

        tenant_id: uuid.UUID | None = None
        tenant_type = data.tenant_type
        if data.role_type is not RoleType.GLOBAL:
            tenant_id = data.tenant_id or caller.tenant_id
            if tenant_id != caller.tenant_id and not operator:
                raise InsufficientPermissionsError("Cannot create roles in another tenant")
            tenant = await self.protocol.identity.find_tenant_by_id(tenant_id)
            if tenant_type is None:
                tenant_type = tenant.tenant_type
            elif tenant_type is not tenant.tenant_type:
                raise ValidationError("tenant_type does not match the tenant")

        validate_role_shape(
            name=data.name,
            role_type=data.role_type,
            global_role=data.global_role,
            tenant_id=tenant_id,
            tenant_type=tenant_type,
        )
        await self._check_name_available(data.name, tenant_id, global_role=data.global_role)

        role = await self.roles.create(
            [(entry.resource, entry.actions) for entry in data.permissions],
            name=data.name,
            description=data.description,
            role_type=data.role_type,
            global_role=data.global_role,
            tenant_id=tenant_id,
            tenant_type=tenant_type,
            maritime_features=int(MaritimeFeature.from_names(data.maritime_features)),
            is_system_role=False,
            created_by=caller.id,
        )
        await self.session.commit()
        logger.info("Role created role_id=%s name=%s by=%s", role.id, role.name, caller.id)
        return role

    async def get_role(self, caller: UserData, role_id: uuid.UUID) -> Role:
        role = await self._get_active(role_id)
        self._authorize_view(caller, role)
        return role

    async def list_visible_roles(self, caller: UserData) -> list[Role]:
        if self.protocol.is_operator(caller):
            return await self.roles.list_active()
        if self.protocol.held_admin_roles(caller):
            return await self.roles.list_active(caller.tenant_id, include_global=True)

        visible: list[Role] = []
        if caller.global_role is not None:
            own_global = await self.roles.get_by_global_role(caller.global_role)
            if own_global is not None:
                visible.append(own_global)
        referenced: list[uuid.UUID] = []
        for raw_id in [*caller.tenant_role_ids, *caller.internal_role_ids]:
            try:
                referenced.append(uuid.UUID(str(raw_id)))
            except ValueError:
                continue
        visible.extend(await self.roles.get_many(referenced))
        return [role for role in visible if role.is_active]

    async def update_role(self, caller: UserData, role_id: uuid.UUID, data: RoleUpdate) -> Role:
        role = await self._get_active(role_id)
        self._authorize_modify(caller, role)
        previous_subject = role.subject

        if data.name is not None and data.name != role.name:
            await self._check_name_available(data.name, role.tenant_id, global_role=role.global_role)
            role.name = data.name
        if data.description is not None:
            role.description = data.description
        if data.maritime_features is not None:
            role.maritime_features = int(MaritimeFeature.from_names(data.maritime_features))

        if data.permissions is not None:
            role = await self.roles.replace_permissions(
                role, [(entry.resource, entry.actions) for entry in data.permissions]
            )
        else:
            role = await self.roles.update(role)

        try:
            await self.protocol.rename_subject(role, previous_subject)
            if data.permissions is not None:
                await self.protocol.sync_role_policies(role)
        except Exception:
            await self.session.rollback()
            raise
        await self.session.commit()
        logger.info("Role updated role_id=%s by=%s", role.id, caller.id)
        return role

    async def deactivate_role(self, caller: UserData, role_id: uuid.UUID) -> Role:
        role = await self._get_active(role_id)
        self._authorize_modify(caller, role)

        references = await self.users.count_role_references(role)
        if references:
            raise RoleInUseError(details={"user_count": references})

        role.lifecycle = LifecycleState.DEACTIVATED
        role = await self.roles.update(role)
        try:
            await self.protocol.purge_role(role)
        except Exception:
            await self.session.rollback()
            raise
        await self.session.commit()
        logger.info("Role deactivated role_id=%s by=%s", role.id, caller.id)
        return role

    async def instantiate_template(
        self,
        caller: UserData,
        template_id: uuid.UUID,
        tenant_id: uuid.UUID | None = None,
    ) -> Role:
        """Copy an internal role template into a tenant."""
        template = await self._get_active(template_id)
        if not template.is_template:
            raise ValidationError("Role is not a template")
        if not self.protocol.is_administrator(caller):
            raise InsufficientPermissionsError("Only administrators can instantiate templates")

        target_tenant_id = tenant_id or caller.tenant_id
        if target_tenant_id != caller.tenant_id and not self.protocol.is_operator(caller):
            raise InsufficientPermissionsError("Cannot create roles in another tenant")
        tenant = await self.protocol.identity.find_tenant_by_id(target_tenant_id)
        if template.tenant_type is not tenant.tenant_type:
            raise ValidationError(
                "Template does not apply to this tenant type",
                details={"template": template.tenant_type.value if template.tenant_type else None},
            )

        await self._check_name_available(template.name, target_tenant_id)
        role = await self.roles.create(
            template.permission_entries(),
            name=template.name,
            description=template.description,
            role_type=RoleType.INTERNAL,
            tenant_id=target_tenant_id,
            tenant_type=tenant.tenant_type,
            maritime_features=template.maritime_features,
            is_system_role=False,
            is_template=False,
            created_by=caller.id,
        )
        await self.session.commit()
        logger.info(
            "Template instantiated template_id=%s role_id=%s tenant_id=%s",
            template.id,
            role.id,
            target_tenant_id,
        )
        return role
