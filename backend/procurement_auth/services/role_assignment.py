"""
Role assignment protocol.

Granting a role to a user touches two stores: the user record (identity
store) and the role-assignment tuples (policy store, through the engine).
The user record is flushed first, the engine mutation is persisted second,
and the identity transaction is committed last. A failure in the engine
step rolls the identity change back; a failure to commit undoes the engine
step.
"""
from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from typing import Any

from ..authz.enforcer import EnforcementEngine
from ..authz.model import PolicyTuple, RoleAssignment
from ..authz.service import AuthorizationService
from ..crud.role import RoleRepository
from ..domain.enums import ADMINISTRATOR_GLOBAL_ROLES, GlobalRole, RoleType
from ..domain.ports.identity import IdentityStorePort, TenantData, UserData
from ..domain.role_refs import DerivedLegacyRole, ExplicitRoleReference, resolve_declared_roles
from ..errors import (
    DerivedRoleRevocationError,
    InsufficientPermissionsError,
    RoleNotFoundError,
    ValidationError,
)
from ..models.role import Role

logger = logging.getLogger("procurement.roles")


def role_policies(role: Role, domain: str) -> list[PolicyTuple]:
    policies: list[PolicyTuple] = []
    for resource, actions in role.permission_entries():
        for action in actions:
            policies.append(PolicyTuple.of(role.subject, resource, action, domain))
    return policies


class RoleAssignmentProtocol:
    def __init__(
        self,
        engine: EnforcementEngine,
        roles: RoleRepository,
        identity: IdentityStorePort,
    ) -> None:
        self.engine = engine
        self.authorization = AuthorizationService(engine)
        self.roles = roles
        self.identity = identity

    # ------------------------------------------------------------------
    # Caller classification
    # ------------------------------------------------------------------

    def is_operator(self, user: UserData) -> bool:
        return self.authorization.is_top_level_operator(user.id)

    def held_admin_roles(self, user: UserData) -> set[GlobalRole]:
        held = self.engine.roles_for_user(str(user.id), str(user.tenant_id))
        return {code for code in ADMINISTRATOR_GLOBAL_ROLES if code.value in held}

    def is_administrator(self, user: UserData) -> bool:
        return self.is_operator(user) or bool(self.held_admin_roles(user))

    # ------------------------------------------------------------------
    # Engine-side primitives
    # ------------------------------------------------------------------

    def binding_domain(self, role: Role, tenant_id: uuid.UUID | str) -> str:
        """Domain in which an assignment of ``role`` is recorded."""
        if role.global_role is GlobalRole.TECH:
            return self.engine.global_domain
        return str(tenant_id)

    async def bind(self, user_id: uuid.UUID | str, role: Role, domain: str) -> bool:
        """Materialize the role's policies in ``domain`` and assign it. Idempotent."""
        subject = str(user_id)
        if self.engine.has_role_in_domain(subject, role.subject, domain):
            return False
        changed = await self.engine.apply(
            add_policies=role_policies(role, domain),
            add_assignments=(RoleAssignment.of(subject, role.subject, domain),),
        )
        if changed:
            logger.info(
                "Role bound user_id=%s role=%s domain=%s", subject, role.subject, domain
            )
        return changed

    async def unbind(self, user_id: uuid.UUID | str, role: Role, domain: str) -> bool:
        changed = await self.engine.remove_role_assignment(str(user_id), role.subject, domain)
        if changed:
            logger.info(
                "Role unbound user_id=%s role=%s domain=%s", user_id, role.subject, domain
            )
        return changed

    def _sync_domains(self, role: Role) -> Iterable[str]:
        if role.tenant_id is not None:
            return (str(role.tenant_id),)
        return self.engine.domains_with_policies_for(role.subject)

    async def sync_role_policies(self, role: Role) -> None:
        """Re-materialize the role's policies wherever they currently exist."""
        for domain in self._sync_domains(role):
            if domain not in self.engine.domains_with_policies_for(role.subject):
                continue
            await self.engine.replace_subject_policies(
                role.subject, domain, role_policies(role, domain)
            )

    async def rename_subject(self, role: Role, previous_subject: str) -> None:
        """Move policies and assignments recorded under ``previous_subject``."""
        if previous_subject == role.subject:
            return
        domains = (
            (str(role.tenant_id),)
            if role.tenant_id is not None
            else tuple(self.engine.domains_with_policies_for(previous_subject))
        )
        old_policies = [
            policy
            for policy in self.engine.policies()
            if policy.subject == previous_subject and policy.domain in domains
        ]
        old_assignments = [
            assignment
            for assignment in self.engine.assignments()
            if assignment.role == previous_subject and assignment.domain in domains
        ]
        await self.engine.apply(
            remove_policies=old_policies,
            add_policies=[
                PolicyTuple.of(role.subject, p.resource, p.action, p.domain) for p in old_policies
            ],
            remove_assignments=old_assignments,
            add_assignments=[
                RoleAssignment.of(a.subject, role.subject, a.domain) for a in old_assignments
            ],
        )

    async def purge_role(self, role: Role) -> None:
        """Drop every policy and assignment of a deactivated role."""
        domains = set(self._sync_domains(role))
        await self.engine.apply(
            remove_policies=[
                policy
                for policy in self.engine.policies()
                if policy.subject == role.subject and policy.domain in domains
            ],
            remove_assignments=[
                assignment
                for assignment in self.engine.assignments()
                if assignment.role == role.subject
                and (role.tenant_id is None or assignment.domain in domains)
            ],
        )

    # ------------------------------------------------------------------
    # Administrative grant / revoke
    # ------------------------------------------------------------------

    async def _load_role(self, role_id: uuid.UUID, *, require_active: bool) -> Role:
        role = await self.roles.get_by_id(role_id)
        if role is None or (require_active and not role.is_active):
            raise RoleNotFoundError()
        return role

    def _guard(self, caller: UserData, role: Role, target: UserData) -> None:
        if self.is_operator(caller):
            return
        if caller.tenant_id != target.tenant_id:
            raise InsufficientPermissionsError(
                "Cannot manage role assignments in another tenant"
            )
        if role.global_role is GlobalRole.TECH:
            raise InsufficientPermissionsError("Only top-level operators can grant this role")
        if role.tenant_id is not None and role.tenant_id != caller.tenant_id:
            raise InsufficientPermissionsError("Role belongs to another tenant")

    @staticmethod
    def _record_patch(role: Role, target: UserData, *, grant: bool) -> dict[str, Any]:
        key = str(role.id)
        patch: dict[str, Any] = {}
        if role.global_role is not None:
            if grant and target.global_role is not role.global_role:
                patch["global_role"] = role.global_role
            elif not grant and target.global_role is role.global_role:
                patch["global_role"] = None
            return patch

        field = "internal_role_ids" if role.role_type is RoleType.INTERNAL else "tenant_role_ids"
        current = list(getattr(target, field))
        if grant and key not in current:
            patch[field] = [*current, key]
        elif not grant and key in current:
            patch[field] = [value for value in current if value != key]
        return patch

    async def grant(self, caller: UserData, role_id: uuid.UUID, user_id: uuid.UUID) -> UserData:
        role = await self._load_role(role_id, require_active=True)
        target = await self.identity.find_user_by_id(user_id)
        self._guard(caller, role, target)
        if role.tenant_id is not None and role.tenant_id != target.tenant_id:
            raise ValidationError("Role and user belong to different tenants")

        replaced: Role | None = None
        if role.global_role is not None and target.global_role not in (None, role.global_role):
            replaced = await self.roles.get_by_global_role(target.global_role)

        patch = self._record_patch(role, target, grant=True)
        if patch:
            target = await self.identity.update_user(target.id, patch)

        domain = self.binding_domain(role, target.tenant_id)
        try:
            await self.bind(target.id, role, domain)
            if replaced is not None:
                await self.unbind(target.id, replaced, self.binding_domain(replaced, target.tenant_id))
        except Exception:
            await self.identity.rollback()
            raise

        try:
            await self.identity.commit()
        except Exception:
            logger.error("Role grant commit failed, undoing binding user_id=%s", target.id)
            await self.unbind(target.id, role, domain)
            if replaced is not None:
                await self.bind(
                    target.id, replaced, self.binding_domain(replaced, target.tenant_id)
                )
            raise
        return target

    async def revoke(self, caller: UserData, role_id: uuid.UUID, user_id: uuid.UUID) -> UserData:
        role = await self._load_role(role_id, require_active=False)
        target = await self.identity.find_user_by_id(user_id)
        self._guard(caller, role, target)
        # The next authenticated request would derive and bind it again
        if any(
            isinstance(declared, DerivedLegacyRole) and declared.global_role is role.global_role
            for declared in resolve_declared_roles(target)
        ):
            raise DerivedRoleRevocationError(details={"user_type": target.user_type.value})

        patch = self._record_patch(role, target, grant=False)
        if patch:
            target = await self.identity.update_user(target.id, patch)

        domain = self.binding_domain(role, target.tenant_id)
        try:
            await self.unbind(target.id, role, domain)
        except Exception:
            await self.identity.rollback()
            raise
        await self.identity.commit()
        return target

    # ------------------------------------------------------------------
    # Auto-assignment
    # ------------------------------------------------------------------

    async def _resolve(self, declared: ExplicitRoleReference | DerivedLegacyRole) -> Role | None:
        if isinstance(declared, DerivedLegacyRole):
            return await self.roles.get_by_global_role(declared.global_role)
        if declared.global_role is not None:
            return await self.roles.get_by_global_role(declared.global_role)
        if declared.role_id is None:
            return None
        return await self.roles.get_by_id(declared.role_id)

    async def ensure_declared_roles(self, user: UserData, tenant: TenantData) -> list[str]:
        """Bind every role the user record declares that the engine does not hold yet.

        Derived legacy roles always bind in the user's tenant, never globally.
        Returns the role subjects newly bound.
        """
        bound: list[str] = []
        for declared in resolve_declared_roles(user):
            role = await self._resolve(declared)
            if role is None or not role.is_active:
                logger.warning(
                    "Declared role not available user_id=%s declared=%s", user.id, declared
                )
                continue
            if isinstance(declared, DerivedLegacyRole):
                domain = tenant.domain
            else:
                domain = self.binding_domain(role, tenant.id)
            if await self.bind(user.id, role, domain):
                bound.append(role.subject)
        if bound:
            logger.info("Auto-assigned roles user_id=%s roles=%s", user.id, bound)
        return bound
