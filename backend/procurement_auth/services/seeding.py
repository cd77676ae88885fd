"""
Catalog seeding.

Writes the role catalog (global roles and internal templates) to the
identity store and the baseline policies to the enforcement engine. Both
steps are idempotent at catalog level: an already seeded store is left as
it is.
"""
from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from ..authz.catalog import (
    GLOBAL_ROLES,
    INTERNAL_ROLE_TEMPLATES,
    SYSTEM_TENANT_NAME,
    SYSTEM_TENANT_SLUG,
    TOP_LEVEL_OPERATOR_ROLE,
    RoleDefinition,
    global_role_definition,
    public_policies,
)
from ..authz.enforcer import EnforcementEngine
from ..crud.role import RoleRepository
from ..crud.tenant import TenantRepository
from ..crud.user import UserRepository
from ..domain.enums import (
    GlobalRole,
    SubscriptionPlan,
    SubscriptionStatus,
    TenantType,
    UserType,
)
from ..domain.invariants import validate_role_shape
from ..models.role import Role
from ..models.tenant import Tenant
from ..models.user import User
from ..security.passwords import hash_password

logger = logging.getLogger("procurement.seeding")


async def _ensure_system_tenant(tenants: TenantRepository) -> Tenant:
    tenant = await tenants.get_by_slug(SYSTEM_TENANT_SLUG)
    if tenant is not None:
        return tenant
    tenant = await tenants.create(
        name=SYSTEM_TENANT_NAME,
        slug=SYSTEM_TENANT_SLUG,
        tenant_type=TenantType.ADMIN,
        plan=SubscriptionPlan.ENTERPRISE,
        subscription_status=SubscriptionStatus.ACTIVE,
        trial_ends_at=None,
    )
    logger.info("System tenant created tenant_id=%s", tenant.id)
    return tenant


async def _create_from_definition(
    roles: RoleRepository,
    definition: RoleDefinition,
    *,
    tenant: Tenant | None,
) -> Role:
    tenant_id = tenant.id if tenant is not None else None
    validate_role_shape(
        name=definition.name,
        role_type=definition.role_type,
        global_role=definition.global_role,
        tenant_id=tenant_id,
        tenant_type=definition.tenant_type,
    )
    return await roles.create(
        [(entry.resource, entry.actions) for entry in definition.permissions],
        name=definition.name,
        description=definition.description,
        role_type=definition.role_type,
        global_role=definition.global_role,
        tenant_id=tenant_id,
        tenant_type=definition.tenant_type,
        maritime_features=int(definition.features),
        is_system_role=definition.is_system_role,
        is_template=tenant is not None,
    )


async def seed_default_roles(session: AsyncSession) -> bool:
    """Create the global roles and internal templates.

    Returns False without touching anything when any role already exists.
    """
    roles = RoleRepository(session)
    if await roles.count_all() > 0:
        logger.info("Role catalog already seeded, skipping")
        return False

    try:
        system_tenant = await _ensure_system_tenant(TenantRepository(session))
        for definition in GLOBAL_ROLES:
            await _create_from_definition(roles, definition, tenant=None)
        for definition in INTERNAL_ROLE_TEMPLATES:
            await _create_from_definition(roles, definition, tenant=system_tenant)
        await session.commit()
    except Exception:
        await session.rollback()
        logger.error("Role catalog seeding failed")
        raise

    logger.info(
        "Role catalog seeded global_roles=%d templates=%d",
        len(GLOBAL_ROLES),
        len(INTERNAL_ROLE_TEMPLATES),
    )
    return True


async def seed_default_policies(engine: EnforcementEngine, default_domain: str) -> bool:
    """Materialize the operator policies globally and the public policies in ``default_domain``."""
    if engine.policies():
        logger.info("Policies already present, skipping policy seeding")
        return False

    operator = global_role_definition(GlobalRole.TECH)
    policies = [
        policy
        for entry in operator.permissions
        for policy in entry.expand(operator.subject, engine.global_domain)
    ]
    policies.extend(public_policies(default_domain))
    await engine.add_policies(policies)
    logger.info("Default policies seeded count=%d", len(policies))
    return True


async def create_default_operator(
    session: AsyncSession,
    engine: EnforcementEngine,
    *,
    email: str,
    password: str,
) -> User | None:
    """Create the bootstrap top-level operator unless one exists."""
    users = UserRepository(session)
    if await users.list_by_global_role(GlobalRole.TECH):
        logger.info("Top-level operator already exists, skipping bootstrap")
        return None

    tenant = await _ensure_system_tenant(TenantRepository(session))
    operator = await users.create(
        email=email.strip().lower(),
        password_hash=hash_password(password),
        first_name="Platform",
        last_name="Operator",
        tenant_id=tenant.id,
        user_type=UserType.TECHNICAL,
        global_role=GlobalRole.TECH,
        is_verified=True,
        is_email_verified=True,
    )
    try:
        await engine.add_role_assignment(
            str(operator.id), TOP_LEVEL_OPERATOR_ROLE, engine.global_domain
        )
    except Exception:
        await session.rollback()
        raise

    try:
        await session.commit()
    except Exception:
        logger.error("Bootstrap operator commit failed, undoing assignment user_id=%s", operator.id)
        await engine.remove_role_assignment(
            str(operator.id), TOP_LEVEL_OPERATOR_ROLE, engine.global_domain
        )
        raise

    logger.info("Bootstrap operator created user_id=%s", operator.id)
    return operator
